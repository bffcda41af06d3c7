"""Domain models for the ledger replay and daily valuations."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class TransactionType(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    SPLIT = "Split"

    @classmethod
    def parse(cls, value: object) -> Optional["TransactionType"]:
        """Match a raw type string case-insensitively, ``None`` when unknown."""

        if not isinstance(value, str):
            return None
        name = value.strip().lower()
        for member in cls:
            if member.value.lower() == name:
                return member
        return None


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single immutable ledger entry.

    ``price`` is the split multiplier for Split entries. ``sequence`` orders
    entries that share a trade date.
    """

    ticker: str
    date: date
    type: Optional[TransactionType]
    price: float
    shares: float
    sequence: int = 0
    raw_type: str = ""


@dataclass(frozen=True, slots=True)
class PositionState:
    """Share count and aggregate cost basis of one ticker."""

    shares: float = 0.0
    total_cost: float = 0.0

    @property
    def average_cost(self) -> float:
        if self.shares <= 0:
            return 0.0
        return self.total_cost / self.shares


@dataclass(frozen=True, slots=True)
class ValuationRecord:
    """One dated entry in a ticker's valuation history."""

    date: date
    price: float
    profit: float
    timestamp: int  # epoch milliseconds

    def as_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "price": self.price,
            "profit": self.profit,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class RunSummary:
    """Outcome counters for one run across all users."""

    users_processed: int = 0
    users_failed: list[str] = field(default_factory=list)
    records_written: int = 0
    tickers_skipped: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.users_failed


__all__ = ["TransactionType", "Transaction", "PositionState", "ValuationRecord", "RunSummary"]
