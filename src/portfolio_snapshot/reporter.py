"""Value each residual position of a user and append it to their history."""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, Protocol, Sequence

from .errors import PersistenceFailure, PriceLookupFailure
from .ledger import RawTransaction, replay
from .models import PositionState, Transaction, ValuationRecord

LOGGER = logging.getLogger(__name__)

# Residue left behind by floating point sells is not a holding.
EPSILON = 0.001

PriceLookup = Callable[[str], float]
Clock = Callable[[], datetime]


class HistoryWriter(Protocol):
    def append_valuation(self, user_id: str, ticker: str, record: ValuationRecord) -> bool: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class UserReport:
    """Records appended for one user in one run, plus the tickers not written.

    ``skipped`` tickers had no usable price; ``already_recorded`` tickers
    produced an entry identical to one already in the history.
    """

    user_id: str
    records: dict[str, ValuationRecord] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    already_recorded: list[str] = field(default_factory=list)


def value_position(state: PositionState, price: float, *, today: date, timestamp: int) -> ValuationRecord:
    market_value = state.shares * price
    profit = round(market_value - state.total_cost, 2)
    return ValuationRecord(date=today, price=price, profit=profit, timestamp=timestamp)


def _lookup_price(ticker: str, price_lookup: PriceLookup) -> float:
    try:
        price = price_lookup(ticker)
    except PriceLookupFailure:
        raise
    except Exception as exc:
        raise PriceLookupFailure(ticker, str(exc) or type(exc).__name__) from exc
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise PriceLookupFailure(ticker, f"price source returned {price!r}")
    if not math.isfinite(price) or price <= 0:
        raise PriceLookupFailure(ticker, f"price source returned {price!r}")
    return float(price)


def _value_and_append(
    user_id: str,
    ticker: str,
    state: PositionState,
    price_lookup: PriceLookup,
    history: HistoryWriter,
    clock: Clock,
    today: date,
) -> ValuationRecord | None:
    """Value and append one position; ``None`` when the entry was already stored."""

    price = _lookup_price(ticker, price_lookup)
    timestamp = int(clock().timestamp() * 1000)
    record = value_position(state, price, today=today, timestamp=timestamp)
    try:
        added = history.append_valuation(user_id, ticker, record)
    except PersistenceFailure:
        raise
    except Exception as exc:
        raise PersistenceFailure(user_id, ticker, str(exc) or type(exc).__name__) from exc
    if not added:
        LOGGER.info("  - %s: valuation at %s already recorded", ticker, record.timestamp)
        return None
    LOGGER.info("  - %s: price %s, profit %.2f", ticker, price, record.profit)
    return record


def report(
    user_id: str,
    transactions: Sequence[Transaction | RawTransaction],
    price_lookup: PriceLookup,
    history: HistoryWriter,
    *,
    clock: Clock = utc_now,
    max_workers: int = 4,
) -> UserReport:
    """Replay a user's ledger and append one valuation per held ticker.

    Price lookups and appends for different tickers run concurrently on at most
    ``max_workers`` threads and are all joined before returning. A ticker whose
    price cannot be obtained is skipped for this run. A failed append is raised
    once every other ticker has finished, never reported as success.

    Raises:
        MalformedTransaction: the ledger could not be replayed; nothing is written.
        PersistenceFailure: at least one append failed.
    """

    result = UserReport(user_id=user_id)
    if not transactions:
        LOGGER.info("No transactions for %s; nothing to value", user_id)
        return result

    positions = replay(transactions)
    held = {ticker: state for ticker, state in positions.items() if state.shares > EPSILON}
    if not held:
        LOGGER.info("No open positions for %s", user_id)
        return result

    today = clock().date()
    failures: list[PersistenceFailure] = []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(held)))) as executor:
        futures = {
            executor.submit(_value_and_append, user_id, ticker, state, price_lookup, history, clock, today): ticker
            for ticker, state in held.items()
        }
        for future in as_completed(futures):
            ticker = futures[future]
            try:
                record = future.result()
            except PriceLookupFailure as exc:
                LOGGER.warning("Skipping %s for %s: %s", ticker, user_id, exc.reason)
                result.skipped.append(ticker)
            except PersistenceFailure as exc:
                LOGGER.error("%s", exc)
                failures.append(exc)
            else:
                if record is None:
                    result.already_recorded.append(ticker)
                else:
                    result.records[ticker] = record

    if failures:
        raise failures[0]
    return result


__all__ = ["EPSILON", "UserReport", "report", "utc_now", "value_position"]
