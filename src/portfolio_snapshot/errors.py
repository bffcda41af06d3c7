"""Exceptions raised by the daily valuation job.

Hierarchy::

    SnapshotError
    ├── MalformedTransaction
    ├── PriceLookupFailure
    ├── PersistenceFailure
    └── UnrecoverableStartupFailure
        └── ConfigurationError
"""
from __future__ import annotations


class SnapshotError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class MalformedTransaction(SnapshotError):
    """A ledger entry could not be parsed into a usable transaction.

    Raised instead of coercing bad values to zero so a corrupted record never
    silently skews the cost basis of a position.
    """

    def __init__(self, message: str, *, ticker: str | None = None, field: str | None = None) -> None:
        self.ticker = ticker
        self.field = field
        super().__init__(message)


class PriceLookupFailure(SnapshotError):
    """The current price for a ticker is unavailable."""

    def __init__(self, ticker: str, reason: str) -> None:
        self.ticker = ticker
        self.reason = reason
        super().__init__(f"Price lookup failed for {ticker}: {reason}")


class PersistenceFailure(SnapshotError):
    """Appending a valuation to the history store failed."""

    def __init__(self, user_id: str, ticker: str, reason: str) -> None:
        self.user_id = user_id
        self.ticker = ticker
        self.reason = reason
        super().__init__(f"Failed to append valuation for {user_id}/{ticker}: {reason}")


class UnrecoverableStartupFailure(SnapshotError):
    """Nothing can be processed, e.g. the database is unreachable."""


class ConfigurationError(UnrecoverableStartupFailure):
    """Configuration is missing or invalid."""


__all__ = [
    "SnapshotError",
    "MalformedTransaction",
    "PriceLookupFailure",
    "PersistenceFailure",
    "UnrecoverableStartupFailure",
    "ConfigurationError",
]
