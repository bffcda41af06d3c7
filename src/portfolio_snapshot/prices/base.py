"""Base classes for current-price lookups."""
from __future__ import annotations

from abc import ABC, abstractmethod


class PriceSource(ABC):
    """Abstract source that can quote the current price of a ticker."""

    name = "abstract"

    @abstractmethod
    def get_current_price(self, ticker: str) -> float:
        """Return the current price, raising ``PriceLookupFailure`` when unavailable."""

    def __call__(self, ticker: str) -> float:
        return self.get_current_price(ticker)


__all__ = ["PriceSource"]
