"""Pseudo-random price source used until a real quote feed is configured."""
from __future__ import annotations

import logging
import random

from .base import PriceSource

LOGGER = logging.getLogger(__name__)

LOW = 100
HIGH = 600


class SimulatedPriceSource(PriceSource):
    """Quote a whole-number price in ``[LOW, HIGH)`` for any ticker."""

    name = "simulated"

    def __init__(self, seed: int | None = None, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random(seed)

    def get_current_price(self, ticker: str) -> float:
        price = float(self._rng.randrange(LOW, HIGH))
        LOGGER.debug("Simulated price for %s: %s", ticker, price)
        return price


__all__ = ["SimulatedPriceSource"]
