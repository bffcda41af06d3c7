"""Price source factory."""
from __future__ import annotations

import logging

from .base import PriceSource
from .screener import ScreenerPriceSource
from .simulated import SimulatedPriceSource

LOGGER = logging.getLogger(__name__)


def create_price_source(name: str, *, timeout: float = 30.0) -> PriceSource:
    """Instantiate the configured price source implementation."""

    key = name.strip().lower()
    if key == SimulatedPriceSource.name:
        LOGGER.debug("Selected SimulatedPriceSource")
        return SimulatedPriceSource()
    if key == ScreenerPriceSource.name:
        LOGGER.debug("Selected ScreenerPriceSource (timeout %ss)", timeout)
        return ScreenerPriceSource(timeout=timeout)
    raise ValueError(f"Unsupported price source: {name}")


__all__ = ["create_price_source", "PriceSource", "ScreenerPriceSource", "SimulatedPriceSource"]
