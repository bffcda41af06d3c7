"""Screener.in current price source."""
from __future__ import annotations

import logging
import re
import threading
from typing import Callable

import requests
from bs4 import BeautifulSoup

from ..errors import PriceLookupFailure
from .base import PriceSource

LOGGER = logging.getLogger(__name__)

NON_NUMERIC = re.compile(r"[^0-9.]")

DEFAULT_HEADERS = {
    "accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "accept-language": "en-US,en;q=0.9",
    "user-agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/141.0.0.0 Safari/537.36",
}


def parse_price(value: str | None) -> float | None:
    """Parse a human readable price such as ``"₹ 1,234.50"``."""

    if not value:
        return None
    cleaned = NON_NUMERIC.sub("", value)
    if not cleaned or cleaned.count(".") > 1:
        return None
    return float(cleaned)


class ScreenerPriceSource(PriceSource):
    """Scrape the "Current Price" ratio from a screener.in company page.

    Lookups run on the reporter's worker threads, so each thread gets its own
    session from ``session_factory``.
    """

    name = "screener"
    BASE_URL = "https://www.screener.in"

    def __init__(
        self,
        session_factory: Callable[[], requests.Session] = requests.Session,
        *,
        timeout: float = 30.0,
    ) -> None:
        self.session_factory = session_factory
        self.timeout = timeout
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The calling thread's session, created on first use."""

        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            session.headers.update(DEFAULT_HEADERS)
            self._local.session = session
        return session

    def _company_url(self, ticker: str) -> str:
        return f"{self.BASE_URL}/company/{ticker.strip().upper()}/"

    def _get_soup(self, ticker: str) -> BeautifulSoup:
        url = self._company_url(ticker)
        LOGGER.debug("Requesting Screener company page for %s", ticker)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PriceLookupFailure(ticker, str(exc)) from exc
        return BeautifulSoup(response.text, "html.parser")

    def get_current_price(self, ticker: str) -> float:
        soup = self._get_soup(ticker)
        for item in soup.select("#top-ratios li"):
            label = item.find("span", class_="name")
            if label is None or label.get_text(strip=True).lower() != "current price":
                continue
            number = item.find("span", class_="number")
            price = parse_price(number.get_text(strip=True) if number else None)
            if price is None or price <= 0:
                raise PriceLookupFailure(ticker, "current price is not a positive number")
            LOGGER.debug("Screener price for %s: %s", ticker, price)
            return price
        raise PriceLookupFailure(ticker, "current price not found on company page")


__all__ = ["ScreenerPriceSource", "parse_price"]
