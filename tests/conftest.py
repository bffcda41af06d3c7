"""Shared fixtures: a throwaway SQLite ledger, a fake history and a fixed clock."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from portfolio_snapshot.db import create_db_engine, ensure_schema
from portfolio_snapshot.models import ValuationRecord


class TickingClock:
    """Starts at ``start`` and advances one millisecond per call."""

    def __init__(self, start: datetime) -> None:
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            current = self._now
            self._now += timedelta(milliseconds=1)
            return current


class FakeHistory:
    """In-memory append-only history keyed by ``(user_id, ticker)``."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.entries: dict[tuple[str, str], list[ValuationRecord]] = {}
        self.fail_for = fail_for or set()
        self._lock = threading.Lock()

    def append_valuation(self, user_id: str, ticker: str, record: ValuationRecord) -> bool:
        if ticker in self.fail_for:
            raise RuntimeError("history backend unavailable")
        with self._lock:
            self.entries.setdefault((user_id, ticker), []).append(record)
        return True


RUN_START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(RUN_START)


@pytest.fixture
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_db_engine(database_url)
    ensure_schema(engine)
    yield engine
    engine.dispose()
