"""End-to-end tests of the daily run against a SQLite ledger."""
from __future__ import annotations

import logging

import pytest

from conftest import RUN_START
from portfolio_snapshot.config import Settings
from portfolio_snapshot.db import HistoryStore, add_transactions, add_user
from portfolio_snapshot.runner import (
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_STARTUP_FAILURE,
    main,
    run_daily_record,
)


ALICE = [
    {"ticker": "TSM", "date": "2024-01-01", "type": "Buy", "price": 100, "shares": 10},
    {"ticker": "TSM", "date": "2024-01-01", "type": "Buy", "price": 200, "shares": 10},
    {"ticker": "TSM", "date": "2024-02-01", "type": "Sell", "price": 250, "shares": 10},
    {"ticker": "NVDA", "date": "2024-01-01", "type": "Buy", "price": 10, "shares": 100},
    {"ticker": "NVDA", "date": "2024-06-10", "type": "Split", "price": 2},
    {"ticker": "AMD", "date": "2024-01-01", "type": "Buy", "price": 90, "shares": 5},
    {"ticker": "AMD", "date": "2024-03-01", "type": "Sell", "price": 120, "shares": 5},
]

MALLORY = [{"ticker": "GME", "date": "2024-01-01", "type": "Buy", "price": "forty", "shares": 1}]


@pytest.fixture
def settings(database_url) -> Settings:
    return Settings(database_url=database_url, max_workers=2)


def test_run_values_every_user(engine, settings, clock):
    add_transactions(engine, "alice", ALICE)
    add_transactions(engine, "bob", [{"ticker": "TSM", "date": "2024-01-05", "type": "Buy", "price": 150, "shares": 2}])
    add_user(engine, "carol")

    summary = run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 200.0, clock=clock)

    assert summary.succeeded
    assert summary.users_processed == 3
    assert summary.records_written == 3

    store = HistoryStore(engine)
    [tsm] = store.fetch_history("alice", "TSM")
    assert (tsm.price, tsm.profit) == (200.0, 500.0)
    [nvda] = store.fetch_history("alice", "NVDA")
    assert nvda.profit == 39000.0
    assert store.fetch_history("alice", "AMD") == []
    [bob_tsm] = store.fetch_history("bob", "TSM")
    assert bob_tsm.profit == 100.0


def test_repeated_runs_append_history(engine, settings, clock):
    add_transactions(engine, "alice", ALICE[:2])

    run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 200.0, clock=clock)
    run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 180.0, clock=clock)

    history = HistoryStore(engine).fetch_history("alice", "TSM")
    assert [entry.price for entry in history] == [200.0, 180.0]
    assert [entry.profit for entry in history] == [1000.0, 600.0]


def test_rerun_at_same_instant_writes_nothing_new(engine, settings):
    add_transactions(engine, "alice", ALICE[:2])

    def frozen():
        return RUN_START

    first = run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 200.0, clock=frozen)
    second = run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 200.0, clock=frozen)

    assert first.records_written == 1
    assert second.records_written == 0
    assert second.succeeded
    assert len(HistoryStore(engine).fetch_history("alice", "TSM")) == 1


def test_malformed_user_does_not_block_others(engine, settings, clock, caplog):
    add_transactions(engine, "alice", ALICE)
    add_transactions(engine, "mallory", MALLORY)

    with caplog.at_level(logging.ERROR, logger="portfolio_snapshot.runner"):
        summary = run_daily_record(settings, engine=engine, price_lookup=lambda ticker: 200.0, clock=clock)

    assert summary.users_failed == ["mallory"]
    assert summary.users_processed == 1
    assert summary.records_written == 2
    assert "mallory" in caplog.text


def test_price_failures_are_skipped_not_failed(engine, settings, clock):
    add_transactions(engine, "alice", ALICE)

    def lookup(ticker):
        if ticker == "NVDA":
            raise TimeoutError("quote feed timed out")
        return 200.0

    summary = run_daily_record(settings, engine=engine, price_lookup=lookup, clock=clock)

    assert summary.succeeded
    assert summary.records_written == 1
    assert summary.tickers_skipped == 1


@pytest.fixture
def cli_env(monkeypatch, database_url):
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_ENV", "no-such-profile")
    monkeypatch.delenv("PORTFOLIO_SNAPSHOT_ENV_FILE", raising=False)
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_DATABASE_URL", database_url)
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_PRICE_SOURCE", "simulated")
    return database_url


def test_main_exits_zero_on_success(engine, cli_env):
    add_transactions(engine, "alice", ALICE)

    assert main([]) == EXIT_OK

    history = HistoryStore(engine).fetch_history("alice", "TSM")
    assert len(history) == 1
    assert 100 <= history[0].price < 600


def test_main_exits_nonzero_when_a_user_fails(engine, cli_env):
    add_transactions(engine, "alice", ALICE)
    add_transactions(engine, "mallory", MALLORY)

    assert main(["--verbose"]) == EXIT_FAILURE
    assert len(HistoryStore(engine).fetch_history("alice", "TSM")) == 1


def test_main_fails_fast_without_configuration(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_ENV", "no-such-profile")
    monkeypatch.delenv("PORTFOLIO_SNAPSHOT_ENV_FILE", raising=False)
    monkeypatch.delenv("PORTFOLIO_SNAPSHOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("PORTFOLIO_SNAPSHOT_DB_HOST", raising=False)

    assert main([]) == EXIT_STARTUP_FAILURE


def test_main_fails_fast_when_database_is_unreachable(monkeypatch, tmp_path):
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_ENV", "no-such-profile")
    monkeypatch.delenv("PORTFOLIO_SNAPSHOT_ENV_FILE", raising=False)
    monkeypatch.setenv("PORTFOLIO_SNAPSHOT_DATABASE_URL", f"sqlite:///{tmp_path / 'missing' / 'ledger.db'}")

    assert main([]) == EXIT_STARTUP_FAILURE
