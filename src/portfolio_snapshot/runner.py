"""Command line entry point for the daily portfolio valuation job."""
from __future__ import annotations

import argparse
import logging
from typing import Iterable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings
from .db import HistoryStore, create_db_engine, ensure_schema, list_transactions, list_users
from .errors import MalformedTransaction, PersistenceFailure, UnrecoverableStartupFailure
from .logging_utils import configure_logging
from .models import RunSummary
from .prices import create_price_source
from .reporter import Clock, HistoryWriter, PriceLookup, report, utc_now

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_STARTUP_FAILURE = 2


def run_daily_record(
    settings: Settings,
    *,
    engine: Engine | None = None,
    price_lookup: PriceLookup | None = None,
    history: HistoryWriter | None = None,
    clock: Clock = utc_now,
) -> RunSummary:
    """Value every user's open positions and append them to their history.

    A user whose ledger is malformed or whose history cannot be written is
    logged and counted as failed; the remaining users are still processed.
    Database errors while enumerating users or reading a ledger abort the run.
    """

    engine = engine or create_db_engine(settings.database_url)
    ensure_schema(engine)
    price_lookup = price_lookup or create_price_source(settings.price_source, timeout=settings.price_timeout)
    history = history or HistoryStore(engine)

    LOGGER.info("Starting daily valuation run")
    summary = RunSummary()
    for user_id in list_users(engine):
        LOGGER.info("Processing user %s", user_id)
        ledger = list_transactions(engine, user_id)
        try:
            outcome = report(
                user_id,
                ledger,
                price_lookup,
                history,
                clock=clock,
                max_workers=settings.max_workers,
            )
        except (MalformedTransaction, PersistenceFailure):
            LOGGER.exception("Valuation failed for user %s", user_id)
            summary.users_failed.append(user_id)
            continue
        summary.users_processed += 1
        summary.records_written += len(outcome.records)
        summary.tickers_skipped += len(outcome.skipped)

    LOGGER.info(
        "Daily valuation run finished: %d users processed, %d failed, %d records written, %d tickers skipped",
        summary.users_processed,
        len(summary.users_failed),
        summary.records_written,
        summary.tickers_skipped,
    )
    return summary


def parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging output",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Stay running and trigger the job daily at PORTFOLIO_SNAPSHOT_SCHEDULE",
    )
    return parser.parse_args(args=args)


def main(argv: Iterable[str] | None = None) -> int:
    options = parse_args(argv)
    configure_logging(logging.DEBUG if options.verbose else None)

    try:
        settings = Settings.load()
        if options.schedule:
            from .scheduler import run_scheduler

            run_scheduler(settings)
            return EXIT_OK
        summary = run_daily_record(settings)
    except UnrecoverableStartupFailure as exc:
        LOGGER.error("Startup failed: %s", exc)
        return EXIT_STARTUP_FAILURE
    except SQLAlchemyError:
        LOGGER.exception("Daily valuation run aborted")
        return EXIT_FAILURE

    if not summary.succeeded:
        LOGGER.error("Valuation failed for users: %s", ", ".join(summary.users_failed))
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
