"""Database integration: the ledger source and the valuation history store."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Iterable, Iterator, Mapping

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    insert,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import PersistenceFailure, UnrecoverableStartupFailure
from .models import ValuationRecord


metadata = MetaData()

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


users = Table(
    "users",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

# price and shares are kept as text so bad upstream values reach the replayer
# untouched and fail loudly there.
transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("ticker", String(64), nullable=False),
    Column("trade_date", String(32), nullable=False),
    Column("type", String(16), nullable=False),
    Column("price", String(64), nullable=True),
    Column("shares", String(64), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

valuation_history = Table(
    "valuation_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("ticker", String(64), nullable=False),
    Column("date", Date, nullable=False),
    Column("price", Float, nullable=False),
    Column("profit", Float, nullable=False),
    Column("timestamp", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    UniqueConstraint(
        "user_id", "ticker", "date", "timestamp", "price", "profit", name="uq_valuation_entry"
    ),
)


def create_db_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine."""

    LOGGER.debug("Creating database engine")
    try:
        return create_engine(database_url, future=True, pool_pre_ping=True)
    except (SQLAlchemyError, ImportError) as exc:
        raise UnrecoverableStartupFailure(f"Cannot create database engine: {exc}") from exc


@contextmanager
def session(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope around a series of operations."""

    with engine.begin() as conn:
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create tables if they do not exist."""

    LOGGER.debug("Ensuring database schema is present")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        metadata.create_all(engine)
    except SQLAlchemyError as exc:
        raise UnrecoverableStartupFailure(f"Database is unavailable: {exc}") from exc


def _insert(conn: Connection, table: Table):
    """Return a dialect specific INSERT that supports ``on_conflict_do_nothing``."""

    if conn.dialect.name == "postgresql":
        return pg_insert(table)
    if conn.dialect.name == "sqlite":
        return sqlite_insert(table)
    raise UnrecoverableStartupFailure(f"Unsupported database dialect: {conn.dialect.name}")


def add_user(engine: Engine, user_id: str) -> None:
    with session(engine) as conn:
        stmt = _insert(conn, users).values(id=user_id).on_conflict_do_nothing(index_elements=[users.c.id])
        conn.execute(stmt)


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def add_transactions(engine: Engine, user_id: str, records: Iterable[Mapping[str, object]]) -> int:
    """Append raw ledger entries for a user, creating the user when missing."""

    rows = [
        {
            "user_id": user_id,
            "ticker": record["ticker"],
            "trade_date": _as_text(record["date"]),
            "type": record["type"],
            "price": _as_text(record.get("price")),
            "shares": _as_text(record.get("shares")),
        }
        for record in records
    ]
    add_user(engine, user_id)
    if not rows:
        return 0
    with session(engine) as conn:
        conn.execute(insert(transactions), rows)
    LOGGER.info("Recorded %d transactions for %s", len(rows), user_id)
    return len(rows)


def list_users(engine: Engine) -> list[str]:
    """Return every user id in a stable order."""

    with engine.connect() as conn:
        rows = conn.execute(select(users.c.id).order_by(users.c.id)).scalars().all()
    return list(rows)


def list_transactions(engine: Engine, user_id: str) -> list[dict[str, object]]:
    """Return a user's raw ledger in insertion order.

    Each record carries its row id as ``sequence`` so equal trade dates replay
    in the order they were recorded.
    """

    stmt = (
        select(
            transactions.c.id,
            transactions.c.ticker,
            transactions.c.trade_date,
            transactions.c.type,
            transactions.c.price,
            transactions.c.shares,
        )
        .where(transactions.c.user_id == user_id)
        .order_by(transactions.c.id)
    )
    with engine.connect() as conn:
        rows = conn.execute(stmt).all()
    return [
        {
            "ticker": row.ticker,
            "date": row.trade_date,
            "type": row.type,
            "price": row.price,
            "shares": row.shares,
            "sequence": row.id,
        }
        for row in rows
    ]


class HistoryStore:
    """Append-only valuation history backed by ``valuation_history``.

    Appends never update or delete rows. Re-appending an entry that is already
    stored with identical content (user, ticker, date, timestamp, price and
    profit) is a no-op, so a retried write cannot produce duplicates. A
    different valuation captured in the same millisecond is still added.
    """

    MAX_RETRY_ATTEMPTS = 3
    RETRY_MULTIPLIER = 0.5
    RETRY_MIN_WAIT = 0.5
    RETRY_MAX_WAIT = 5.0

    def __init__(
        self,
        engine: Engine,
        *,
        max_attempts: int | None = None,
        wait_multiplier: float | None = None,
        min_wait: float | None = None,
    ) -> None:
        self.engine = engine
        self.max_attempts = max_attempts or self.MAX_RETRY_ATTEMPTS
        self.wait_multiplier = self.RETRY_MULTIPLIER if wait_multiplier is None else wait_multiplier
        self.min_wait = self.RETRY_MIN_WAIT if min_wait is None else min_wait

    def _insert_record(self, user_id: str, ticker: str, record: ValuationRecord) -> bool:
        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.wait_multiplier,
                min=self.min_wait,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((OperationalError, InterfaceError)),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        def _inner() -> bool:
            with session(self.engine) as conn:
                stmt = (
                    _insert(conn, valuation_history)
                    .values(
                        user_id=user_id,
                        ticker=ticker,
                        date=record.date,
                        price=record.price,
                        profit=record.profit,
                        timestamp=record.timestamp,
                    )
                    .on_conflict_do_nothing(
                        index_elements=[
                            valuation_history.c.user_id,
                            valuation_history.c.ticker,
                            valuation_history.c.date,
                            valuation_history.c.timestamp,
                            valuation_history.c.price,
                            valuation_history.c.profit,
                        ]
                    )
                )
                return conn.execute(stmt).rowcount > 0

        return _inner()

    def append_valuation(self, user_id: str, ticker: str, record: ValuationRecord) -> bool:
        """Add ``record`` to the history of ``ticker``; ``False`` if it was already stored."""

        try:
            added = self._insert_record(user_id, ticker, record)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(user_id, ticker, str(exc)) from exc
        if not added:
            LOGGER.debug("Valuation for %s/%s at %s already recorded", user_id, ticker, record.timestamp)
        return added

    def fetch_history(self, user_id: str, ticker: str) -> list[ValuationRecord]:
        stmt = (
            select(
                valuation_history.c.date,
                valuation_history.c.price,
                valuation_history.c.profit,
                valuation_history.c.timestamp,
            )
            .where(valuation_history.c.user_id == user_id, valuation_history.c.ticker == ticker)
            .order_by(valuation_history.c.date, valuation_history.c.timestamp, valuation_history.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [
            ValuationRecord(date=row.date, price=row.price, profit=row.profit, timestamp=row.timestamp)
            for row in rows
        ]


__all__ = [
    "create_db_engine",
    "ensure_schema",
    "session",
    "metadata",
    "users",
    "transactions",
    "valuation_history",
    "add_user",
    "add_transactions",
    "list_users",
    "list_transactions",
    "HistoryStore",
]
