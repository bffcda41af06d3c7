"""Replay a ledger of trades into per-ticker average-cost positions.

Everything in this module is pure: the functions read transactions and
return new :class:`PositionState` values without touching any store.
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime
from typing import Iterable, Mapping, Sequence, Union

from dateutil import parser

from .errors import MalformedTransaction
from .models import PositionState, Transaction, TransactionType

LOGGER = logging.getLogger(__name__)

RawTransaction = Mapping[str, object]


def parse_number(value: object, *, ticker: str, field: str) -> float:
    """Parse a numeric string or number, rejecting anything non-finite or negative."""

    if isinstance(value, bool):
        raise MalformedTransaction(f"{ticker}: {field} must be numeric, got {value!r}", ticker=ticker, field=field)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise MalformedTransaction(
                f"{ticker}: {field} must be numeric, got {value!r}", ticker=ticker, field=field
            ) from exc
    else:
        raise MalformedTransaction(f"{ticker}: {field} must be numeric, got {value!r}", ticker=ticker, field=field)

    if not math.isfinite(number) or number < 0:
        raise MalformedTransaction(
            f"{ticker}: {field} must be a finite non-negative number, got {value!r}", ticker=ticker, field=field
        )
    return number


def parse_trade_date(value: object, *, ticker: str) -> date:
    """Parse an ISO-8601 date string (a datetime is truncated to its day)."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return parser.isoparse(value.strip()).date()
        except ValueError as exc:
            raise MalformedTransaction(
                f"{ticker}: date must be ISO-8601, got {value!r}", ticker=ticker, field="date"
            ) from exc
    raise MalformedTransaction(f"{ticker}: date must be ISO-8601, got {value!r}", ticker=ticker, field="date")


def parse_transaction(raw: RawTransaction, sequence: int) -> Transaction:
    """Build a :class:`Transaction` from a raw ledger record.

    An explicit ``sequence`` key on the record wins over the positional one.
    Entries of unknown type are never applied, so none of their other fields
    are validated.
    """

    raw_type = raw.get("type")
    txn_type = TransactionType.parse(raw_type)
    ticker = raw.get("ticker")
    explicit_sequence = raw.get("sequence")
    if isinstance(explicit_sequence, int) and not isinstance(explicit_sequence, bool):
        sequence = explicit_sequence

    if txn_type is None:
        return Transaction(
            ticker=ticker.strip() if isinstance(ticker, str) else "",
            date=date.min,
            type=None,
            price=0.0,
            shares=0.0,
            sequence=sequence,
            raw_type=str(raw_type) if raw_type is not None else "",
        )

    if not isinstance(ticker, str) or not ticker.strip():
        raise MalformedTransaction(f"ticker must be a non-empty string, got {ticker!r}", field="ticker")
    ticker = ticker.strip()
    trade_date = parse_trade_date(raw.get("date"), ticker=ticker)

    shares = 0.0
    price = parse_number(raw.get("price"), ticker=ticker, field="price")
    if txn_type is TransactionType.SPLIT:
        if price <= 0:
            raise MalformedTransaction(
                f"{ticker}: split multiplier must be positive, got {raw.get('price')!r}",
                ticker=ticker,
                field="price",
            )
    else:
        shares = parse_number(raw.get("shares"), ticker=ticker, field="shares")

    return Transaction(
        ticker=ticker,
        date=trade_date,
        type=txn_type,
        price=price,
        shares=shares,
        sequence=sequence,
        raw_type=str(raw_type) if raw_type is not None else "",
    )


def parse_transactions(records: Iterable[RawTransaction]) -> list[Transaction]:
    return [parse_transaction(raw, index) for index, raw in enumerate(records)]


def apply_transaction(state: PositionState, txn: Transaction) -> PositionState:
    """Fold one transaction into a position and return the new position."""

    if txn.type is TransactionType.BUY:
        return PositionState(
            shares=state.shares + txn.shares,
            total_cost=state.total_cost + txn.price * txn.shares,
        )

    if txn.type is TransactionType.SELL:
        if state.shares <= 0:
            LOGGER.debug("Ignoring sell of %s %s with no open position", txn.shares, txn.ticker)
            return state
        ratio = txn.shares / state.shares
        if ratio > 1:
            LOGGER.warning(
                "Sell of %s %s exceeds held %s shares on %s; treating as full liquidation",
                txn.shares,
                txn.ticker,
                state.shares,
                txn.date.isoformat(),
            )
            return PositionState()
        return PositionState(
            shares=state.shares - txn.shares,
            total_cost=state.total_cost - state.total_cost * ratio,
        )

    if txn.type is TransactionType.SPLIT:
        return PositionState(shares=state.shares * txn.price, total_cost=state.total_cost)

    LOGGER.debug("Skipping %s transaction of unknown type %r", txn.ticker, txn.raw_type)
    return state


def replay(
    transactions: Sequence[Union[Transaction, RawTransaction]],
) -> dict[str, PositionState]:
    """Reconstruct the final position of every ticker in ``transactions``.

    Raw mappings are parsed first, using their index as the tie-break sequence.
    Each ticker's entries are stably sorted by ``(date, sequence)`` before
    being folded, so the result does not depend on input order.
    """

    grouped: dict[str, list[Transaction]] = defaultdict(list)
    for index, item in enumerate(transactions):
        txn = item if isinstance(item, Transaction) else parse_transaction(item, index)
        if txn.type is None:
            LOGGER.debug("Skipping %s transaction of unknown type %r", txn.ticker or "?", txn.raw_type)
            continue
        grouped[txn.ticker].append(txn)

    positions: dict[str, PositionState] = {}
    for ticker, entries in grouped.items():
        state = PositionState()
        for txn in sorted(entries, key=lambda t: (t.date, t.sequence)):
            state = apply_transaction(state, txn)
        positions[ticker] = state
    return positions


__all__ = [
    "parse_number",
    "parse_trade_date",
    "parse_transaction",
    "parse_transactions",
    "apply_transaction",
    "replay",
]
