"""
Balance store: current quantity per (product, location).

Nothing here commits. Every write flushes into the caller's transaction
so the movement processor can couple it with the ledger append.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from . import models
from .errors import InsufficientStockError

_ZERO = Decimal("0")
_QUANTITY_TYPE = models.StockBalance.__table__.c.quantity.type


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pair_filter(product_id: int, location_id: int):
    return (
        models.StockBalance.product_id == product_id,
        models.StockBalance.location_id == location_id,
    )


def get_balance(db: Session, *, product_id: int, location_id: int) -> Decimal:
    quantity = db.execute(
        select(models.StockBalance.quantity).where(*_pair_filter(product_id, location_id))
    ).scalar_one_or_none()
    if quantity is None:
        return _ZERO
    return Decimal(quantity)


def lock_balances(db: Session, *, product_id: int, location_ids: Iterable[Optional[int]]) -> Dict[int, Decimal]:
    """
    Take row locks on the pairs a movement touches, ascending by location id.

    The fixed order keeps two opposite-direction transfers from deadlocking.
    Returns the quantities read under the lock (0 for absent rows). SQLite
    has no FOR UPDATE; it serialises writers on its own.
    """
    locked: Dict[int, Decimal] = {}
    for location_id in sorted({loc for loc in location_ids if loc is not None}):
        quantity = db.execute(
            select(models.StockBalance.quantity)
            .where(*_pair_filter(product_id, location_id))
            .with_for_update()
        ).scalar_one_or_none()
        locked[location_id] = Decimal(quantity) if quantity is not None else _ZERO
    return locked


def _at_scale(expr):
    """Round to the column scale; SQLite does this arithmetic in floats."""
    return func.round(expr, _QUANTITY_TYPE.scale, type_=_QUANTITY_TYPE)


def _increase(db: Session, *, product_id: int, location_id: int, delta: Decimal) -> None:
    now = _utcnow()
    dialect = db.get_bind().dialect.name
    table = models.StockBalance.__table__

    if dialect in {"postgresql", "sqlite"}:
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(table)
            .values(product_id=product_id, location_id=location_id, quantity=delta, updated_at=now)
            .on_conflict_do_update(
                index_elements=[table.c.product_id, table.c.location_id],
                set_={"quantity": _at_scale(table.c.quantity + delta), "updated_at": now},
            )
        )
        db.execute(stmt)
        return

    result = db.execute(
        update(models.StockBalance)
        .where(*_pair_filter(product_id, location_id))
        .values(quantity=_at_scale(models.StockBalance.quantity + delta), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(
            models.StockBalance(
                product_id=product_id,
                location_id=location_id,
                quantity=delta,
                updated_at=now,
            )
        )
        db.flush()


def _decrease(db: Session, *, product_id: int, location_id: int, delta: Decimal) -> None:
    requested = -delta
    # Check and decrement in one statement: a concurrent writer cannot slip
    # between them.
    result = db.execute(
        update(models.StockBalance)
        .where(
            *_pair_filter(product_id, location_id),
            _at_scale(models.StockBalance.quantity) >= requested,
        )
        .values(quantity=_at_scale(models.StockBalance.quantity + delta), updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = get_balance(db, product_id=product_id, location_id=location_id)
        raise InsufficientStockError(
            f"Insufficient stock: {available} available, {requested} requested.",
            available=available,
            requested=requested,
        )


def apply_delta(db: Session, *, product_id: int, location_id: int, delta) -> Decimal:
    """
    Add a signed delta to a balance and return the new quantity.

    Creates the row on the first positive delta. Raises
    InsufficientStockError when the result would be negative.
    """
    delta = Decimal(delta)
    if delta > 0:
        _increase(db, product_id=product_id, location_id=location_id, delta=delta)
    elif delta < 0:
        _decrease(db, product_id=product_id, location_id=location_id, delta=delta)
    return get_balance(db, product_id=product_id, location_id=location_id)


def list_balances(
    db: Session,
    *,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> List[models.StockBalance]:
    query = db.query(models.StockBalance)
    if product_id is not None:
        query = query.filter(models.StockBalance.product_id == product_id)
    if location_id is not None:
        query = query.filter(models.StockBalance.location_id == location_id)
    # Balances are written with bulk UPDATEs, so refresh any instance the
    # session already holds.
    return (
        query.populate_existing()
        .order_by(models.StockBalance.product_id, models.StockBalance.location_id)
        .all()
    )


def product_totals(db: Session) -> Dict[int, Decimal]:
    rows = db.execute(
        select(models.StockBalance.product_id, func.sum(models.StockBalance.quantity))
        .group_by(models.StockBalance.product_id)
    ).all()
    return {product_id: Decimal(total or 0) for product_id, total in rows}
