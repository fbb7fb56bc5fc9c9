"""
Movement log: the append-only ledger of accepted movements.

The only write is `append`. Entries are never updated or removed here;
the one path that deletes ledger rows is the explicit catalog teardown.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import models


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append(db: Session, movement: models.StockMovement) -> int:
    """Add an entry and return its id. Flushes, never commits."""
    if movement.occurred_at is None:
        movement.occurred_at = _utcnow()
    db.add(movement)
    db.flush()
    return movement.id


class MovementListing:
    """
    Lazy, finite, restartable view over the ledger.

    Nothing is read until iteration starts; each new iteration re-runs the
    query, so a listing can be handed to a response and iterated again.
    """

    def __init__(
        self,
        db: Session,
        *,
        kind: Optional[models.MovementKind] = None,
        product_id: Optional[int] = None,
        location_id: Optional[int] = None,
        limit: Optional[int] = None,
        newest_first: bool = True,
        batch_size: int = 200,
    ) -> None:
        self._db = db
        self.kind = kind
        self.product_id = product_id
        self.location_id = location_id
        self.limit = limit
        self.newest_first = newest_first
        self.batch_size = batch_size

    def _query(self):
        query = self._db.query(models.StockMovement)
        if self.kind is not None:
            query = query.filter(models.StockMovement.kind == self.kind)
        if self.product_id is not None:
            query = query.filter(models.StockMovement.product_id == self.product_id)
        if self.location_id is not None:
            query = query.filter(
                or_(
                    models.StockMovement.source_location_id == self.location_id,
                    models.StockMovement.destination_location_id == self.location_id,
                )
            )
        if self.newest_first:
            query = query.order_by(models.StockMovement.occurred_at.desc(), models.StockMovement.id.desc())
        else:
            query = query.order_by(models.StockMovement.occurred_at.asc(), models.StockMovement.id.asc())
        if self.limit is not None:
            query = query.limit(self.limit)
        return query

    def __iter__(self) -> Iterator[models.StockMovement]:
        return iter(self._query().yield_per(self.batch_size))

    def all(self) -> List[models.StockMovement]:
        return list(self)


def list_movements(
    db: Session,
    *,
    kind: Optional[models.MovementKind] = None,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
    limit: Optional[int] = None,
    newest_first: bool = True,
) -> MovementListing:
    return MovementListing(
        db,
        kind=kind,
        product_id=product_id,
        location_id=location_id,
        limit=limit,
        newest_first=newest_first,
    )


def count_between(db: Session, *, start: datetime, end: datetime) -> int:
    """Movements with start <= occurred_at < end."""
    return (
        db.query(func.count(models.StockMovement.id))
        .filter(
            models.StockMovement.occurred_at >= start,
            models.StockMovement.occurred_at < end,
        )
        .scalar()
        or 0
    )
