"""
Movement processor.

A request is validated, then applied as one atomic unit: balance deltas
and the ledger append commit together or not at all. Nothing is persisted
between the two states, so a rejected request leaves no trace.

Validation order (each step has its own error kind):
1. quantity positive and finite          -> InvalidQuantityError
2. locations match the movement kind     -> InvalidLocationPairError
3. product / locations / actor exist     -> NotFoundError
4. source holds enough stock             -> InsufficientStockError

Step 4 runs after the balance rows are locked, and the decrement itself is
conditional on the quantity still being there; the CHECK constraint on
stock_balances is the last line behind both.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from wmsdb.apps.catalog import models as catalog_models

from . import balances, models, movement_log, schemas
from .errors import (
    ConflictError,
    InsufficientStockError,
    InvalidLocationPairError,
    InvalidQuantityError,
    LedgerError,
    NotFoundError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

# Postgres SQLSTATEs for lock contention: serialization_failure,
# deadlock_detected, lock_not_available.
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


@dataclass(frozen=True)
class ValidatedMovement:
    kind: models.MovementKind
    product_id: int
    quantity: Decimal
    source_location_id: Optional[int]
    destination_location_id: Optional[int]
    actor_id: int
    external_ref: Optional[str]
    notes: Optional[str]
    occurred_at: Optional[datetime]


def _validate_quantity(quantity) -> Decimal:
    if isinstance(quantity, bool):
        raise InvalidQuantityError("quantity must be a number.")
    try:
        value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantityError("quantity must be a number.")
    if not value.is_finite():
        raise InvalidQuantityError("quantity must be finite.")
    if value <= 0:
        raise InvalidQuantityError("quantity must be greater than zero.")
    return value


def _validate_location_pair(
    kind: models.MovementKind,
    source_location_id: Optional[int],
    destination_location_id: Optional[int],
) -> None:
    if kind == models.MovementKind.RECEIPT:
        if destination_location_id is None or source_location_id is not None:
            raise InvalidLocationPairError("RECEIPT requires a destination location and no source.")
    elif kind == models.MovementKind.ISSUE:
        if source_location_id is None or destination_location_id is not None:
            raise InvalidLocationPairError("ISSUE requires a source location and no destination.")
    elif kind == models.MovementKind.TRANSFER:
        if source_location_id is None or destination_location_id is None:
            raise InvalidLocationPairError("TRANSFER requires both a source and a destination location.")
        if source_location_id == destination_location_id:
            raise InvalidLocationPairError("TRANSFER source and destination must differ.")
    else:
        raise InvalidLocationPairError(f"Unknown movement kind: {kind}.")


def _require_product(db: Session, product_id: int) -> catalog_models.Product:
    product = db.query(catalog_models.Product).filter(catalog_models.Product.id == product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found.")
    return product


def _require_location(db: Session, location_id: int) -> catalog_models.Location:
    location = db.query(catalog_models.Location).filter(catalog_models.Location.id == location_id).first()
    if not location:
        raise NotFoundError(f"Location {location_id} not found.")
    return location


def _require_actor(db: Session, actor_id: Optional[int]) -> catalog_models.User:
    if actor_id is None:
        raise NotFoundError("An acting user is required.")
    user = db.query(catalog_models.User).filter(catalog_models.User.id == actor_id).first()
    if not user or not user.is_active:
        raise NotFoundError(f"Active user {actor_id} not found.")
    return user


def validate_movement(
    db: Session,
    *,
    payload: schemas.MovementCreate,
    actor_id: Optional[int],
    occurred_at: Optional[datetime] = None,
) -> ValidatedMovement:
    """Rules 1-3. Stock sufficiency is checked under lock in `apply_movement`."""
    kind = models.MovementKind(payload.kind)
    quantity = _validate_quantity(payload.quantity)
    _validate_location_pair(kind, payload.source_location_id, payload.destination_location_id)

    _require_product(db, payload.product_id)
    if payload.source_location_id is not None:
        _require_location(db, payload.source_location_id)
    if payload.destination_location_id is not None:
        _require_location(db, payload.destination_location_id)
    actor = _require_actor(db, actor_id)

    return ValidatedMovement(
        kind=kind,
        product_id=payload.product_id,
        quantity=quantity,
        source_location_id=payload.source_location_id,
        destination_location_id=payload.destination_location_id,
        actor_id=actor.id,
        external_ref=payload.external_ref,
        notes=payload.notes,
        occurred_at=occurred_at,
    )


def apply_movement(db: Session, plan: ValidatedMovement) -> models.StockMovement:
    """
    Apply a validated movement inside the caller's transaction.

    Uses only the values in `plan`; nothing is re-read from the request.
    """
    locked = balances.lock_balances(
        db,
        product_id=plan.product_id,
        location_ids=[plan.source_location_id, plan.destination_location_id],
    )

    if plan.source_location_id is not None:
        available = locked[plan.source_location_id]
        if available < plan.quantity:
            raise InsufficientStockError(
                f"Insufficient stock: {available} available, {plan.quantity} requested.",
                available=available,
                requested=plan.quantity,
            )
        balances.apply_delta(
            db,
            product_id=plan.product_id,
            location_id=plan.source_location_id,
            delta=-plan.quantity,
        )

    if plan.destination_location_id is not None:
        balances.apply_delta(
            db,
            product_id=plan.product_id,
            location_id=plan.destination_location_id,
            delta=plan.quantity,
        )

    entry = models.StockMovement(
        kind=plan.kind,
        product_id=plan.product_id,
        quantity=plan.quantity,
        source_location_id=plan.source_location_id,
        destination_location_id=plan.destination_location_id,
        actor_id=plan.actor_id,
        external_ref=plan.external_ref,
        notes=plan.notes,
        occurred_at=plan.occurred_at,
    )
    movement_log.append(db, entry)
    return entry


def classify_storage_error(exc: SQLAlchemyError) -> Optional[LedgerError]:
    """
    Map a database failure raised while applying a movement to a ledger
    error kind. Returns None for failures that are not storage conditions
    (programming errors), which callers re-raise unchanged.
    """
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).lower()

    if isinstance(exc, IntegrityError):
        if models.BALANCE_NON_NEGATIVE_CHECK in message or (
            "check" in message and "stock_balances" in message
        ):
            return InsufficientStockError("Insufficient stock (rejected by storage constraint).")
        return ConflictError("Concurrent write conflict; retry the movement.")

    if getattr(orig, "pgcode", None) in _CONFLICT_SQLSTATES:
        return ConflictError("Concurrent write conflict; retry the movement.")
    if "database is locked" in message or "deadlock" in message or "could not serialize" in message:
        return ConflictError("Concurrent write conflict; retry the movement.")

    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return StorageUnavailableError("Storage is temporarily unavailable; retry the movement.")
    return None


def submit_movement(
    db: Session,
    *,
    payload: schemas.MovementCreate,
    actor_id: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
) -> models.StockMovement:
    """
    Validate and commit one movement.

    On any failure the whole unit is rolled back and the error re-raised;
    balances and ledger are left exactly as before the call.
    """
    actor_id = actor_id if actor_id is not None else payload.actor_id
    try:
        plan = validate_movement(db, payload=payload, actor_id=actor_id, occurred_at=occurred_at)
        entry = apply_movement(db, plan)
        db.commit()
    except LedgerError as exc:
        db.rollback()
        logger.info(
            "Movement rejected",
            extra={
                "error_code": exc.code,
                "movement_kind": getattr(payload.kind, "value", payload.kind),
                "product_id": payload.product_id,
            },
        )
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        error = classify_storage_error(exc)
        logger.warning(
            "Movement failed in storage",
            extra={
                "error_code": error.code if error else "unclassified",
                "movement_kind": getattr(payload.kind, "value", payload.kind),
                "product_id": payload.product_id,
            },
        )
        if error is None:
            raise
        raise error from exc
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Movement committed",
        extra={
            "movement_id": entry.id,
            "movement_kind": entry.kind.value,
            "product_id": entry.product_id,
            "quantity": str(entry.quantity),
        },
    )
    return entry


def read_balance(
    db: Session,
    *,
    product_id: int,
    location_id: Optional[int] = None,
) -> schemas.BalanceBreakdown:
    """
    Quantity of a product at one location, or its per-location breakdown.
    """
    _require_product(db, product_id)
    if location_id is not None:
        location = _require_location(db, location_id)
        quantity = balances.get_balance(db, product_id=product_id, location_id=location_id)
        return schemas.BalanceBreakdown(
            product_id=product_id,
            location_id=location_id,
            total_quantity=quantity,
            locations=[
                schemas.BalanceRead(
                    product_id=product_id,
                    location_id=location_id,
                    location_code=location.code,
                    quantity=quantity,
                )
            ],
        )

    rows = balances.list_balances(db, product_id=product_id)
    total = sum((Decimal(row.quantity) for row in rows), Decimal("0"))
    return schemas.BalanceBreakdown(
        product_id=product_id,
        total_quantity=total,
        locations=[
            schemas.BalanceRead(
                product_id=row.product_id,
                location_id=row.location_id,
                location_code=row.location.code if row.location else None,
                quantity=row.quantity,
                updated_at=row.updated_at,
            )
            for row in rows
        ],
    )
