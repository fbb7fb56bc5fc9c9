from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from wmsdb.apps.inventory import models as inventory_models

from . import models, schemas

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CatalogNotFound(Exception):
    """Raised when a product, location or user id does not exist."""


class CatalogConflict(Exception):
    """Raised on duplicate codes or when ledger rows block a delete."""


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def _normalise_code(value: str) -> str:
    return (value or "").strip().upper()


def _reject_nulls(changes: dict, required: tuple) -> None:
    cleared = sorted(field for field in required if field in changes and changes[field] is None)
    if cleared:
        raise ValueError(f"Fields cannot be cleared: {', '.join(cleared)}.")


def get_product(db: Session, product_id: int) -> models.Product:
    product = db.query(models.Product).filter(models.Product.id == product_id).first()
    if not product:
        raise CatalogNotFound("Product not found.")
    return product


def get_product_by_barcode(db: Session, barcode: str) -> Optional[models.Product]:
    return db.query(models.Product).filter(models.Product.barcode == (barcode or "").strip()).first()


def list_products(db: Session, *, category: Optional[str] = None) -> List[models.Product]:
    query = db.query(models.Product)
    if category:
        query = query.filter(models.Product.category == category)
    return query.order_by(models.Product.name.asc()).all()


def _ensure_barcode_free(db: Session, barcode: str, *, exclude_id: Optional[int] = None) -> None:
    existing = get_product_by_barcode(db, barcode)
    if existing and existing.id != exclude_id:
        raise CatalogConflict("A product with this barcode already exists.")


def _ensure_location_exists(db: Session, location_id: Optional[int]) -> None:
    if location_id is None:
        return
    get_location(db, location_id)


def create_product(db: Session, payload: schemas.ProductCreate) -> models.Product:
    _ensure_barcode_free(db, payload.barcode)
    _ensure_location_exists(db, payload.primary_location_id)
    product = models.Product(**payload.model_dump())
    db.add(product)
    db.flush()
    return product


def update_product(db: Session, product_id: int, payload: schemas.ProductUpdate) -> models.Product:
    product = get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValueError("No fields provided to update.")
    _reject_nulls(changes, ("name", "barcode", "uom", "unit_value", "min_stock"))
    if "barcode" in changes:
        _ensure_barcode_free(db, changes["barcode"], exclude_id=product.id)
    if "primary_location_id" in changes:
        _ensure_location_exists(db, changes["primary_location_id"])
    for field, value in changes.items():
        setattr(product, field, value)
    db.add(product)
    db.flush()
    return product


def delete_product(db: Session, product_id: int, *, cascade: bool = False) -> None:
    """
    Remove a product.

    Rejected while balances or movements reference it. With `cascade`
    those rows are removed first; every pair of the product goes at once,
    so the remaining ledger still reconciles.
    """
    product = get_product(db, product_id)
    balance_q = db.query(inventory_models.StockBalance).filter(
        inventory_models.StockBalance.product_id == product.id
    )
    movement_q = db.query(inventory_models.StockMovement).filter(
        inventory_models.StockMovement.product_id == product.id
    )
    balance_count = balance_q.count()
    movement_count = movement_q.count()

    if balance_count or movement_count:
        if not cascade:
            raise CatalogConflict(
                f"Product is referenced by {balance_count} balances and {movement_count} movements; "
                "delete with cascade=true to remove them."
            )
        logger.warning(
            "Cascade delete of product ledger rows",
            extra={
                "product_id": product.id,
                "balances_deleted": balance_count,
                "movements_deleted": movement_count,
            },
        )
        movement_q.delete(synchronize_session=False)
        balance_q.delete(synchronize_session=False)

    db.delete(product)
    db.flush()


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


def get_location(db: Session, location_id: int) -> models.Location:
    location = db.query(models.Location).filter(models.Location.id == location_id).first()
    if not location:
        raise CatalogNotFound("Location not found.")
    return location


def list_locations(db: Session, *, warehouse: Optional[str] = None) -> List[models.Location]:
    query = db.query(models.Location)
    if warehouse:
        query = query.filter(models.Location.warehouse == warehouse)
    return query.order_by(models.Location.code.asc()).all()


def _ensure_location_code_free(db: Session, code: str, *, exclude_id: Optional[int] = None) -> None:
    existing = db.query(models.Location).filter(models.Location.code == code).first()
    if existing and existing.id != exclude_id:
        raise CatalogConflict("A location with this code already exists.")


def create_location(db: Session, payload: schemas.LocationCreate) -> models.Location:
    data = payload.model_dump()
    data["code"] = _normalise_code(data["code"])
    _ensure_location_code_free(db, data["code"])
    location = models.Location(**data)
    db.add(location)
    db.flush()
    return location


def update_location(db: Session, location_id: int, payload: schemas.LocationUpdate) -> models.Location:
    location = get_location(db, location_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValueError("No fields provided to update.")
    _reject_nulls(changes, ("code", "warehouse"))
    if "code" in changes:
        changes["code"] = _normalise_code(changes["code"])
        _ensure_location_code_free(db, changes["code"], exclude_id=location.id)
    for field, value in changes.items():
        setattr(location, field, value)
    db.add(location)
    db.flush()
    return location


def delete_location(db: Session, location_id: int, *, cascade: bool = False) -> None:
    """
    Remove a location.

    Rejected while balances or movements reference it. With `cascade`,
    receipts / issues at the location and its balances are removed first.
    Transfers tie the location to another location's balance, so their
    presence blocks the delete even with `cascade`.
    """
    location = get_location(db, location_id)
    movement_filter = or_(
        inventory_models.StockMovement.source_location_id == location.id,
        inventory_models.StockMovement.destination_location_id == location.id,
    )
    balance_q = db.query(inventory_models.StockBalance).filter(
        inventory_models.StockBalance.location_id == location.id
    )
    movement_q = db.query(inventory_models.StockMovement).filter(movement_filter)
    balance_count = balance_q.count()
    movement_count = movement_q.count()

    if balance_count or movement_count:
        if not cascade:
            raise CatalogConflict(
                f"Location is referenced by {balance_count} balances and {movement_count} movements; "
                "delete with cascade=true to remove them."
            )
        transfer_count = movement_q.filter(
            inventory_models.StockMovement.kind == inventory_models.MovementKind.TRANSFER
        ).count()
        if transfer_count:
            raise CatalogConflict(
                f"Location takes part in {transfer_count} transfers; "
                "move the stock out with movements before deleting it."
            )
        logger.warning(
            "Cascade delete of location ledger rows",
            extra={
                "location_id": location.id,
                "balances_deleted": balance_count,
                "movements_deleted": movement_count,
            },
        )
        movement_q.delete(synchronize_session=False)
        balance_q.delete(synchronize_session=False)

    db.query(models.Product).filter(models.Product.primary_location_id == location.id).update(
        {models.Product.primary_location_id: None},
        synchronize_session=False,
    )
    db.delete(location)
    db.flush()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def get_user(db: Session, user_id: int) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise CatalogNotFound("User not found.")
    return user


def list_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.username.asc()).all()


def _ensure_username_free(db: Session, username: str, *, exclude_id: Optional[int] = None) -> None:
    existing = db.query(models.User).filter(models.User.username == username).first()
    if existing and existing.id != exclude_id:
        raise CatalogConflict("Username already taken.")


def create_user(db: Session, payload: schemas.UserCreate) -> models.User:
    _ensure_username_free(db, payload.username)
    user = models.User(
        username=payload.username,
        full_name=payload.full_name,
        role=payload.role,
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


def update_user(db: Session, user_id: int, payload: schemas.UserUpdate) -> models.User:
    user = get_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValueError("No fields provided to update.")
    _reject_nulls(changes, ("username", "full_name", "role", "is_active"))
    if "username" in changes:
        _ensure_username_free(db, changes["username"], exclude_id=user.id)
    for field, value in changes.items():
        setattr(user, field, value)
    db.add(user)
    db.flush()
    return user


def delete_user(db: Session, user_id: int) -> None:
    """
    Remove a user with no recorded movements. Users who have moved stock
    stay on the ledger; deactivate them instead.
    """
    user = get_user(db, user_id)
    movement_count = (
        db.query(inventory_models.StockMovement)
        .filter(inventory_models.StockMovement.actor_id == user.id)
        .count()
    )
    if movement_count:
        raise CatalogConflict(
            f"User is the actor on {movement_count} movements; deactivate the account instead."
        )
    db.delete(user)
    db.flush()


# ---------------------------------------------------------------------------
# Barcode lookup (QR scanner)
# ---------------------------------------------------------------------------


def lookup_by_barcode(db: Session, barcode: str) -> schemas.BarcodeLookupRead:
    product = get_product_by_barcode(db, barcode)
    if not product:
        raise CatalogNotFound("No product found for this code.")

    rows = (
        db.query(inventory_models.StockBalance, models.Location)
        .join(models.Location, models.Location.id == inventory_models.StockBalance.location_id)
        .filter(inventory_models.StockBalance.product_id == product.id)
        .populate_existing()
        .order_by(models.Location.code.asc())
        .all()
    )
    locations = [
        schemas.LocationQuantity(
            location_id=location.id,
            code=location.code,
            description=location.description,
            quantity=balance.quantity,
        )
        for balance, location in rows
    ]
    return schemas.BarcodeLookupRead(
        id=product.id,
        name=product.name,
        description=product.description,
        barcode=product.barcode,
        uom=product.uom,
        total_quantity=sum((Decimal(loc.quantity) for loc in locations), Decimal("0")),
        locations=locations,
    )
