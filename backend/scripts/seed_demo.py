from __future__ import annotations

from decimal import Decimal

from wmsdb.database import WriteSessionLocal
from wmsdb.apps.catalog import models as catalog_models
from wmsdb.apps.catalog import schemas as catalog_schemas
from wmsdb.apps.catalog import services as catalog_services
from wmsdb.apps.inventory import models as inventory_models
from wmsdb.apps.inventory import schemas as inventory_schemas
from wmsdb.apps.inventory import services as inventory_services


def _get_or_create_user(db, username: str, full_name: str, role: catalog_models.UserRole) -> catalog_models.User:
    user = db.query(catalog_models.User).filter(catalog_models.User.username == username).first()
    if user:
        return user
    user = catalog_services.create_user(
        db,
        catalog_schemas.UserCreate(username=username, full_name=full_name, role=role),
    )
    db.commit()
    return user


def _get_or_create_location(db, code: str, description: str) -> catalog_models.Location:
    location = db.query(catalog_models.Location).filter(catalog_models.Location.code == code).first()
    if location:
        return location
    location = catalog_services.create_location(
        db,
        catalog_schemas.LocationCreate(
            code=code,
            description=description,
            kind="SHELF",
            warehouse="MAIN",
            zone=code.split("-")[0],
        ),
    )
    db.commit()
    return location


def _get_or_create_product(db, barcode: str, name: str, unit_value: str, min_stock: str) -> catalog_models.Product:
    product = catalog_services.get_product_by_barcode(db, barcode)
    if product:
        return product
    product = catalog_services.create_product(
        db,
        catalog_schemas.ProductCreate(
            name=name,
            barcode=barcode,
            unit_value=Decimal(unit_value),
            min_stock=Decimal(min_stock),
            category="Demo",
        ),
    )
    db.commit()
    return product


def _seed_movements(db, operator, products, locations) -> None:
    if db.query(inventory_models.StockMovement).first():
        return
    kinds = inventory_models.MovementKind
    bolts, gloves = products
    a1, b2 = locations

    for payload in (
        inventory_schemas.MovementCreate(
            kind=kinds.RECEIPT, product_id=bolts.id, quantity=Decimal("500"),
            destination_location_id=a1.id, external_ref="PO-1001",
        ),
        inventory_schemas.MovementCreate(
            kind=kinds.RECEIPT, product_id=gloves.id, quantity=Decimal("12"),
            destination_location_id=b2.id, external_ref="PO-1002",
        ),
        inventory_schemas.MovementCreate(
            kind=kinds.TRANSFER, product_id=bolts.id, quantity=Decimal("120"),
            source_location_id=a1.id, destination_location_id=b2.id,
        ),
        inventory_schemas.MovementCreate(
            kind=kinds.ISSUE, product_id=gloves.id, quantity=Decimal("4"),
            source_location_id=b2.id, notes="Line 3 restock",
        ),
    ):
        inventory_services.submit_movement(db, payload=payload, actor_id=operator.id)


def main() -> None:
    db = WriteSessionLocal()
    try:
        _get_or_create_user(db, "admin", "Warehouse Admin", catalog_models.UserRole.ADMIN)
        operator = _get_or_create_user(db, "operator", "Demo Operator", catalog_models.UserRole.OPERATOR)
        locations = (
            _get_or_create_location(db, "A-01", "Aisle A, bay 1"),
            _get_or_create_location(db, "B-02", "Aisle B, bay 2"),
        )
        products = (
            _get_or_create_product(db, "7891000100103", "Hex bolt M8", "0.35", "100"),
            _get_or_create_product(db, "7891000200209", "Nitrile gloves (box)", "18.90", "10"),
        )
        _seed_movements(db, operator, products, locations)
    finally:
        db.close()


if __name__ == "__main__":
    main()
