from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from wmsdb.apps.catalog import models as catalog_models
from wmsdb.apps.catalog import schemas as catalog_schemas
from wmsdb.apps.catalog import services as catalog_services
from wmsdb.apps.inventory import balances
from wmsdb.apps.inventory import models as inventory_models
from wmsdb.apps.inventory import schemas as inventory_schemas
from wmsdb.apps.inventory import services as inventory_services


def _create_user(db, username: str = "operator", role=catalog_models.UserRole.OPERATOR) -> catalog_models.User:
    user = catalog_services.create_user(
        db,
        catalog_schemas.UserCreate(username=username, full_name=username.title(), role=role),
    )
    db.commit()
    return user


def _create_location(db, code: str = "A-01") -> catalog_models.Location:
    location = catalog_services.create_location(
        db,
        catalog_schemas.LocationCreate(code=code, description=f"Bay {code}", warehouse="MAIN"),
    )
    db.commit()
    return location


def _create_product(db, barcode: str = "789100", name: str = "Hex bolt", **kwargs) -> catalog_models.Product:
    product = catalog_services.create_product(
        db,
        catalog_schemas.ProductCreate(name=name, barcode=barcode, **kwargs),
    )
    db.commit()
    return product


def _move(db, actor, kind, product, quantity, source=None, destination=None):
    return inventory_services.submit_movement(
        db,
        payload=inventory_schemas.MovementCreate(
            kind=kind,
            product_id=product.id,
            quantity=Decimal(quantity),
            source_location_id=source.id if source else None,
            destination_location_id=destination.id if destination else None,
        ),
        actor_id=actor.id,
    )


def test_create_product_defaults_and_duplicate_barcode(db_session):
    product = _create_product(db_session, barcode=" 123 ", unit_value=Decimal("2.50"))

    assert product.id is not None
    assert product.barcode == "123"
    assert product.uom == "UN"
    assert Decimal(product.min_stock) == 0

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.create_product(
            db_session,
            catalog_schemas.ProductCreate(name="Other", barcode="123"),
        )


def test_create_product_with_unknown_primary_location(db_session):
    with pytest.raises(catalog_services.CatalogNotFound):
        catalog_services.create_product(
            db_session,
            catalog_schemas.ProductCreate(name="Bolt", barcode="1", primary_location_id=999),
        )


def test_product_schema_rejects_negative_values_and_blank_names():
    with pytest.raises(ValidationError):
        catalog_schemas.ProductCreate(name="Bolt", barcode="1", unit_value=Decimal("-1"))
    with pytest.raises(ValidationError):
        catalog_schemas.ProductCreate(name="   ", barcode="1")


def test_list_products_ordered_by_name_and_filtered(db_session):
    _create_product(db_session, barcode="2", name="Washer", category="Hardware")
    _create_product(db_session, barcode="1", name="Anchor", category="Hardware")
    _create_product(db_session, barcode="3", name="Gloves", category="PPE")

    assert [p.name for p in catalog_services.list_products(db_session)] == ["Anchor", "Gloves", "Washer"]
    assert [p.name for p in catalog_services.list_products(db_session, category="Hardware")] == [
        "Anchor",
        "Washer",
    ]


def test_update_product_applies_only_sent_fields(db_session):
    product = _create_product(db_session, barcode="1", name="Bolt", supplier="ACME")

    updated = catalog_services.update_product(
        db_session,
        product.id,
        catalog_schemas.ProductUpdate(min_stock=Decimal("25")),
    )
    db_session.commit()

    assert Decimal(updated.min_stock) == Decimal("25")
    assert updated.name == "Bolt"
    assert updated.supplier == "ACME"


def test_update_product_rejects_unknown_fields_and_stock():
    with pytest.raises(ValidationError):
        catalog_schemas.ProductUpdate(quantity=Decimal("10"))
    with pytest.raises(ValidationError):
        catalog_schemas.ProductUpdate(colour="red")


def test_update_product_rejects_clearing_required_fields(db_session):
    product = _create_product(db_session, barcode="1")

    with pytest.raises(ValueError):
        catalog_services.update_product(db_session, product.id, catalog_schemas.ProductUpdate(name=None))
    with pytest.raises(ValueError):
        catalog_services.update_product(db_session, product.id, catalog_schemas.ProductUpdate())


def test_update_product_barcode_conflict(db_session):
    _create_product(db_session, barcode="1")
    other = _create_product(db_session, barcode="2")

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.update_product(db_session, other.id, catalog_schemas.ProductUpdate(barcode="1"))


def test_location_codes_normalised_and_unique(db_session):
    location = _create_location(db_session, code=" a-01 ")
    assert location.code == "A-01"

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.create_location(
            db_session,
            catalog_schemas.LocationCreate(code="A-01", warehouse="MAIN"),
        )


def test_delete_product_blocked_by_ledger_rows_unless_cascade(db_session):
    actor = _create_user(db_session)
    location = _create_location(db_session)
    product = _create_product(db_session)
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "5", destination=location)

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.delete_product(db_session, product.id)
    db_session.rollback()

    catalog_services.delete_product(db_session, product.id, cascade=True)
    db_session.commit()

    assert db_session.query(catalog_models.Product).count() == 0
    assert db_session.query(inventory_models.StockBalance).count() == 0
    assert db_session.query(inventory_models.StockMovement).count() == 0


def test_delete_unreferenced_product(db_session):
    product = _create_product(db_session)

    catalog_services.delete_product(db_session, product.id)
    db_session.commit()

    with pytest.raises(catalog_services.CatalogNotFound):
        catalog_services.get_product(db_session, product.id)


def test_delete_location_cascade_keeps_other_locations_consistent(db_session):
    actor = _create_user(db_session)
    a1 = _create_location(db_session, "A-01")
    b2 = _create_location(db_session, "B-02")
    product = _create_product(db_session)
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "5", destination=a1)
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "3", destination=b2)

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.delete_location(db_session, a1.id)
    db_session.rollback()

    catalog_services.delete_location(db_session, a1.id, cascade=True)
    db_session.commit()

    assert balances.get_balance(db_session, product_id=product.id, location_id=b2.id) == Decimal("3")
    remaining = db_session.query(inventory_models.StockMovement).all()
    assert [m.destination_location_id for m in remaining] == [b2.id]


def test_delete_location_with_transfers_rejected_even_with_cascade(db_session):
    actor = _create_user(db_session)
    a1 = _create_location(db_session, "A-01")
    b2 = _create_location(db_session, "B-02")
    product = _create_product(db_session)
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "5", destination=a1)
    _move(db_session, actor, inventory_models.MovementKind.TRANSFER, product, "2", source=a1, destination=b2)

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.delete_location(db_session, a1.id, cascade=True)
    db_session.rollback()

    assert balances.get_balance(db_session, product_id=product.id, location_id=a1.id) == Decimal("3")
    assert db_session.query(inventory_models.StockMovement).count() == 2


def test_delete_location_clears_primary_location(db_session):
    location = _create_location(db_session)
    product = _create_product(db_session, primary_location_id=location.id)

    catalog_services.delete_location(db_session, location.id)
    db_session.commit()
    db_session.expire_all()

    assert catalog_services.get_product(db_session, product.id).primary_location_id is None


def test_delete_user_rejected_while_movements_reference_it(db_session):
    actor = _create_user(db_session)
    idle = _create_user(db_session, username="idle")
    location = _create_location(db_session)
    product = _create_product(db_session)
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "1", destination=location)

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.delete_user(db_session, actor.id)
    db_session.rollback()

    catalog_services.delete_user(db_session, idle.id)
    db_session.commit()
    assert [u.username for u in catalog_services.list_users(db_session)] == ["operator"]


def test_deactivate_user_and_duplicate_username(db_session):
    user = _create_user(db_session)
    _create_user(db_session, username="viewer", role=catalog_models.UserRole.VIEWER)

    updated = catalog_services.update_user(db_session, user.id, catalog_schemas.UserUpdate(is_active=False))
    db_session.commit()
    assert updated.is_active is False

    with pytest.raises(catalog_services.CatalogConflict):
        catalog_services.update_user(db_session, user.id, catalog_schemas.UserUpdate(username="viewer"))


def test_lookup_by_barcode_returns_breakdown(db_session):
    actor = _create_user(db_session)
    a1 = _create_location(db_session, "A-01")
    b2 = _create_location(db_session, "B-02")
    product = _create_product(db_session, barcode="QR-42", name="Gloves")
    _move(db_session, actor, inventory_models.MovementKind.RECEIPT, product, "10", destination=a1)
    _move(db_session, actor, inventory_models.MovementKind.TRANSFER, product, "4", source=a1, destination=b2)

    result = catalog_services.lookup_by_barcode(db_session, "QR-42")

    assert result.id == product.id
    assert result.total_quantity == Decimal("10")
    assert [(loc.code, loc.quantity) for loc in result.locations] == [
        ("A-01", Decimal("6")),
        ("B-02", Decimal("4")),
    ]


def test_lookup_by_unknown_barcode(db_session):
    with pytest.raises(catalog_services.CatalogNotFound):
        catalog_services.lookup_by_barcode(db_session, "nope")
