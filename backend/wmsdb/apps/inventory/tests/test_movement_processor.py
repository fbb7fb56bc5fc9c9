from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from wmsdb.apps.catalog import models as catalog_models
from wmsdb.apps.inventory import balances, movement_log
from wmsdb.apps.inventory import models as inventory_models
from wmsdb.apps.inventory import schemas as inventory_schemas
from wmsdb.apps.inventory import services as inventory_services
from wmsdb.apps.inventory.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidLocationPairError,
    InvalidQuantityError,
    NotFoundError,
    StorageUnavailableError,
)

RECEIPT = inventory_models.MovementKind.RECEIPT
ISSUE = inventory_models.MovementKind.ISSUE
TRANSFER = inventory_models.MovementKind.TRANSFER


def _create_user(db, username: str = "operator", is_active: bool = True) -> catalog_models.User:
    user = catalog_models.User(
        username=username,
        full_name="Stock Operator",
        role=catalog_models.UserRole.OPERATOR,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _create_location(db, code: str) -> catalog_models.Location:
    location = catalog_models.Location(code=code, warehouse="MAIN")
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


def _create_product(db, barcode: str = "P-1", min_stock: str = "0") -> catalog_models.Product:
    product = catalog_models.Product(
        name=f"Product {barcode}",
        barcode=barcode,
        unit_value=Decimal("1.00"),
        min_stock=Decimal(min_stock),
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def _payload(kind, product, quantity, source=None, destination=None, **kwargs):
    return inventory_schemas.MovementCreate(
        kind=kind,
        product_id=product.id,
        quantity=quantity,
        source_location_id=source.id if source else None,
        destination_location_id=destination.id if destination else None,
        **kwargs,
    )


def _submit(db, actor, kind, product, quantity, source=None, destination=None):
    return inventory_services.submit_movement(
        db,
        payload=_payload(kind, product, Decimal(quantity), source=source, destination=destination),
        actor_id=actor.id,
    )


def _balance(db, product, location) -> Decimal:
    return balances.get_balance(db, product_id=product.id, location_id=location.id)


def _ledger_count(db) -> int:
    return db.query(inventory_models.StockMovement).count()


@pytest.fixture()
def warehouse(db_session):
    actor = _create_user(db_session)
    a1 = _create_location(db_session, "A1")
    b2 = _create_location(db_session, "B2")
    product = _create_product(db_session)
    return actor, product, a1, b2


def test_receipt_creates_balance_and_ledger_entry(db_session, warehouse):
    actor, product, a1, _ = warehouse

    entry = inventory_services.submit_movement(
        db_session,
        payload=_payload(RECEIPT, product, Decimal("10"), destination=a1, external_ref="PO-7"),
        actor_id=actor.id,
    )

    assert _balance(db_session, product, a1) == Decimal("10")
    assert entry.id is not None
    assert entry.kind == RECEIPT
    assert entry.quantity == Decimal("10")
    assert entry.destination_location_id == a1.id
    assert entry.source_location_id is None
    assert entry.actor_id == actor.id
    assert entry.external_ref == "PO-7"
    assert entry.occurred_at is not None


def test_issue_then_rejected_issue(db_session, warehouse):
    actor, product, a1, _ = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("10"), destination=a1), actor_id=actor.id
    )
    inventory_services.submit_movement(
        db_session, payload=_payload(ISSUE, product, Decimal("4"), source=a1), actor_id=actor.id
    )
    assert _balance(db_session, product, a1) == Decimal("6")

    with pytest.raises(InsufficientStockError) as exc:
        inventory_services.submit_movement(
            db_session, payload=_payload(ISSUE, product, Decimal("7"), source=a1), actor_id=actor.id
        )

    assert exc.value.available == Decimal("6")
    assert exc.value.requested == Decimal("7")
    assert exc.value.as_detail() == {
        "code": "insufficient_stock",
        "message": exc.value.message,
        "retryable": False,
    }
    assert _balance(db_session, product, a1) == Decimal("6")
    assert _ledger_count(db_session) == 2


def test_transfer_moves_stock_and_records_one_entry(db_session, warehouse):
    actor, product, a1, b2 = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("6"), destination=a1), actor_id=actor.id
    )

    entry = inventory_services.submit_movement(
        db_session,
        payload=_payload(TRANSFER, product, Decimal("6"), source=a1, destination=b2),
        actor_id=actor.id,
    )

    assert _balance(db_session, product, a1) == Decimal("0")
    assert _balance(db_session, product, b2) == Decimal("6")
    assert entry.source_location_id == a1.id
    assert entry.destination_location_id == b2.id
    assert _ledger_count(db_session) == 2


def test_issue_from_location_never_received(db_session, warehouse):
    actor, product, _, b2 = warehouse

    with pytest.raises(InsufficientStockError):
        inventory_services.submit_movement(
            db_session, payload=_payload(ISSUE, product, Decimal("1"), source=b2), actor_id=actor.id
        )

    assert _ledger_count(db_session) == 0
    assert db_session.query(inventory_models.StockBalance).count() == 0


@pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-3"), Decimal("NaN"), Decimal("Infinity"), "ten"])
def test_invalid_quantity(db_session, warehouse, quantity):
    actor, product, a1, _ = warehouse
    # Scripts can hand the processor unvalidated payloads.
    payload = inventory_schemas.MovementCreate.model_construct(
        kind=RECEIPT,
        product_id=product.id,
        quantity=quantity,
        destination_location_id=a1.id,
    )

    with pytest.raises(InvalidQuantityError):
        inventory_services.submit_movement(db_session, payload=payload, actor_id=actor.id)
    assert _ledger_count(db_session) == 0


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_quantity_reaches_processor(db_session, warehouse, raw):
    actor, product, a1, _ = warehouse
    payload = inventory_schemas.MovementCreate(
        kind=RECEIPT, product_id=product.id, quantity=raw, destination_location_id=a1.id
    )

    with pytest.raises(InvalidQuantityError):
        inventory_services.submit_movement(db_session, payload=payload, actor_id=actor.id)
    assert _ledger_count(db_session) == 0


def test_schema_still_rejects_non_numeric_quantity():
    with pytest.raises(ValidationError):
        inventory_schemas.MovementCreate(
            kind=RECEIPT, product_id=1, quantity="ten", destination_location_id=1
        )


def test_fractional_issues_drain_balance_exactly(db_session, warehouse):
    actor, product, a1, _ = warehouse

    _submit(db_session, actor, RECEIPT, product, "0.3", destination=a1)
    _submit(db_session, actor, ISSUE, product, "0.1", source=a1)
    assert balances.get_balance(db_session, product_id=product.id, location_id=a1.id) == Decimal("0.2")

    _submit(db_session, actor, ISSUE, product, "0.2", source=a1)

    assert balances.get_balance(db_session, product_id=product.id, location_id=a1.id) == Decimal("0")
    assert _ledger_count(db_session) == 3


def test_transfers_lock_in_ascending_location_order(db_session, warehouse, monkeypatch):
    actor, product, a1, b2 = warehouse
    low, high = sorted([a1, b2], key=lambda loc: loc.id)
    _submit(db_session, actor, RECEIPT, product, "10", destination=low)
    _submit(db_session, actor, RECEIPT, product, "10", destination=high)

    locked = []
    real_execute = db_session.execute

    def _recording_execute(statement, *args, **kwargs):
        if getattr(statement, "_for_update_arg", None) is not None:
            params = statement.compile().params
            locked.append(next(v for k, v in params.items() if k.startswith("location_id")))
        return real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", _recording_execute)

    _submit(db_session, actor, TRANSFER, product, "1", source=low, destination=high)
    assert locked == [low.id, high.id]

    locked.clear()
    _submit(db_session, actor, TRANSFER, product, "1", source=high, destination=low)
    assert locked == [low.id, high.id]


@pytest.mark.parametrize(
    "kind, use_source, use_destination, same",
    [
        (RECEIPT, True, True, False),
        (RECEIPT, False, False, False),
        (ISSUE, False, True, False),
        (ISSUE, True, True, False),
        (TRANSFER, True, False, False),
        (TRANSFER, False, True, False),
        (TRANSFER, True, True, True),
    ],
)
def test_invalid_location_pair(db_session, warehouse, kind, use_source, use_destination, same):
    actor, product, a1, b2 = warehouse
    source = a1 if use_source else None
    destination = (a1 if same else b2) if use_destination else None

    with pytest.raises(InvalidLocationPairError):
        inventory_services.submit_movement(
            db_session,
            payload=_payload(kind, product, Decimal("1"), source=source, destination=destination),
            actor_id=actor.id,
        )
    assert _ledger_count(db_session) == 0


def test_quantity_checked_before_locations(db_session, warehouse):
    actor, product, _, _ = warehouse

    with pytest.raises(InvalidQuantityError):
        inventory_services.submit_movement(
            db_session, payload=_payload(TRANSFER, product, Decimal("0")), actor_id=actor.id
        )


def test_unknown_references_are_not_found(db_session, warehouse):
    actor, product, a1, _ = warehouse

    missing_product = inventory_schemas.MovementCreate(
        kind=RECEIPT, product_id=9999, quantity=Decimal("1"), destination_location_id=a1.id
    )
    missing_location = inventory_schemas.MovementCreate(
        kind=RECEIPT, product_id=product.id, quantity=Decimal("1"), destination_location_id=9999
    )

    with pytest.raises(NotFoundError):
        inventory_services.submit_movement(db_session, payload=missing_product, actor_id=actor.id)
    with pytest.raises(NotFoundError):
        inventory_services.submit_movement(db_session, payload=missing_location, actor_id=actor.id)
    with pytest.raises(NotFoundError):
        inventory_services.submit_movement(
            db_session, payload=_payload(RECEIPT, product, Decimal("1"), destination=a1), actor_id=9999
        )
    assert _ledger_count(db_session) == 0


def test_actor_required_and_must_be_active(db_session, warehouse):
    _, product, a1, _ = warehouse
    inactive = _create_user(db_session, username="gone", is_active=False)

    with pytest.raises(NotFoundError):
        inventory_services.submit_movement(
            db_session, payload=_payload(RECEIPT, product, Decimal("1"), destination=a1)
        )
    with pytest.raises(NotFoundError):
        inventory_services.submit_movement(
            db_session,
            payload=_payload(RECEIPT, product, Decimal("1"), destination=a1),
            actor_id=inactive.id,
        )


def test_actor_taken_from_payload_when_not_passed(db_session, warehouse):
    actor, product, a1, _ = warehouse

    entry = inventory_services.submit_movement(
        db_session,
        payload=_payload(RECEIPT, product, Decimal("2"), destination=a1, actor_id=actor.id),
    )
    assert entry.actor_id == actor.id


def test_rejection_is_idempotent(db_session, warehouse):
    actor, product, a1, _ = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("3"), destination=a1), actor_id=actor.id
    )
    payload = _payload(ISSUE, product, Decimal("5"), source=a1)

    for _ in range(3):
        with pytest.raises(InsufficientStockError):
            inventory_services.submit_movement(db_session, payload=payload, actor_id=actor.id)

    assert _balance(db_session, product, a1) == Decimal("3")
    assert _ledger_count(db_session) == 1


def test_failure_after_balance_update_rolls_back_everything(db_session, warehouse, monkeypatch):
    actor, product, a1, b2 = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("8"), destination=a1), actor_id=actor.id
    )

    def _fail_append(db, movement):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(movement_log, "append", _fail_append)

    with pytest.raises(RuntimeError):
        inventory_services.submit_movement(
            db_session,
            payload=_payload(TRANSFER, product, Decimal("5"), source=a1, destination=b2),
            actor_id=actor.id,
        )

    assert _balance(db_session, product, a1) == Decimal("8")
    assert _balance(db_session, product, b2) == Decimal("0")
    assert _ledger_count(db_session) == 1


def test_storage_outage_is_classified_and_rolled_back(db_session, warehouse, monkeypatch):
    actor, product, a1, _ = warehouse

    def _fail_append(db, movement):
        raise OperationalError("INSERT INTO stock_movements", {}, sqlite3.OperationalError("disk I/O error"))

    monkeypatch.setattr(movement_log, "append", _fail_append)

    with pytest.raises(StorageUnavailableError) as exc:
        inventory_services.submit_movement(
            db_session, payload=_payload(RECEIPT, product, Decimal("4"), destination=a1), actor_id=actor.id
        )

    assert exc.value.retryable is True
    assert exc.value.as_detail()["code"] == "storage_unavailable"
    assert _balance(db_session, product, a1) == Decimal("0")
    assert _ledger_count(db_session) == 0


def test_lock_contention_is_a_retryable_conflict(db_session, warehouse, monkeypatch):
    actor, product, a1, _ = warehouse

    def _fail_append(db, movement):
        raise OperationalError("INSERT INTO stock_movements", {}, sqlite3.OperationalError("database is locked"))

    monkeypatch.setattr(movement_log, "append", _fail_append)

    with pytest.raises(ConflictError) as exc:
        inventory_services.submit_movement(
            db_session, payload=_payload(RECEIPT, product, Decimal("4"), destination=a1), actor_id=actor.id
        )
    assert exc.value.retryable is True


def test_check_constraint_backstop_maps_to_insufficient_stock(db_session, warehouse):
    actor, product, a1, _ = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("1"), destination=a1), actor_id=actor.id
    )

    with pytest.raises(IntegrityError) as exc:
        db_session.execute(
            update(inventory_models.StockBalance)
            .where(inventory_models.StockBalance.product_id == product.id)
            .values(quantity=Decimal("-1"))
        )
    db_session.rollback()

    classified = inventory_services.classify_storage_error(exc.value)
    assert isinstance(classified, InsufficientStockError)
    assert _balance(db_session, product, a1) == Decimal("1")


def test_explicit_occurred_at_is_kept(db_session, warehouse):
    actor, product, a1, _ = warehouse
    when = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)

    entry = inventory_services.submit_movement(
        db_session,
        payload=_payload(RECEIPT, product, Decimal("1"), destination=a1),
        actor_id=actor.id,
        occurred_at=when,
    )
    assert entry.occurred_at == when


def test_read_balance_single_location_and_breakdown(db_session, warehouse):
    actor, product, a1, b2 = warehouse
    inventory_services.submit_movement(
        db_session, payload=_payload(RECEIPT, product, Decimal("10"), destination=a1), actor_id=actor.id
    )
    inventory_services.submit_movement(
        db_session,
        payload=_payload(TRANSFER, product, Decimal("3.5"), source=a1, destination=b2),
        actor_id=actor.id,
    )

    single = inventory_services.read_balance(db_session, product_id=product.id, location_id=b2.id)
    assert single.total_quantity == Decimal("3.5")
    assert single.location_id == b2.id

    breakdown = inventory_services.read_balance(db_session, product_id=product.id)
    assert breakdown.total_quantity == Decimal("10")
    assert [(row.location_code, row.quantity) for row in breakdown.locations] == [
        ("A1", Decimal("6.5")),
        ("B2", Decimal("3.5")),
    ]

    empty = inventory_services.read_balance(
        db_session, product_id=_create_product(db_session, barcode="P-2").id
    )
    assert empty.total_quantity == Decimal("0")
    assert empty.locations == []


def test_read_balance_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        inventory_services.read_balance(db_session, product_id=42)
