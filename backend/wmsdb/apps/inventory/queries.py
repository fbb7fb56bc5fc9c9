"""
Dashboard aggregations. Read-only, lock-free, safe to re-run at any time.
"""

from __future__ import annotations

import os
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from wmsdb.apps.catalog import models as catalog_models

from . import balances, models, movement_log, schemas

# Calendar day used by "movements today".
REPORTING_TIMEZONE = os.getenv("WMS_TIMEZONE", "UTC")
RECENT_ACTIVITY_LIMIT = int(os.getenv("WMS_RECENT_ACTIVITY_LIMIT", "5"))

_ZERO = Decimal("0")


def total_products(db: Session) -> int:
    return db.query(func.count(catalog_models.Product.id)).scalar() or 0


def total_valued_stock(db: Session) -> Decimal:
    """Σ quantity × unit value, one term per balance row."""
    rows = db.execute(
        select(models.StockBalance.quantity, catalog_models.Product.unit_value).join(
            catalog_models.Product,
            catalog_models.Product.id == models.StockBalance.product_id,
        )
    ).all()
    total = _ZERO
    for quantity, unit_value in rows:
        total += Decimal(quantity) * Decimal(unit_value or 0)
    return total


def total_valued_stock_by_product(db: Session) -> Decimal:
    """Same total, summed per product first."""
    totals = balances.product_totals(db)
    if not totals:
        return _ZERO
    unit_values = dict(
        db.execute(
            select(catalog_models.Product.id, catalog_models.Product.unit_value).where(
                catalog_models.Product.id.in_(list(totals))
            )
        ).all()
    )
    total = _ZERO
    for product_id, quantity in totals.items():
        total += quantity * Decimal(unit_values.get(product_id) or 0)
    return total


def low_stock(db: Session) -> List[schemas.LowStockItem]:
    """
    Products whose total across all locations is at or below min_stock,
    lowest quantity first. Products never received count as zero.
    """
    totals = balances.product_totals(db)
    items = []
    for product in db.query(catalog_models.Product).all():
        current = totals.get(product.id, _ZERO)
        minimum = Decimal(product.min_stock or 0)
        if current <= minimum:
            items.append(
                schemas.LowStockItem(
                    product_id=product.id,
                    product_name=product.name,
                    barcode=product.barcode,
                    current_stock=current,
                    min_stock=minimum,
                )
            )
    items.sort(key=lambda item: (item.current_stock, item.product_name, item.product_id))
    return items


def day_bounds(now: datetime, tz_name: str) -> Tuple[datetime, datetime]:
    """UTC [start, end) of the calendar day containing `now` in `tz_name`."""
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_day = now.astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def movements_today(
    db: Session,
    *,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> int:
    start, end = day_bounds(now or datetime.now(timezone.utc), tz_name or REPORTING_TIMEZONE)
    return movement_log.count_between(db, start=start, end=end)


def to_history_items(entries: Iterable[models.StockMovement]) -> List[schemas.MovementHistoryItem]:
    return [
        schemas.MovementHistoryItem(
            id=entry.id,
            kind=entry.kind,
            product_id=entry.product_id,
            product_name=entry.product.name if entry.product else "",
            quantity=entry.quantity,
            source_location_code=entry.source_location.code if entry.source_location else None,
            destination_location_code=entry.destination_location.code if entry.destination_location else None,
            actor_username=entry.actor.username if entry.actor else None,
            external_ref=entry.external_ref,
            occurred_at=entry.occurred_at,
        )
        for entry in entries
    ]


def recent_activity(db: Session, *, limit: Optional[int] = None) -> List[schemas.MovementHistoryItem]:
    listing = movement_log.list_movements(db, limit=limit or RECENT_ACTIVITY_LIMIT, newest_first=True)
    return to_history_items(listing)


def dashboard_snapshot(db: Session, *, now: Optional[datetime] = None) -> schemas.DashboardSnapshot:
    return schemas.DashboardSnapshot(
        total_products=total_products(db),
        total_valued_stock=total_valued_stock(db),
        low_stock_count=len(low_stock(db)),
        movements_today=movements_today(db, now=now),
    )
