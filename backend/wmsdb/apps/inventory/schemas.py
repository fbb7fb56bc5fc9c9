from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from . import models


class MovementCreate(BaseModel):
    """
    submit-movement request.

    Quantity and location rules are enforced by the movement processor so
    that every caller (HTTP, scripts, tests) gets the same error kinds.
    """

    kind: models.MovementKind
    product_id: int
    quantity: Decimal = Field(allow_inf_nan=True)
    source_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    actor_id: Optional[int] = None
    external_ref: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("external_ref", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class MovementRead(BaseModel):
    id: int
    kind: models.MovementKind
    product_id: int
    quantity: Decimal
    source_location_id: Optional[int] = None
    destination_location_id: Optional[int] = None
    actor_id: int
    external_ref: Optional[str] = None
    notes: Optional[str] = None
    occurred_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class MovementHistoryItem(BaseModel):
    id: int
    kind: models.MovementKind
    product_id: int
    product_name: str
    quantity: Decimal
    source_location_code: Optional[str] = None
    destination_location_code: Optional[str] = None
    actor_username: Optional[str] = None
    external_ref: Optional[str] = None
    occurred_at: datetime


class BalanceRead(BaseModel):
    product_id: int
    location_id: int
    location_code: Optional[str] = None
    quantity: Decimal
    updated_at: Optional[datetime] = None


class BalanceBreakdown(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    total_quantity: Decimal
    locations: List[BalanceRead] = Field(default_factory=list)


class LowStockItem(BaseModel):
    product_id: int
    product_name: str
    barcode: str
    current_stock: Decimal
    min_stock: Decimal


class DashboardSnapshot(BaseModel):
    total_products: int
    total_valued_stock: Decimal
    low_stock_count: int
    movements_today: int
