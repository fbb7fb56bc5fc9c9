from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import models


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("field is required")
    return value


class ProductCreate(BaseModel):
    name: str
    description: Optional[str] = None
    barcode: str
    uom: str = "UN"
    unit_value: Decimal = Field(default=Decimal("0"), ge=0)
    category: Optional[str] = None
    min_stock: Decimal = Field(default=Decimal("0"), ge=0)
    supplier: Optional[str] = None
    primary_location_id: Optional[int] = None

    @field_validator("name", "barcode", "uom")
    @classmethod
    def _required(cls, v: str) -> str:
        return _strip_required(v)


class ProductUpdate(BaseModel):
    """
    Mutable product fields. Anything else in the body is rejected;
    quantities only change through movements.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    barcode: Optional[str] = None
    uom: Optional[str] = None
    unit_value: Optional[Decimal] = Field(default=None, ge=0)
    category: Optional[str] = None
    min_stock: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    primary_location_id: Optional[int] = None

    @field_validator("name", "barcode", "uom")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class ProductRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    barcode: str
    uom: str
    unit_value: Decimal
    category: Optional[str] = None
    min_stock: Decimal
    supplier: Optional[str] = None
    primary_location_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LocationCreate(BaseModel):
    code: str
    description: Optional[str] = None
    kind: Optional[str] = None
    warehouse: str
    zone: Optional[str] = None
    level: Optional[str] = None

    @field_validator("code", "warehouse")
    @classmethod
    def _required(cls, v: str) -> str:
        return _strip_required(v)


class LocationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: Optional[str] = None
    description: Optional[str] = None
    kind: Optional[str] = None
    warehouse: Optional[str] = None
    zone: Optional[str] = None
    level: Optional[str] = None

    @field_validator("code", "warehouse")
    @classmethod
    def _not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class LocationRead(LocationCreate):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    username: str
    full_name: str
    role: models.UserRole = models.UserRole.OPERATOR

    @field_validator("username", "full_name")
    @classmethod
    def _required(cls, v: str) -> str:
        return _strip_required(v)


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[models.UserRole] = None
    is_active: Optional[bool] = None


class UserRead(UserCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class LocationQuantity(BaseModel):
    location_id: int
    code: str
    description: Optional[str] = None
    quantity: Decimal


class BarcodeLookupRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    barcode: str
    uom: str
    total_quantity: Decimal
    locations: List[LocationQuantity] = Field(default_factory=list)
