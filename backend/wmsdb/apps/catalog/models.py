from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from wmsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    VIEWER = "VIEWER"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("unit_value >= 0", name="ck_products_unit_value_non_negative"),
        CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    # Value printed on the shelf label / QR code.
    barcode = Column(String(64), nullable=False, unique=True, index=True)
    uom = Column(String(16), nullable=False, default="UN")
    unit_value = Column(Numeric(14, 2), nullable=False, default=0)
    category = Column(String(64), nullable=True, index=True)
    min_stock = Column(Numeric(14, 3), nullable=False, default=0)
    supplier = Column(String(128), nullable=True)
    primary_location_id = Column(
        Integer,
        ForeignKey("locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    primary_location = relationship("Location", lazy="joined")


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), nullable=False, unique=True, index=True)
    description = Column(String(255), nullable=True)
    kind = Column(String(32), nullable=True)
    warehouse = Column(String(64), nullable=False)
    zone = Column(String(32), nullable=True)
    level = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class User(Base):
    """Operator recorded as the actor on movements."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    full_name = Column(String(128), nullable=False)
    role = Column(
        SAEnum(UserRole, name="user_role_enum", native_enum=False),
        nullable=False,
        default=UserRole.OPERATOR,
    )
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
