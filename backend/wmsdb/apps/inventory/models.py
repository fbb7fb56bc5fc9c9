from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from wmsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Name of the storage-level backstop; the processor maps its violation to
# InsufficientStockError.
BALANCE_NON_NEGATIVE_CHECK = "ck_stock_balances_quantity_non_negative"


class MovementKind(str, enum.Enum):
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"


class StockBalance(Base):
    __tablename__ = "stock_balances"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name=BALANCE_NON_NEGATIVE_CHECK),
        Index("ix_stock_balances_location", "location_id"),
    )

    product_id = Column(Integer, ForeignKey("products.id"), primary_key=True)
    location_id = Column(Integer, ForeignKey("locations.id"), primary_key=True)
    quantity = Column(Numeric(14, 3), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    product = relationship("Product", lazy="joined")
    location = relationship("Location", lazy="joined")


class StockMovement(Base):
    """Ledger entry. Written once by the movement processor, never edited."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        Index("ix_stock_movements_occurred", "occurred_at", "id"),
        Index("ix_stock_movements_product", "product_id", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(
        SAEnum(MovementKind, name="movement_kind_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    source_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    destination_location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    external_ref = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    product = relationship("Product", lazy="joined")
    source_location = relationship("Location", foreign_keys=[source_location_id], lazy="joined")
    destination_location = relationship("Location", foreign_keys=[destination_location_id], lazy="joined")
    actor = relationship("User", lazy="joined")
