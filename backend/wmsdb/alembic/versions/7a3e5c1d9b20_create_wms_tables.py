"""Create catalog and inventory ledger tables.

Revision ID: 7a3e5c1d9b20
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "7a3e5c1d9b20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return bool(insp.has_table(table_name))


user_role_enum = sa.Enum("ADMIN", "OPERATOR", "VIEWER", name="user_role_enum", native_enum=False)
movement_kind_enum = sa.Enum("RECEIPT", "ISSUE", "TRANSFER", name="movement_kind_enum", native_enum=False)


def upgrade() -> None:
    # -------------------------
    # locations
    # -------------------------
    if not _table_exists("locations"):
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(length=32), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("kind", sa.String(length=32), nullable=True),
            sa.Column("warehouse", sa.String(length=64), nullable=False),
            sa.Column("zone", sa.String(length=32), nullable=True),
            sa.Column("level", sa.String(length=16), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_locations_id", "locations", ["id"])
        op.create_index("ix_locations_code", "locations", ["code"], unique=True)

    # -------------------------
    # products
    # -------------------------
    if not _table_exists("products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("barcode", sa.String(length=64), nullable=False),
            sa.Column("uom", sa.String(length=16), nullable=False),
            sa.Column("unit_value", sa.Numeric(14, 2), nullable=False),
            sa.Column("category", sa.String(length=64), nullable=True),
            sa.Column("min_stock", sa.Numeric(14, 3), nullable=False),
            sa.Column("supplier", sa.String(length=128), nullable=True),
            sa.Column(
                "primary_location_id",
                sa.Integer(),
                sa.ForeignKey("locations.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("unit_value >= 0", name="ck_products_unit_value_non_negative"),
            sa.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        )
        op.create_index("ix_products_id", "products", ["id"])
        op.create_index("ix_products_name", "products", ["name"])
        op.create_index("ix_products_barcode", "products", ["barcode"], unique=True)
        op.create_index("ix_products_category", "products", ["category"])

    # -------------------------
    # users
    # -------------------------
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("full_name", sa.String(length=128), nullable=False),
            sa.Column("role", user_role_enum, nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_id", "users", ["id"])
        op.create_index("ix_users_username", "users", ["username"], unique=True)

    # -------------------------
    # stock_balances
    # -------------------------
    if not _table_exists("stock_balances"):
        op.create_table(
            "stock_balances",
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), primary_key=True),
            sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), primary_key=True),
            sa.Column("quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("quantity >= 0", name="ck_stock_balances_quantity_non_negative"),
        )
        op.create_index("ix_stock_balances_location", "stock_balances", ["location_id"])

    # -------------------------
    # stock_movements
    # -------------------------
    if not _table_exists("stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", movement_kind_enum, nullable=False),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
            sa.Column("source_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("destination_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
            sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("external_ref", sa.String(length=128), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        )
        op.create_index("ix_stock_movements_id", "stock_movements", ["id"])
        op.create_index("ix_stock_movements_kind", "stock_movements", ["kind"])
        op.create_index("ix_stock_movements_source_location_id", "stock_movements", ["source_location_id"])
        op.create_index(
            "ix_stock_movements_destination_location_id", "stock_movements", ["destination_location_id"]
        )
        op.create_index("ix_stock_movements_actor_id", "stock_movements", ["actor_id"])
        op.create_index("ix_stock_movements_occurred", "stock_movements", ["occurred_at", "id"])
        op.create_index("ix_stock_movements_product", "stock_movements", ["product_id", "occurred_at"])


def downgrade() -> None:
    for table_name in ("stock_movements", "stock_balances", "users", "products", "locations"):
        if _table_exists(table_name):
            op.drop_table(table_name)
