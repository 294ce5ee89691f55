"""Create products and inventory_logs.

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "a1f3c5e7b9d2"
down_revision = None
branch_labels = None
depends_on = None

STOCK_CHANGE_TYPES = ("in", "out", "stocktake")


def _table_exists(table_name: str) -> bool:
    return bool(inspect(op.get_bind()).has_table(table_name))


def upgrade() -> None:
    if not _table_exists("products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("owner_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=False),
            sa.Column("barcode", sa.String(length=128), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("owner_id", "sku", name="uq_products_owner_sku"),
            sa.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
            sa.CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_level_non_negative"),
        )
        op.create_index("ix_products_owner_id", "products", ["owner_id"])
        op.create_index("ix_products_sku", "products", ["sku"])
        op.create_index("ix_products_owner_barcode", "products", ["owner_id", "barcode"])

    if not _table_exists("inventory_logs"):
        op.create_table(
            "inventory_logs",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "product_id",
                sa.String(length=36),
                sa.ForeignKey("products.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "type",
                sa.Enum(*STOCK_CHANGE_TYPES, name="stock_change_type_enum", native_enum=False),
                nullable=False,
            ),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("quantity_change", sa.Integer(), nullable=False),
            sa.Column("reference", sa.String(length=255), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_inventory_logs_product_id", "inventory_logs", ["product_id"])
        op.create_index("ix_inventory_logs_type", "inventory_logs", ["type"])
        op.create_index("ix_inventory_logs_created_at", "inventory_logs", ["created_at"])
        op.create_index("ix_inventory_logs_product_created", "inventory_logs", ["product_id", "created_at"])


def downgrade() -> None:
    # Logs reference products, so they go first.
    if _table_exists("inventory_logs"):
        op.drop_index("ix_inventory_logs_product_created", table_name="inventory_logs")
        op.drop_index("ix_inventory_logs_created_at", table_name="inventory_logs")
        op.drop_index("ix_inventory_logs_type", table_name="inventory_logs")
        op.drop_index("ix_inventory_logs_product_id", table_name="inventory_logs")
        op.drop_table("inventory_logs")
    if _table_exists("products"):
        op.drop_index("ix_products_owner_barcode", table_name="products")
        op.drop_index("ix_products_sku", table_name="products")
        op.drop_index("ix_products_owner_id", table_name="products")
        op.drop_table("products")
