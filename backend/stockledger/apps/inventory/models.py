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
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from stockledger.database import Base
from stockledger.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockChangeType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    STOCKTAKE = "stocktake"


class Product(Base):
    """
    Product stock record.

    `current_stock` is only ever written through the stock mutator in
    `services.py`; it must equal the sum of `quantity_change` over the
    product's inventory logs.
    """

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("owner_id", "sku", name="uq_products_owner_sku"),
        Index("ix_products_owner_barcode", "owner_id", "barcode"),
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
        CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_level_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    owner_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=False, index=True)
    barcode = Column(String(128), nullable=True)
    description = Column(Text, nullable=True)

    current_stock = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    logs = relationship(
        "InventoryLog",
        back_populates="product",
        passive_deletes=True,
    )


class InventoryLog(Base):
    """
    One immutable quantity change.

    `quantity` is the product's stock level after the change was applied;
    `quantity_change` is the signed delta that was applied.
    """

    __tablename__ = "inventory_logs"
    __table_args__ = (
        Index("ix_inventory_logs_product_created", "product_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        SAEnum(
            StockChangeType,
            name="stock_change_type_enum",
            native_enum=False,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        index=True,
    )
    quantity = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False)
    reference = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    product = relationship("Product", back_populates="logs", lazy="joined")

    @property
    def product_name(self):
        return self.product.name if self.product is not None else None

    @property
    def product_sku(self):
        return self.product.sku if self.product is not None else None
