from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from . import models

# Upper bound of the INTEGER stock and ledger columns.
MAX_QUANTITY = 2**31 - 1


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    barcode: Optional[str] = None
    description: Optional[str] = None
    min_stock_level: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    initial_stock: int = Field(0, ge=0, le=MAX_QUANTITY)


class ProductRead(BaseModel):
    id: str
    owner_id: str
    name: str
    sku: str
    barcode: Optional[str] = None
    description: Optional[str] = None
    current_stock: int
    min_stock_level: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    min_stock_level: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    current_stock: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    notes: Optional[str] = None


class BarcodeAssignRequest(BaseModel):
    barcode: str = Field(..., min_length=1)


class InventoryLogRead(BaseModel):
    id: int
    product_id: str
    type: models.StockChangeType
    quantity: int
    quantity_change: int
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_by: str
    created_at: datetime
    product_name: Optional[str] = None
    product_sku: Optional[str] = None

    class Config:
        from_attributes = True


class ProductDetailRead(BaseModel):
    product: ProductRead
    recent_logs: List[InventoryLogRead] = Field(default_factory=list)


class StockChangeRequest(BaseModel):
    product_id: str
    type: models.StockChangeType
    quantity: int = Field(..., ge=0, le=MAX_QUANTITY)
    reference: Optional[str] = None
    notes: Optional[str] = None


class StockChangeRead(BaseModel):
    product_id: str
    type: models.StockChangeType
    previous_stock: int
    new_stock: int
    quantity_change: int
    entry_id: int

    class Config:
        from_attributes = True


class BatchScanItem(BaseModel):
    barcode: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0, le=MAX_QUANTITY)
    timestamp: Optional[datetime] = None


class BatchScanRequest(BaseModel):
    items: List[BatchScanItem] = Field(default_factory=list)
    type: models.StockChangeType
    notes: Optional[str] = None
    source: Optional[str] = None


class BatchItemRead(BaseModel):
    lookup_key: str
    success: bool
    product_id: Optional[str] = None
    name: Optional[str] = None
    resulting_stock: Optional[int] = None
    previous_stock: Optional[int] = None
    quantity_change: Optional[int] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class BatchResultRead(BaseModel):
    total: int
    succeeded: int
    failed: int
    message: str
    results: List[BatchItemRead]

    class Config:
        from_attributes = True


class ReconciliationRead(BaseModel):
    product_id: str
    current_stock: int
    ledger_total: int
    entry_count: int
    balanced: bool

    class Config:
        from_attributes = True
