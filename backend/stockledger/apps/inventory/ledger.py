"""
Read-only queries over the inventory logs.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import List, Optional, Union

from sqlalchemy.orm import Session, contains_eager

from . import models
from .services import parse_change_type

RECENT_ENTRIES_LIMIT = 5


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset at bind time; compare in UTC everywhere.
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value


def _range_start(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _range_end(value: Union[date, datetime]) -> datetime:
    # A bare end date covers the whole day.
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def query_ledger_entries(
    db: Session,
    *,
    owner_id: str,
    product_id: Optional[str] = None,
    change_type: Union[str, models.StockChangeType, None] = None,
    start: Union[date, datetime, None] = None,
    end: Union[date, datetime, None] = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[models.InventoryLog]:
    """
    Return the owner's inventory logs, newest first, with the product
    (name, SKU) loaded on each entry.
    """
    query = (
        db.query(models.InventoryLog)
        .join(models.Product, models.InventoryLog.product_id == models.Product.id)
        .options(contains_eager(models.InventoryLog.product))
        .filter(models.Product.owner_id == owner_id)
    )
    if product_id:
        query = query.filter(models.InventoryLog.product_id == product_id)
    if change_type is not None:
        query = query.filter(models.InventoryLog.type == parse_change_type(change_type))
    if start is not None:
        query = query.filter(models.InventoryLog.created_at >= _range_start(start))
    if end is not None:
        query = query.filter(models.InventoryLog.created_at <= _range_end(end))

    query = query.order_by(models.InventoryLog.created_at.desc(), models.InventoryLog.id.desc())
    if skip:
        query = query.offset(skip)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def recent_entries(db: Session, *, product_id: str, limit: int = RECENT_ENTRIES_LIMIT) -> List[models.InventoryLog]:
    return (
        db.query(models.InventoryLog)
        .filter(models.InventoryLog.product_id == product_id)
        .order_by(models.InventoryLog.created_at.desc(), models.InventoryLog.id.desc())
        .limit(limit)
        .all()
    )


def ledger_history(db: Session, *, product_id: str) -> List[models.InventoryLog]:
    """All logs for one product in application order (oldest first)."""
    return (
        db.query(models.InventoryLog)
        .filter(models.InventoryLog.product_id == product_id)
        .order_by(models.InventoryLog.created_at.asc(), models.InventoryLog.id.asc())
        .all()
    )
