from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple, TypeVar, Union

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from . import models, schemas

logger = logging.getLogger(__name__)

T = TypeVar("T")

CAS_MAX_RETRIES = int(os.getenv("STOCK_CAS_MAX_RETRIES", "3"))
DEFAULT_MIN_STOCK_LEVEL = int(os.getenv("DEFAULT_MIN_STOCK_LEVEL", "5"))

MAX_QUANTITY = schemas.MAX_QUANTITY

DEFAULT_REFERENCE = "Manual Adjustment"
MANUAL_ADJUSTMENT_NOTES = "Stock manually adjusted"
INITIAL_STOCK_REFERENCE = "Initial Stock"
INITIAL_STOCK_NOTES = "Initial inventory setup"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LedgerError(Exception):
    """Base class for stock ledger business-rule failures."""

    default_message = "Stock ledger operation failed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(LedgerError):
    default_message = "Product not found"


class InvalidInputError(LedgerError):
    default_message = "Invalid request data"


class InvalidQuantityError(InvalidInputError):
    default_message = "Invalid quantity"


class InvalidOperationTypeError(InvalidInputError):
    default_message = "Type must be one of 'in', 'out' or 'stocktake'"


class EmptyBatchError(InvalidInputError):
    default_message = "No items provided"


class DuplicateProductError(InvalidInputError):
    default_message = "Product already exists"


class InsufficientStockError(LedgerError):
    """Raised when an `out` change would take stock below zero."""

    def __init__(self, *, current: int, requested: int) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Insufficient stock. Current: {current}, Requested: {requested}")


class StockConflictError(LedgerError):
    """Raised when the stock row kept changing under us for every retry."""

    default_message = "Stock was modified concurrently; please retry."


@dataclass
class StockChangeResult:
    product_id: str
    type: models.StockChangeType
    previous_stock: int
    new_stock: int
    quantity_change: int
    entry_id: int


@dataclass
class ReconciliationResult:
    product_id: str
    current_stock: int
    ledger_total: int
    entry_count: int

    @property
    def balanced(self) -> bool:
        return self.current_stock == self.ledger_total


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_code(value: Optional[str]) -> str:
    return (value or "").strip()


def parse_change_type(value: Union[str, models.StockChangeType, None]) -> models.StockChangeType:
    if isinstance(value, models.StockChangeType):
        return value
    try:
        return models.StockChangeType(_normalize_code(value).lower())
    except ValueError:
        raise InvalidOperationTypeError(
            f"Unknown operation type {value!r}; expected 'in', 'out' or 'stocktake'."
        ) from None


def validate_quantity(change_type: models.StockChangeType, quantity) -> int:
    # bool is an int subclass; a JSON `true` is not a quantity.
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError("Quantity must be an integer.")
    if change_type == models.StockChangeType.STOCKTAKE:
        if quantity < 0:
            raise InvalidQuantityError("Stocktake quantity cannot be negative.")
    elif quantity <= 0:
        raise InvalidQuantityError(f"Quantity for '{change_type.value}' must be a positive integer.")
    if quantity > MAX_QUANTITY:
        raise InvalidQuantityError(f"Quantity cannot exceed {MAX_QUANTITY}.")
    return quantity


def compute_stock_change(
    change_type: models.StockChangeType,
    current_stock: int,
    quantity: int,
) -> Tuple[int, int]:
    """
    Return `(new_stock, quantity_change)` for applying `quantity` to
    `current_stock`.

    - in:        quantity is added
    - out:       quantity is removed; never below zero
    - stocktake: quantity is the counted level and replaces current stock
    """
    if change_type == models.StockChangeType.IN:
        if current_stock + quantity > MAX_QUANTITY:
            raise InvalidQuantityError(f"Stock cannot exceed {MAX_QUANTITY}.")
        return current_stock + quantity, quantity
    if change_type == models.StockChangeType.OUT:
        if current_stock < quantity:
            raise InsufficientStockError(current=current_stock, requested=quantity)
        return current_stock - quantity, -quantity
    if change_type == models.StockChangeType.STOCKTAKE:
        return quantity, quantity - current_stock
    raise InvalidOperationTypeError()


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


def run_in_transaction(session_factory: Callable[[], Session], fn: Callable[[Session], T]) -> T:
    """
    Run `fn` in a fresh session and commit. Any exception rolls the
    transaction back and is re-raised unchanged.
    """
    db = session_factory()
    try:
        result = fn(db)
        db.commit()
        return result
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_product(
    db: Session,
    *,
    product_id: str,
    owner_id: Optional[str] = None,
    for_update: bool = False,
) -> Optional[models.Product]:
    query = db.query(models.Product).filter(models.Product.id == product_id)
    if owner_id is not None:
        query = query.filter(models.Product.owner_id == owner_id)
    if for_update:
        # Re-read the row even if the identity map already holds it.
        query = query.with_for_update().populate_existing()
    return query.first()


def require_product(db: Session, *, product_id: str, owner_id: Optional[str] = None) -> models.Product:
    product = get_product(db, product_id=product_id, owner_id=owner_id)
    if product is None:
        raise NotFoundError()
    return product


def get_products_by_owner(db: Session, *, owner_id: str) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(models.Product.owner_id == owner_id)
        .order_by(models.Product.created_at.asc(), models.Product.id.asc())
        .all()
    )


def update_product_stock(
    db: Session,
    *,
    product: models.Product,
    expected_stock: int,
    new_stock: int,
) -> bool:
    """
    Compare-and-swap `current_stock` from `expected_stock` to `new_stock`.

    Returns False when another transaction changed the row first.
    """
    now = _utcnow()
    result = db.execute(
        update(models.Product)
        .where(
            models.Product.id == product.id,
            models.Product.current_stock == expected_stock,
        )
        .values(current_stock=new_stock, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    set_committed_value(product, "current_stock", new_stock)
    set_committed_value(product, "updated_at", now)
    return True


def insert_ledger_entry(db: Session, entry: models.InventoryLog) -> int:
    db.add(entry)
    db.flush()
    return entry.id


# ---------------------------------------------------------------------------
# Single-item stock mutator
# ---------------------------------------------------------------------------


def apply_stock_change(
    db: Session,
    *,
    owner_id: Optional[str],
    product_id: str,
    change_type: Union[str, models.StockChangeType],
    quantity: int,
    actor_user_id: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> StockChangeResult:
    """
    Apply one stock change to one product inside the caller's transaction.

    The product row is locked, the new level computed, the row updated with
    a compare-and-swap and one inventory log inserted. Nothing is written
    when a business rule fails; storage errors propagate untouched and the
    caller must roll back.
    """
    change_type = parse_change_type(change_type)
    quantity = validate_quantity(change_type, quantity)
    if not actor_user_id:
        raise InvalidInputError("actor_user_id is required.")

    for attempt in range(CAS_MAX_RETRIES + 1):
        product = get_product(db, product_id=product_id, owner_id=owner_id, for_update=True)
        if product is None:
            raise NotFoundError()

        previous_stock = product.current_stock
        new_stock, quantity_change = compute_stock_change(change_type, previous_stock, quantity)
        if update_product_stock(db, product=product, expected_stock=previous_stock, new_stock=new_stock):
            break
        logger.warning(
            "Stock for product %s changed concurrently (attempt %s/%s); re-reading",
            product_id,
            attempt + 1,
            CAS_MAX_RETRIES + 1,
        )
    else:
        raise StockConflictError()

    entry = models.InventoryLog(
        product_id=product.id,
        type=change_type,
        quantity=new_stock,
        quantity_change=quantity_change,
        reference=reference or DEFAULT_REFERENCE,
        notes=notes,
        created_by=actor_user_id,
        created_at=_utcnow(),
    )
    entry_id = insert_ledger_entry(db, entry)
    logger.info(
        "Applied %s to product %s: %+d -> %s (entry %s)",
        change_type.value,
        product.id,
        quantity_change,
        new_stock,
        entry_id,
    )
    return StockChangeResult(
        product_id=product.id,
        type=change_type,
        previous_stock=previous_stock,
        new_stock=new_stock,
        quantity_change=quantity_change,
        entry_id=entry_id,
    )


def apply_single_change(
    session_factory: Callable[[], Session],
    *,
    owner_id: Optional[str],
    product_id: str,
    change_type: Union[str, models.StockChangeType],
    quantity: int,
    actor_user_id: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> StockChangeResult:
    """Apply one change in its own transaction."""
    return run_in_transaction(
        session_factory,
        lambda db: apply_stock_change(
            db,
            owner_id=owner_id,
            product_id=product_id,
            change_type=change_type,
            quantity=quantity,
            actor_user_id=actor_user_id,
            reference=reference,
            notes=notes,
        ),
    )


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def _get_product_by_sku(db: Session, *, owner_id: str, sku: str) -> Optional[models.Product]:
    return (
        db.query(models.Product)
        .filter(models.Product.owner_id == owner_id, models.Product.sku == sku)
        .first()
    )


def get_product_by_barcode(db: Session, *, owner_id: str, barcode: str) -> Optional[models.Product]:
    barcode = _normalize_code(barcode)
    if not barcode:
        return None
    return (
        db.query(models.Product)
        .filter(models.Product.owner_id == owner_id, models.Product.barcode == barcode)
        .order_by(models.Product.created_at.asc(), models.Product.id.asc())
        .first()
    )


def register_product(
    db: Session,
    *,
    owner_id: str,
    payload: schemas.ProductCreate,
    actor_user_id: str,
) -> models.Product:
    sku = _normalize_code(payload.sku)
    barcode = _normalize_code(payload.barcode) or None
    if not sku:
        raise InvalidInputError("sku is required.")
    if _get_product_by_sku(db, owner_id=owner_id, sku=sku):
        raise DuplicateProductError(f"A product with SKU {sku} already exists.")
    if barcode and get_product_by_barcode(db, owner_id=owner_id, barcode=barcode):
        raise DuplicateProductError("Barcode already assigned to another product.")

    min_stock_level = payload.min_stock_level
    if min_stock_level is None:
        min_stock_level = DEFAULT_MIN_STOCK_LEVEL

    product = models.Product(
        owner_id=owner_id,
        name=payload.name.strip(),
        sku=sku,
        barcode=barcode,
        description=payload.description,
        current_stock=0,
        min_stock_level=min_stock_level,
    )
    db.add(product)
    try:
        # A lost race on uq_products_owner_sku rolls back to this savepoint only.
        with db.begin_nested():
            db.flush()
    except IntegrityError:
        if product in db:
            db.expunge(product)
        raise DuplicateProductError(f"A product with SKU {sku} already exists.") from None

    # Opening stock goes through the ledger so the product balances from day one.
    if payload.initial_stock > 0:
        apply_stock_change(
            db,
            owner_id=owner_id,
            product_id=product.id,
            change_type=models.StockChangeType.IN,
            quantity=payload.initial_stock,
            actor_user_id=actor_user_id,
            reference=INITIAL_STOCK_REFERENCE,
            notes=INITIAL_STOCK_NOTES,
        )
    return product


def assign_barcode(db: Session, *, owner_id: str, product_id: str, barcode: str) -> models.Product:
    product = require_product(db, product_id=product_id, owner_id=owner_id)
    barcode = _normalize_code(barcode)
    if not barcode:
        raise InvalidInputError("barcode is required.")
    existing = get_product_by_barcode(db, owner_id=owner_id, barcode=barcode)
    if existing is not None and existing.id != product.id:
        raise DuplicateProductError("Barcode already assigned to another product.")
    product.barcode = barcode
    db.flush()
    return product


def update_product(
    db: Session,
    *,
    owner_id: str,
    product_id: str,
    payload: schemas.ProductUpdate,
    actor_user_id: str,
) -> models.Product:
    """
    Edit a product's name, description and low-stock threshold.

    A `current_stock` that differs from the stored level is applied as a
    stocktake, so the correction lands in the ledger like any other change.
    """
    product = require_product(db, product_id=product_id, owner_id=owner_id)

    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise InvalidInputError("name cannot be blank.")
        product.name = name
    if payload.description is not None:
        product.description = payload.description
    if payload.min_stock_level is not None:
        product.min_stock_level = payload.min_stock_level
    db.flush()

    if payload.current_stock is not None and payload.current_stock != product.current_stock:
        apply_stock_change(
            db,
            owner_id=owner_id,
            product_id=product.id,
            change_type=models.StockChangeType.STOCKTAKE,
            quantity=payload.current_stock,
            actor_user_id=actor_user_id,
            reference=DEFAULT_REFERENCE,
            notes=payload.notes or MANUAL_ADJUSTMENT_NOTES,
        )
    return product


def list_low_stock(db: Session, *, owner_id: str) -> List[models.Product]:
    return (
        db.query(models.Product)
        .filter(
            models.Product.owner_id == owner_id,
            models.Product.current_stock <= models.Product.min_stock_level,
        )
        .order_by(models.Product.current_stock.asc(), models.Product.name.asc())
        .all()
    )


def delete_product(db: Session, *, owner_id: str, product_id: str) -> int:
    """
    Delete a product together with its inventory logs (logs first).

    Returns the number of logs removed.
    """
    product = require_product(db, product_id=product_id, owner_id=owner_id)
    removed = (
        db.query(models.InventoryLog)
        .filter(models.InventoryLog.product_id == product.id)
        .delete(synchronize_session=False)
    )
    db.delete(product)
    db.flush()
    logger.info("Deleted product %s and %s inventory logs", product_id, removed)
    return removed


def reconcile_product(db: Session, *, owner_id: Optional[str], product_id: str) -> ReconciliationResult:
    product = require_product(db, product_id=product_id, owner_id=owner_id)
    ledger_total, entry_count = (
        db.query(
            func.coalesce(func.sum(models.InventoryLog.quantity_change), 0),
            func.count(models.InventoryLog.id),
        )
        .filter(models.InventoryLog.product_id == product.id)
        .one()
    )
    result = ReconciliationResult(
        product_id=product.id,
        current_stock=product.current_stock,
        ledger_total=int(ledger_total),
        entry_count=int(entry_count),
    )
    if not result.balanced:
        logger.warning(
            "Product %s is out of balance: current_stock=%s ledger_total=%s",
            product.id,
            result.current_stock,
            result.ledger_total,
        )
    return result
