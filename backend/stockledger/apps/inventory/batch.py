"""
Batch stock processing for scanned items.

Each item is resolved to a product through its lookup key (barcode) and
applied in its own transaction, so one bad item never blocks the rest.
Items that resolve to the same product run one after another, in the
order they were scanned; distinct products may run on worker threads.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, services

logger = logging.getLogger(__name__)

BATCH_MAX_WORKERS = int(os.getenv("STOCK_BATCH_MAX_WORKERS", "1"))
ITEM_TIMEOUT_MS = int(os.getenv("STOCK_ITEM_TIMEOUT_MS", "0"))

DEFAULT_SOURCE = "barcode-scanner"
DEFAULT_NOTES = {
    models.StockChangeType.IN: "Barcode scan - stock in",
    models.StockChangeType.OUT: "Barcode scan - stock out",
    models.StockChangeType.STOCKTAKE: "Barcode scan - stocktake",
}
PRODUCT_NOT_FOUND = "Product not found"
STORAGE_FAILURE = "Failed to update inventory"


@dataclass
class BatchItem:
    lookup_key: str
    quantity: int


@dataclass(frozen=True)
class ResolvedProduct:
    id: str
    name: str


@dataclass
class BatchItemResult:
    lookup_key: str
    success: bool
    product_id: Optional[str] = None
    name: Optional[str] = None
    resulting_stock: Optional[int] = None
    previous_stock: Optional[int] = None
    quantity_change: Optional[int] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    results: List[BatchItemResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def message(self) -> str:
        message = f"Processed {self.succeeded} items successfully"
        if self.failed:
            message += f", {self.failed} failed"
        return message


def build_lookup_index(products: Sequence[models.Product]) -> Dict[str, ResolvedProduct]:
    """
    Map barcode -> product. When two products share a barcode the first one
    (oldest) wins.
    """
    index: Dict[str, ResolvedProduct] = {}
    for product in products:
        key = (product.barcode or "").strip()
        if key and key not in index:
            index[key] = ResolvedProduct(id=product.id, name=product.name)
    return index


def plan_batch(
    items: Sequence[BatchItem],
    index: Dict[str, ResolvedProduct],
) -> Tuple[Dict[ResolvedProduct, List[int]], List[int]]:
    """
    Split item positions into per-product groups (scan order kept) and a
    list of positions whose lookup key matched nothing.
    """
    groups: Dict[ResolvedProduct, List[int]] = {}
    unresolved: List[int] = []
    for position, item in enumerate(items):
        product = index.get((item.lookup_key or "").strip())
        if product is None:
            unresolved.append(position)
            continue
        groups.setdefault(product, []).append(position)
    return groups, unresolved


def _set_statement_timeout(db: Session, timeout_ms: int) -> None:
    # Only PostgreSQL supports a transaction-scoped statement timeout.
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def _apply_item(
    session_factory: Callable[[], Session],
    *,
    owner_id: str,
    product: ResolvedProduct,
    item: BatchItem,
    change_type: models.StockChangeType,
    reference: str,
    notes: str,
    actor_user_id: str,
    timeout_ms: int,
) -> BatchItemResult:
    db = session_factory()
    try:
        if timeout_ms > 0:
            _set_statement_timeout(db, timeout_ms)
        outcome = services.apply_stock_change(
            db,
            owner_id=owner_id,
            product_id=product.id,
            change_type=change_type,
            quantity=item.quantity,
            actor_user_id=actor_user_id,
            reference=reference,
            notes=notes,
        )
        db.commit()
    except services.LedgerError as exc:
        db.rollback()
        logger.warning("Batch item %s rejected: %s", item.lookup_key, exc.message)
        return BatchItemResult(lookup_key=item.lookup_key, success=False, error=exc.message)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error processing item with lookup key %s", item.lookup_key)
        return BatchItemResult(lookup_key=item.lookup_key, success=False, error=STORAGE_FAILURE)
    except Exception:
        # Driver-level errors (e.g. OverflowError) must not abort the other items.
        db.rollback()
        logger.exception("Unexpected error processing item with lookup key %s", item.lookup_key)
        return BatchItemResult(lookup_key=item.lookup_key, success=False, error=STORAGE_FAILURE)
    finally:
        db.close()

    return BatchItemResult(
        lookup_key=item.lookup_key,
        success=True,
        product_id=product.id,
        name=product.name,
        resulting_stock=outcome.new_stock,
        previous_stock=outcome.previous_stock,
        quantity_change=outcome.quantity_change,
    )


def _load_lookup_index(session_factory: Callable[[], Session], *, owner_id: str) -> Dict[str, ResolvedProduct]:
    db = session_factory()
    try:
        return build_lookup_index(services.get_products_by_owner(db, owner_id=owner_id))
    finally:
        db.close()


def process_batch(
    session_factory: Callable[[], Session],
    *,
    owner_id: str,
    items: Sequence[BatchItem],
    change_type: Union[str, models.StockChangeType],
    actor_user_id: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    max_workers: Optional[int] = None,
    item_timeout_ms: Optional[int] = None,
) -> BatchResult:
    """
    Apply `change_type` to every scanned item and report per-item outcomes.

    Raises only for an unknown change type, an empty batch, a missing actor,
    or a storage failure while loading the owner's products.
    """
    change_type = services.parse_change_type(change_type)
    if not items:
        raise services.EmptyBatchError()
    if not actor_user_id:
        raise services.InvalidInputError("actor_user_id is required.")

    reference = reference or DEFAULT_SOURCE
    notes = notes or DEFAULT_NOTES[change_type]
    workers = max_workers if max_workers is not None else BATCH_MAX_WORKERS
    timeout_ms = item_timeout_ms if item_timeout_ms is not None else ITEM_TIMEOUT_MS

    index = _load_lookup_index(session_factory, owner_id=owner_id)
    groups, unresolved = plan_batch(items, index)

    results: List[Optional[BatchItemResult]] = [None] * len(items)
    for position in unresolved:
        logger.warning("Batch item %s rejected: %s", items[position].lookup_key, PRODUCT_NOT_FOUND)
        results[position] = BatchItemResult(
            lookup_key=items[position].lookup_key,
            success=False,
            error=PRODUCT_NOT_FOUND,
        )

    def run_group(product: ResolvedProduct, positions: List[int]) -> None:
        for position in positions:
            results[position] = _apply_item(
                session_factory,
                owner_id=owner_id,
                product=product,
                item=items[position],
                change_type=change_type,
                reference=reference,
                notes=notes,
                actor_user_id=actor_user_id,
                timeout_ms=timeout_ms,
            )

    if workers <= 1 or len(groups) <= 1:
        for product, positions in groups.items():
            run_group(product, positions)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(groups))) as pool:
            futures = [pool.submit(run_group, product, positions) for product, positions in groups.items()]
            for future in futures:
                future.result()

    batch = BatchResult(results=[r for r in results if r is not None])
    logger.info(
        "Processed %s batch for owner %s: total=%s succeeded=%s failed=%s",
        change_type.value,
        owner_id,
        batch.total,
        batch.succeeded,
        batch.failed,
    )
    return batch
