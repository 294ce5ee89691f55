from __future__ import annotations

import dataclasses
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from stockledger.database import get_db, get_read_db, get_session_factory
from stockledger.security import Actor, get_current_actor

from . import batch, ledger, models, schemas, services

router = APIRouter(
    prefix="/inventory",
    tags=["inventory"],
)


def _http_error(exc: services.LedgerError) -> HTTPException:
    if isinstance(exc, services.NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, services.InsufficientStockError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": exc.message,
                "current": exc.current,
                "requested": exc.requested,
            },
        )
    if isinstance(exc, (services.DuplicateProductError, services.StockConflictError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)


def _batch_response(result: batch.BatchResult) -> schemas.BatchResultRead:
    return schemas.BatchResultRead(
        total=result.total,
        succeeded=result.succeeded,
        failed=result.failed,
        message=result.message,
        results=[schemas.BatchItemRead(**dataclasses.asdict(item)) for item in result.results],
    )


# ---------------------------------------------------------------------------
# PRODUCTS
# ---------------------------------------------------------------------------


@router.post(
    "/products",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
)
def register_product(
    payload: schemas.ProductCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        product = services.register_product(
            db,
            owner_id=actor.owner_id,
            payload=payload,
            actor_user_id=actor.user_id,
        )
    except services.LedgerError as exc:
        db.rollback()
        raise _http_error(exc)
    db.commit()
    db.refresh(product)
    return product


@router.get(
    "/products/low-stock",
    response_model=List[schemas.ProductRead],
)
def list_low_stock(
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(get_current_actor),
):
    return services.list_low_stock(db, owner_id=actor.owner_id)


@router.get(
    "/products/{product_id}",
    response_model=schemas.ProductDetailRead,
)
def get_product_detail(
    product_id: str,
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        product = services.require_product(db, product_id=product_id, owner_id=actor.owner_id)
    except services.LedgerError as exc:
        raise _http_error(exc)
    return schemas.ProductDetailRead(
        product=schemas.ProductRead.model_validate(product),
        recent_logs=[
            schemas.InventoryLogRead.model_validate(entry)
            for entry in ledger.recent_entries(db, product_id=product.id)
        ],
    )


@router.put(
    "/products/{product_id}",
    response_model=schemas.ProductRead,
)
def update_product(
    product_id: str,
    payload: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        product = services.update_product(
            db,
            owner_id=actor.owner_id,
            product_id=product_id,
            payload=payload,
            actor_user_id=actor.user_id,
        )
    except services.LedgerError as exc:
        db.rollback()
        raise _http_error(exc)
    db.commit()
    db.refresh(product)
    return product


@router.delete("/products/{product_id}")
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        removed = services.delete_product(db, owner_id=actor.owner_id, product_id=product_id)
    except services.LedgerError as exc:
        db.rollback()
        raise _http_error(exc)
    db.commit()
    return {
        "success": True,
        "message": "Product deleted successfully",
        "removed_logs": removed,
    }


@router.put(
    "/products/{product_id}/barcode",
    response_model=schemas.ProductRead,
)
def assign_barcode(
    product_id: str,
    payload: schemas.BarcodeAssignRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        product = services.assign_barcode(
            db,
            owner_id=actor.owner_id,
            product_id=product_id,
            barcode=payload.barcode,
        )
    except services.LedgerError as exc:
        db.rollback()
        raise _http_error(exc)
    db.commit()
    db.refresh(product)
    return product


@router.get(
    "/products/{product_id}/reconciliation",
    response_model=schemas.ReconciliationRead,
)
def reconcile_product(
    product_id: str,
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        result = services.reconcile_product(db, owner_id=actor.owner_id, product_id=product_id)
    except services.LedgerError as exc:
        raise _http_error(exc)
    return schemas.ReconciliationRead(
        product_id=result.product_id,
        current_stock=result.current_stock,
        ledger_total=result.ledger_total,
        entry_count=result.entry_count,
        balanced=result.balanced,
    )


@router.get(
    "/barcode",
    response_model=schemas.ProductRead,
)
def get_product_by_barcode(
    barcode: str = Query(..., min_length=1),
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(get_current_actor),
):
    product = services.get_product_by_barcode(db, owner_id=actor.owner_id, barcode=barcode)
    if product is None:
        raise _http_error(services.NotFoundError())
    return product


# ---------------------------------------------------------------------------
# STOCK CHANGES
# ---------------------------------------------------------------------------


@router.post(
    "/stock-changes",
    response_model=schemas.StockChangeRead,
    status_code=status.HTTP_201_CREATED,
)
def apply_stock_change(
    payload: schemas.StockChangeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        result = services.apply_stock_change(
            db,
            owner_id=actor.owner_id,
            product_id=payload.product_id,
            change_type=payload.type,
            quantity=payload.quantity,
            actor_user_id=actor.user_id,
            reference=payload.reference,
            notes=payload.notes,
        )
    except services.LedgerError as exc:
        db.rollback()
        raise _http_error(exc)
    db.commit()
    return schemas.StockChangeRead(**dataclasses.asdict(result))


@router.post(
    "/barcode/batch",
    response_model=schemas.BatchResultRead,
)
def process_barcode_batch(
    payload: schemas.BatchScanRequest,
    session_factory=Depends(get_session_factory),
    actor: Actor = Depends(get_current_actor),
):
    items = [batch.BatchItem(lookup_key=item.barcode, quantity=item.quantity) for item in payload.items]
    try:
        result = batch.process_batch(
            session_factory,
            owner_id=actor.owner_id,
            items=items,
            change_type=payload.type,
            actor_user_id=actor.user_id,
            reference=payload.source,
            notes=payload.notes,
        )
    except services.LedgerError as exc:
        raise _http_error(exc)
    return _batch_response(result)


# ---------------------------------------------------------------------------
# LEDGER
# ---------------------------------------------------------------------------


@router.get(
    "/logs",
    response_model=List[schemas.InventoryLogRead],
)
def list_logs(
    product_id: Optional[str] = None,
    type: Optional[models.StockChangeType] = Query(None),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    actor: Actor = Depends(get_current_actor),
):
    return ledger.query_ledger_entries(
        db,
        owner_id=actor.owner_id,
        product_id=product_id,
        change_type=type,
        start=start_date,
        end=end_date,
        skip=skip,
        limit=limit,
    )
