from __future__ import annotations

import pytest

from stockledger.apps.inventory import ledger, schemas, services


@pytest.fixture()
def make_product(session_factory):
    """Register a product in its own committed transaction and return its id."""

    def _make(
        *,
        sku: str,
        barcode=None,
        stock: int = 0,
        owner_id: str = "owner-1",
        name=None,
        min_stock_level=None,
    ) -> str:
        db = session_factory()
        try:
            product = services.register_product(
                db,
                owner_id=owner_id,
                payload=schemas.ProductCreate(
                    name=name or f"Product {sku}",
                    sku=sku,
                    barcode=barcode,
                    initial_stock=stock,
                    min_stock_level=min_stock_level,
                ),
                actor_user_id="user-1",
            )
            db.commit()
            return product.id
        finally:
            db.close()

    return _make


@pytest.fixture()
def snapshot(session_factory):
    """Return `(current_stock, [quantity_change, ...])` for a product, read in a fresh session."""

    def _snapshot(product_id: str):
        db = session_factory()
        try:
            product = services.get_product(db, product_id=product_id)
            changes = [entry.quantity_change for entry in ledger.ledger_history(db, product_id=product_id)]
            return product.current_stock, changes
        finally:
            db.close()

    return _snapshot
