from __future__ import annotations

import pytest
from pydantic import ValidationError
from sqlalchemy import update

from stockledger.apps.inventory import ledger, models, schemas, services
from stockledger.utils.identifiers import uuid7_timestamp_ms


def _register(db, **fields):
    fields.setdefault("name", "Silk Saree")
    return services.register_product(
        db,
        owner_id=fields.pop("owner_id", "owner-1"),
        payload=schemas.ProductCreate(**fields),
        actor_user_id="user-1",
    )


def test_register_with_initial_stock_writes_opening_entry(db_session):
    product = _register(db_session, sku=" SAR-400 ", barcode=" 8901 ", initial_stock=12)
    db_session.commit()

    assert product.sku == "SAR-400"
    assert product.barcode == "8901"
    assert product.current_stock == 12
    assert product.min_stock_level == services.DEFAULT_MIN_STOCK_LEVEL

    (entry,) = ledger.ledger_history(db_session, product_id=product.id)
    assert entry.type == models.StockChangeType.IN
    assert entry.quantity == 12
    assert entry.quantity_change == 12
    assert entry.reference == "Initial Stock"
    assert entry.notes == "Initial inventory setup"


def test_register_without_stock_writes_no_entry(db_session):
    product = _register(db_session, sku="SAR-401", min_stock_level=0)
    db_session.commit()

    assert product.current_stock == 0
    assert product.min_stock_level == 0
    assert ledger.ledger_history(db_session, product_id=product.id) == []


def test_duplicate_sku_is_rejected_per_owner(db_session):
    _register(db_session, sku="SAR-402")

    with pytest.raises(services.DuplicateProductError):
        _register(db_session, sku="SAR-402")

    other = _register(db_session, sku="SAR-402", owner_id="owner-2")
    assert other.owner_id == "owner-2"
    db_session.rollback()


def test_duplicate_barcode_is_rejected(db_session):
    _register(db_session, sku="SAR-403", barcode="4444")

    with pytest.raises(services.DuplicateProductError):
        _register(db_session, sku="SAR-404", barcode="4444")
    db_session.rollback()


def test_barcode_lookup_and_assignment(db_session):
    first = _register(db_session, sku="SAR-405", barcode="5555")
    second = _register(db_session, sku="SAR-406")

    assert services.get_product_by_barcode(db_session, owner_id="owner-1", barcode=" 5555 ") is first
    assert services.get_product_by_barcode(db_session, owner_id="owner-2", barcode="5555") is None
    assert services.get_product_by_barcode(db_session, owner_id="owner-1", barcode="") is None

    with pytest.raises(services.DuplicateProductError):
        services.assign_barcode(db_session, owner_id="owner-1", product_id=second.id, barcode="5555")
    with pytest.raises(services.InvalidInputError):
        services.assign_barcode(db_session, owner_id="owner-1", product_id=second.id, barcode="  ")
    with pytest.raises(services.NotFoundError):
        services.assign_barcode(db_session, owner_id="owner-2", product_id=second.id, barcode="6666")

    updated = services.assign_barcode(db_session, owner_id="owner-1", product_id=second.id, barcode="6666")
    assert updated.barcode == "6666"
    # Re-assigning a product's own barcode is a no-op.
    services.assign_barcode(db_session, owner_id="owner-1", product_id=first.id, barcode="5555")
    db_session.rollback()


def test_low_stock_lists_products_at_or_below_minimum(db_session):
    _register(db_session, sku="SAR-407", name="Plenty", initial_stock=20, min_stock_level=5)
    at_minimum = _register(db_session, sku="SAR-408", name="At minimum", initial_stock=5, min_stock_level=5)
    empty = _register(db_session, sku="SAR-409", name="Empty", min_stock_level=1)
    _register(db_session, sku="SAR-410", name="Other owner", owner_id="owner-2")
    db_session.commit()

    low = services.list_low_stock(db_session, owner_id="owner-1")

    assert [p.id for p in low] == [empty.id, at_minimum.id]


def test_delete_removes_product_and_its_logs(session_factory, make_product, db_session):
    product_id = make_product(sku="SAR-411", stock=3)
    services.apply_single_change(
        session_factory,
        owner_id="owner-1",
        product_id=product_id,
        change_type="out",
        quantity=1,
        actor_user_id="user-1",
    )

    with pytest.raises(services.NotFoundError):
        services.delete_product(db_session, owner_id="owner-2", product_id=product_id)

    removed = services.delete_product(db_session, owner_id="owner-1", product_id=product_id)
    db_session.commit()

    assert removed == 2
    assert services.get_product(db_session, product_id=product_id) is None
    assert ledger.ledger_history(db_session, product_id=product_id) == []


def test_reconciliation_balances_after_changes(session_factory, make_product, db_session):
    product_id = make_product(sku="SAR-412", stock=8)
    for change_type, quantity in (("out", 3), ("stocktake", 9), ("in", 1)):
        services.apply_single_change(
            session_factory,
            owner_id="owner-1",
            product_id=product_id,
            change_type=change_type,
            quantity=quantity,
            actor_user_id="user-1",
        )

    result = services.reconcile_product(db_session, owner_id="owner-1", product_id=product_id)

    assert result.balanced
    assert result.current_stock == 10
    assert result.ledger_total == 10
    assert result.entry_count == 4


def test_reconciliation_detects_drift(session_factory, make_product, db_session):
    product_id = make_product(sku="SAR-413", stock=4)
    db = session_factory()
    try:
        db.execute(
            update(models.Product)
            .where(models.Product.id == product_id)
            .values(current_stock=7)
        )
        db.commit()
    finally:
        db.close()

    result = services.reconcile_product(db_session, owner_id="owner-1", product_id=product_id)

    assert not result.balanced
    assert (result.current_stock, result.ledger_total) == (7, 4)


def test_products_get_time_ordered_ids(db_session):
    first = _register(db_session, sku="SAR-414")
    second = _register(db_session, sku="SAR-415")

    assert len(first.id) == 36
    assert uuid7_timestamp_ms(first.id) <= uuid7_timestamp_ms(second.id)
    db_session.rollback()


def test_update_product_metadata_only_writes_no_entry(db_session):
    product = _register(db_session, sku="SAR-416", initial_stock=4, min_stock_level=1)

    updated = services.update_product(
        db_session,
        owner_id="owner-1",
        product_id=product.id,
        payload=schemas.ProductUpdate(name=" Bridal Saree ", description="Red", min_stock_level=6, current_stock=4),
        actor_user_id="user-2",
    )
    db_session.commit()

    assert updated.name == "Bridal Saree"
    assert updated.description == "Red"
    assert updated.min_stock_level == 6
    assert updated.current_stock == 4
    assert len(ledger.ledger_history(db_session, product_id=product.id)) == 1
    assert [p.id for p in services.list_low_stock(db_session, owner_id="owner-1")] == [product.id]


def test_update_product_stock_goes_through_the_ledger(db_session):
    product = _register(db_session, sku="SAR-417", initial_stock=10)

    updated = services.update_product(
        db_session,
        owner_id="owner-1",
        product_id=product.id,
        payload=schemas.ProductUpdate(current_stock=3),
        actor_user_id="user-2",
    )
    db_session.commit()

    assert updated.current_stock == 3
    entry = ledger.ledger_history(db_session, product_id=product.id)[-1]
    assert entry.type == models.StockChangeType.STOCKTAKE
    assert (entry.quantity, entry.quantity_change) == (3, -7)
    assert entry.reference == services.DEFAULT_REFERENCE
    assert entry.notes == services.MANUAL_ADJUSTMENT_NOTES
    assert entry.created_by == "user-2"
    assert services.reconcile_product(db_session, owner_id="owner-1", product_id=product.id).balanced


def test_update_product_rejects_blank_name_and_foreign_owner(db_session):
    product = _register(db_session, sku="SAR-418")

    with pytest.raises(services.InvalidInputError):
        services.update_product(
            db_session,
            owner_id="owner-1",
            product_id=product.id,
            payload=schemas.ProductUpdate(name="   "),
            actor_user_id="user-1",
        )
    with pytest.raises(services.NotFoundError):
        services.update_product(
            db_session,
            owner_id="owner-2",
            product_id=product.id,
            payload=schemas.ProductUpdate(min_stock_level=1),
            actor_user_id="user-1",
        )
    db_session.rollback()


def test_sku_lost_race_reports_duplicate(db_session, monkeypatch):
    _register(db_session, sku="SAR-419")
    db_session.commit()
    # Another writer inserted the SKU between the check and the insert.
    monkeypatch.setattr(services, "_get_product_by_sku", lambda db, **kwargs: None)

    with pytest.raises(services.DuplicateProductError):
        _register(db_session, sku="SAR-419")

    monkeypatch.undo()
    survivor = _register(db_session, sku="SAR-420")
    db_session.commit()
    assert services.get_product(db_session, product_id=survivor.id) is not None


def test_quantities_are_bounded_at_the_boundary():
    with pytest.raises(ValidationError):
        schemas.BatchScanItem(barcode="1", quantity=2**63)
    with pytest.raises(ValidationError):
        schemas.StockChangeRequest(product_id="p", type="in", quantity=services.MAX_QUANTITY + 1)
    with pytest.raises(ValidationError):
        schemas.ProductUpdate(current_stock=services.MAX_QUANTITY + 1)
