from __future__ import annotations

import sys
import uuid

from sqlalchemy import event, text

from stockledger import database
from stockledger.main import app, health, read_root
from stockledger.utils.identifiers import generate_uuid7, uuid7_timestamp_ms


def test_health_endpoints():
    assert health() == {"status": "ok"}
    assert read_root()["status"] == "ok"


def test_inventory_routes_are_mounted():
    paths = {getattr(route, "path", None) for route in app.routes}

    assert "/inventory/stock-changes" in paths
    assert "/inventory/barcode/batch" in paths
    assert "/inventory/logs" in paths


def test_uuid7_layout_and_timestamp():
    value = generate_uuid7(ts_ms=1_700_000_000_123)
    parsed = uuid.UUID(value)

    assert parsed.version == 7
    assert parsed.variant == uuid.RFC_4122
    assert uuid7_timestamp_ms(value) == 1_700_000_000_123


def test_uuid7_sorts_by_timestamp():
    earlier = generate_uuid7(ts_ms=1_700_000_000_000)
    later = generate_uuid7(ts_ms=1_700_000_000_001)

    assert earlier < later


def test_sqlite_detection():
    assert database._is_sqlite("sqlite+pysqlite:///:memory:")
    assert database._is_sqlite(" SQLITE:///ledger.db")
    assert not database._is_sqlite("postgresql+psycopg2://u:p@localhost/db")
    assert not database._is_sqlite("")


def test_session_factory_dependency_returns_write_sessions():
    assert database.get_session_factory() is database.WriteSessionLocal


def test_sqlite_engine_begins_immediate_transactions(engine):
    statements = []

    @event.listens_for(engine, "before_cursor_execute")
    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    with engine.begin() as conn:
        conn.execute(text("SELECT 1"))

    assert statements[0] == "BEGIN IMMEDIATE"
    assert "SELECT 1" in statements


def test_inventory_models_load_once_under_the_package_name():
    from stockledger.apps.inventory import models

    assert "inventory" not in sys.modules
    assert database.Base.metadata.tables["products"] is models.Product.__table__
