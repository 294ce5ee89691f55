# backend/stockledger/__init__.py
"""
Inventory stock ledger service.

Importing the package registers the ORM models on `Base.metadata` so that
Alembic and `Base.metadata.create_all()` see every table.
"""

from .apps.inventory import models as inventory_models  # products + inventory logs

__all__ = [
    "inventory_models",
]
