"""
Inventory module.

Keeps each product's quantity on hand as the running total of an
append-only stock ledger, and applies single and batched stock changes.
"""

from . import models  # noqa: F401
