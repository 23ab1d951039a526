"""
Kernel services: the inventory store and the batch ledger that guards it.
"""

from pharmacy_kernel.services.batch_ledger import BatchLedger
from pharmacy_kernel.services.inventory_store import InventoryStore

__all__ = ["BatchLedger", "InventoryStore"]
