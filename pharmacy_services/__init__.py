"""
Pharmacy services -- stateful orchestration over the batch ledger.

FefoSelector arbitrates dispensing requests (including two-phase
overrides); InventoryReportService serves read-only reports.
"""

from pharmacy_services.fefo_selector import BatchSelection, FefoSelector, PendingOverride
from pharmacy_services.inventory_reports import InventoryReportService

__all__ = [
    "BatchSelection",
    "FefoSelector",
    "InventoryReportService",
    "PendingOverride",
]
