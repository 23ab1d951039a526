"""
Pure domain layer.

Immutable records, closed policy enums, the injectable clock and the audit
contract. No ledger state and no I/O (apart from SystemClock).
"""

from pharmacy_kernel.domain.audit import (
    AuditAction,
    AuditEvent,
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    deliver_audit_event,
)
from pharmacy_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pharmacy_kernel.domain.models import (
    AdjustmentReason,
    Batch,
    Expense,
    InventorySnapshot,
    Medicine,
    PaymentLine,
    PaymentMethod,
    Sale,
    SaleItem,
    SaleStatus,
    StockAdjustment,
)
from pharmacy_kernel.domain.policy import (
    ExpiryAlertLevel,
    ExpiryRecommendation,
    ExpiryThresholds,
    FefoMode,
    StockAlertLevel,
)

__all__ = [
    "AdjustmentReason",
    "AuditAction",
    "AuditEvent",
    "AuditSink",
    "Batch",
    "Clock",
    "DeterministicClock",
    "Expense",
    "ExpiryAlertLevel",
    "ExpiryRecommendation",
    "ExpiryThresholds",
    "FefoMode",
    "InMemoryAuditSink",
    "InventorySnapshot",
    "LoggingAuditSink",
    "Medicine",
    "PaymentLine",
    "PaymentMethod",
    "Sale",
    "SaleItem",
    "SaleStatus",
    "StockAdjustment",
    "StockAlertLevel",
    "SystemClock",
    "deliver_audit_event",
]
