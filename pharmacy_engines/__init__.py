"""
Pharmacy engines -- pure calculation layer.

Expiry risk scoring, FEFO ordering, stock alerts, KPI aggregation and batch
valuation. Engines take plain domain records plus ``now`` and return frozen
results; none of them touch the ledger, a clock or any I/O.
"""

from pharmacy_engines.expiry_risk import (
    ExpiryAlert,
    ExpiryRiskEntry,
    ExpiryRiskScorer,
    ExpiryScore,
    build_expiry_alerts,
    build_expiry_risk_report,
    classify_alert_level,
    days_until_expiry,
    find_expiring_batches,
    recommend_action,
    risk_percent,
    score_batch,
)
from pharmacy_engines.fefo import fefo_sort_key, order_fefo, suggest
from pharmacy_engines.kpi import KPISnapshot, KPIWindow, compute_kpis
from pharmacy_engines.stock_alerts import (
    LowStockAlert,
    SlowMovingItem,
    find_slow_moving_items,
    generate_low_stock_alerts,
)
from pharmacy_engines.tracer import traced_engine
from pharmacy_engines.valuation import (
    BatchAnalysisRow,
    StockValuationSummary,
    build_batch_analysis,
    summarize_stock_value,
)

__all__ = [
    "BatchAnalysisRow",
    "ExpiryAlert",
    "ExpiryRiskEntry",
    "ExpiryRiskScorer",
    "ExpiryScore",
    "KPISnapshot",
    "KPIWindow",
    "LowStockAlert",
    "SlowMovingItem",
    "StockValuationSummary",
    "build_batch_analysis",
    "build_expiry_alerts",
    "build_expiry_risk_report",
    "classify_alert_level",
    "compute_kpis",
    "days_until_expiry",
    "fefo_sort_key",
    "find_expiring_batches",
    "find_slow_moving_items",
    "generate_low_stock_alerts",
    "order_fefo",
    "recommend_action",
    "risk_percent",
    "score_batch",
    "suggest",
    "summarize_stock_value",
    "traced_engine",
]
