"""
InventoryReportService -- read-only dashboards and report tables.

Responsibility:
    Bind the pure engines to a fresh ledger snapshot, the injected clock
    and the active settings. Every call takes a new snapshot and
    recomputes; nothing is cached between calls.

Architecture position:
    Services -- thin orchestration. Reads the ledger, never mutates it.

Invariants enforced:
    - Lock-free: reads go through ``BatchLedger.snapshot()`` and
      ``get_medicine_stock``; a concurrent sale is visible on the next call.
    - Empty ledgers produce empty reports and an all-zero KPI snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from pharmacy_config.schema import InventorySettings
from pharmacy_engines.expiry_risk import ExpiryAlert, ExpiryRiskEntry, ExpiryRiskScorer
from pharmacy_engines.kpi import KPISnapshot, KPIWindow, compute_kpis
from pharmacy_engines.stock_alerts import (
    LowStockAlert,
    SlowMovingItem,
    find_slow_moving_items,
    generate_low_stock_alerts,
)
from pharmacy_engines.valuation import (
    BatchAnalysisRow,
    StockValuationSummary,
    build_batch_analysis,
    summarize_stock_value,
)
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.models import Batch, Expense, Sale
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.services.batch_ledger import BatchLedger

logger = get_logger("services.inventory_reports")


class InventoryReportService:
    """
    Reports over the current ledger state.

    Contract:
        Receives ledger, Clock and InventorySettings via constructor
        injection. Expenses, and any sales persisted outside the ledger
        journal, are passed to ``kpis`` by the caller.
    """

    def __init__(
        self,
        ledger: BatchLedger,
        clock: Clock | None = None,
        settings: InventorySettings | None = None,
    ):
        self.ledger = ledger
        self.clock = clock or ledger.clock
        self.settings = settings or InventorySettings.with_defaults()
        self._scorer = ExpiryRiskScorer(self.settings.expiry_thresholds)

    # =========================================================================
    # Expiry
    # =========================================================================

    def expiry_risk_report(self) -> tuple[ExpiryRiskEntry, ...]:
        snapshot = self.ledger.snapshot()
        return self._scorer.build_report(
            batches=snapshot.batches,
            medicines=snapshot.medicines,
            now=snapshot.taken_at,
        )

    def expiry_alerts(self, dismissed_ids: Iterable[str] = ()) -> tuple[ExpiryAlert, ...]:
        """Live expiry alerts minus the ids the user dismissed."""
        snapshot = self.ledger.snapshot()
        alerts = self._scorer.build_alerts(
            batches=snapshot.batches,
            medicines=snapshot.medicines,
            now=snapshot.taken_at,
        )
        dismissed = set(dismissed_ids)
        return tuple(a for a in alerts if a.id not in dismissed)

    def expiring_batches(self, within_days: int | None = None) -> tuple[Batch, ...]:
        """Defaults to the notice window."""
        snapshot = self.ledger.snapshot()
        return self._scorer.find_expiring(
            batches=snapshot.batches,
            now=snapshot.taken_at,
            within_days=(
                within_days
                if within_days is not None
                else self.settings.expiry_thresholds.notice
            ),
        )

    # =========================================================================
    # Stock
    # =========================================================================

    def low_stock_alerts(self, dismissed_ids: Iterable[str] = ()) -> tuple[LowStockAlert, ...]:
        alerts = generate_low_stock_alerts(
            self.ledger.store.medicines(), self.ledger.get_medicine_stock
        )
        dismissed = set(dismissed_ids)
        return tuple(a for a in alerts if a.id not in dismissed)

    def slow_moving_items(self, days: int | None = None) -> tuple[SlowMovingItem, ...]:
        snapshot = self.ledger.snapshot()
        return find_slow_moving_items(
            medicines=snapshot.medicines,
            batches=snapshot.batches,
            sales=snapshot.sales,
            now=snapshot.taken_at,
            days=days if days is not None else self.settings.slow_moving_days,
        )

    # =========================================================================
    # KPIs and valuation
    # =========================================================================

    def kpis(
        self,
        expenses: Iterable[Expense] = (),
        window: KPIWindow | None = None,
        sales: Iterable[Sale] = (),
    ) -> KPISnapshot:
        """
        KPIs for ``window``; defaults to the configured window ending now.

        Sales come from the ledger's journal (everything committed through
        ``commit_sale``) plus any ``sales`` the caller persisted itself after
        a stock-only decrement. A sale id present in both is counted once.
        """
        snapshot = self.ledger.snapshot()
        if window is None:
            window = KPIWindow.ending_at(snapshot.taken_at, self.settings.kpi_window_days)
        journaled = {s.id for s in snapshot.sales}
        external = tuple(s for s in sales if s.id not in journaled)
        logger.debug(
            "kpi_report_requested",
            extra={
                "window_start": window.start.isoformat(),
                "window_end": window.end.isoformat(),
                "external_sales": len(external),
            },
        )
        return compute_kpis(
            window=window,
            sales=snapshot.sales + external,
            batches=snapshot.batches,
            expenses=tuple(expenses),
            adjustments=snapshot.adjustments,
            now=snapshot.taken_at,
        )

    def batch_analysis(self, now: datetime | None = None) -> tuple[BatchAnalysisRow, ...]:
        snapshot = self.ledger.snapshot()
        return build_batch_analysis(
            batches=snapshot.batches,
            medicines=snapshot.medicines,
            now=now or snapshot.taken_at,
        )

    def stock_valuation(self) -> StockValuationSummary:
        return summarize_stock_value(self.ledger.snapshot().batches)
