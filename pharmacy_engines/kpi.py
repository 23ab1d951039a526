"""
Module: pharmacy_engines.kpi
Responsibility:
    Aggregate sales, batches, expenses and stock adjustments into the
    dashboard KPI snapshot for one time window: margins, inventory turnover,
    average basket, cash/credit mix, dead stock, expiry loss trend, sales
    growth and stock accuracy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Inputs are plain domain records; the caller decides where they came from.

Invariants enforced:
    - Only COMPLETED sales whose ``sale_date`` falls in the window count.
    - Windows are half-open ``[start, end)``.
    - Every division guards its denominator; every figure is a finite
      ``Decimal`` quantized to 0.01.
    - Deterministic: identical inputs produce an identical snapshot.

Failure modes:
    - ValidationError from ``KPIWindow`` when ``end <= start``.
    - No other raise paths; empty inputs give an all-zero snapshot (stock
      accuracy reports 100 when there is nothing to count).

Audit relevance:
    Inventory turnover rolls the current on-hand value back through the
    window's receipts, cost of goods sold and adjustments, so the average
    inventory value is reconstructible from the journals alone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal

from pharmacy_engines.tracer import traced_engine
from pharmacy_kernel.domain.models import (
    AdjustmentReason,
    Batch,
    Expense,
    PaymentMethod,
    Sale,
    StockAdjustment,
)
from pharmacy_kernel.exceptions import ValidationError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("engines.kpi")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")

# Adjustment reasons that mean the book quantity disagreed with the shelf.
COUNT_DISCREPANCY_REASONS = frozenset({
    AdjustmentReason.COUNT_VARIANCE,
    AdjustmentReason.CORRECTION,
    AdjustmentReason.THEFT,
})


def _q(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return _ZERO
    return numerator / denominator


@dataclass(frozen=True)
class KPIWindow:
    """Half-open reporting window ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValidationError("window", "end must be after start", (self.start, self.end))

    @classmethod
    def ending_at(cls, now: datetime, days: int) -> KPIWindow:
        """The ``days``-long window that ends at ``now``."""
        if days <= 0:
            raise ValidationError("days", "must be positive", days)
        return cls(start=now - timedelta(days=days), end=now)

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def prior(self) -> KPIWindow:
        """The equal-length window immediately before this one."""
        return KPIWindow(start=self.start - self.length, end=self.start)


@dataclass(frozen=True)
class KPISnapshot:
    """
    KPI values for one window. Not retained by the engine.

    Ratios (``inventory_turnover_rate``, ``cash_credit_ratio``,
    ``dead_stock_ratio``) are plain ratios; ``*_percent`` fields are 0-100
    scale except growth and reduction, which may be negative.
    """

    window: KPIWindow
    gross_profit_margin_percent: Decimal
    inventory_turnover_rate: Decimal
    avg_transaction_value: Decimal
    cash_credit_ratio: Decimal
    dead_stock_ratio: Decimal
    expiry_loss_reduction_percent: Decimal
    sales_growth_percent: Decimal
    net_profit: Decimal
    net_profit_margin_percent: Decimal
    stock_accuracy_percent: Decimal
    total_revenue: Decimal
    total_profit: Decimal
    cost_of_goods_sold: Decimal
    total_expenses: Decimal
    transaction_count: int
    average_inventory_value: Decimal
    expiry_loss: Decimal
    prior_expiry_loss: Decimal


# =============================================================================
# Building blocks
# =============================================================================


def completed_sales_in(window: KPIWindow, sales: Iterable[Sale]) -> list[Sale]:
    return [s for s in sales if s.is_completed and window.contains(s.sale_date)]


def expiry_loss_in(
    window: KPIWindow,
    batches: Iterable[Batch],
    adjustments: Iterable[StockAdjustment],
) -> Decimal:
    """
    Value lost to expiry in the window.

    Written-off units (EXPIRED adjustments dated in the window) plus stock
    still on hand in batches whose expiry instant falls in the window.
    """
    written_off = sum(
        (-a.value for a in adjustments
         if a.reason == AdjustmentReason.EXPIRED and a.delta < 0
         and window.contains(a.created_at)),
        _ZERO,
    )
    tz = window.start.tzinfo
    on_hand = sum(
        (b.stock_value for b in batches
         if b.is_available
         and window.contains(datetime.combine(b.expiry_date, time.min, tzinfo=tz))),
        _ZERO,
    )
    return written_off + on_hand


def inventory_value_at(
    moment: datetime,
    *,
    as_of: datetime,
    batches: Iterable[Batch],
    sales: Iterable[Sale],
    adjustments: Iterable[StockAdjustment],
) -> Decimal:
    """
    On-hand cost value at ``moment``, rolled back from the current value.

    ``as_of`` is the instant the batch quantities reflect. Receipts,
    adjustments and completed sales in ``[moment, as_of)`` are undone.
    Withdrawn batches are excluded throughout. Moments after ``as_of``
    return the current value.
    """
    active = {b.id: b for b in batches if b.is_active}
    value = sum((b.stock_value for b in active.values()), _ZERO)
    if moment >= as_of:
        return value
    span = KPIWindow(start=moment, end=as_of)

    for batch in active.values():
        if batch.created_at is not None and span.contains(batch.created_at):
            value -= batch.purchase_price * batch.received_quantity
    for adjustment in adjustments:
        if adjustment.batch_id in active and span.contains(adjustment.created_at):
            value -= adjustment.value
    for sale in sales:
        if not sale.is_completed or not span.contains(sale.sale_date):
            continue
        for item in sale.items:
            if item.batch_id in active:
                value += item.cost
    return max(value, _ZERO)


def stock_accuracy_percent(
    window: KPIWindow,
    batches: Iterable[Batch],
    adjustments: Iterable[StockAdjustment],
) -> Decimal:
    """
    ``100 * (1 - discrepancy / (on_hand + discrepancy))``.

    Discrepancy is the absolute units corrected by count-variance,
    correction and theft adjustments in the window. 100 with no data.
    """
    discrepancy = sum(
        abs(a.delta) for a in adjustments
        if a.reason in COUNT_DISCREPANCY_REASONS and window.contains(a.created_at)
    )
    on_hand = sum(b.quantity for b in batches if b.is_available)
    counted = on_hand + discrepancy
    if counted == 0:
        return _HUNDRED
    return _HUNDRED * (1 - Decimal(discrepancy) / Decimal(counted))


# =============================================================================
# Aggregate
# =============================================================================


@traced_engine("kpi", "1.0", fingerprint_fields=("window", "now"))
def compute_kpis(
    *,
    window: KPIWindow,
    sales: Iterable[Sale],
    batches: Iterable[Batch],
    expenses: Iterable[Expense],
    adjustments: Iterable[StockAdjustment] = (),
    now: datetime | None = None,
) -> KPISnapshot:
    """
    Compute the KPI snapshot for ``window``.

    Args:
        window: Reporting window.
        sales: Sale journal; non-completed and out-of-window sales are
            ignored.
        batches: Current batch records.
        expenses: Expense records; only those dated in the window count.
        adjustments: Stock adjustment journal.
        now: Instant the batch quantities reflect. Defaults to
            ``window.end``.
    """
    sales = tuple(sales)
    batches = tuple(batches)
    adjustments = tuple(adjustments)
    as_of = now or window.end
    prior = window.prior()

    in_window = completed_sales_in(window, sales)
    revenue = sum((s.total_amount for s in in_window), _ZERO)
    cogs = sum((s.cost for s in in_window), _ZERO)
    profit = revenue - cogs
    count = len(in_window)

    cash = sum((s.paid_with(PaymentMethod.CASH) for s in in_window), _ZERO)
    credit = max(revenue - cash, _ZERO)
    cash_credit = cash / credit if credit > 0 else cash

    opening = inventory_value_at(
        window.start, as_of=as_of, batches=batches, sales=sales, adjustments=adjustments
    )
    closing = inventory_value_at(
        window.end, as_of=as_of, batches=batches, sales=sales, adjustments=adjustments
    )
    average_inventory = (opening + closing) / 2

    moved = {item.batch_id for s in in_window for item in s.items}
    available = [b for b in batches if b.is_available]
    dead = sum(1 for b in available if b.id not in moved)
    dead_ratio = _ratio(Decimal(dead), Decimal(len(available)))

    loss = expiry_loss_in(window, batches, adjustments)
    prior_loss = expiry_loss_in(prior, batches, adjustments)

    prior_revenue = sum(
        (s.total_amount for s in completed_sales_in(prior, sales)), _ZERO
    )
    total_expenses = sum(
        (e.amount for e in expenses if window.contains(e.expense_date)), _ZERO
    )
    net_profit = profit - total_expenses

    snapshot = KPISnapshot(
        window=window,
        gross_profit_margin_percent=_q(_ratio(profit, revenue) * _HUNDRED),
        inventory_turnover_rate=_q(_ratio(cogs, average_inventory)),
        avg_transaction_value=_q(_ratio(revenue, Decimal(count))),
        cash_credit_ratio=_q(cash_credit),
        dead_stock_ratio=_q(dead_ratio),
        expiry_loss_reduction_percent=_q(_ratio(prior_loss - loss, prior_loss) * _HUNDRED),
        sales_growth_percent=_q(_ratio(revenue - prior_revenue, prior_revenue) * _HUNDRED),
        net_profit=_q(net_profit),
        net_profit_margin_percent=_q(_ratio(net_profit, revenue) * _HUNDRED),
        stock_accuracy_percent=_q(stock_accuracy_percent(window, batches, adjustments)),
        total_revenue=_q(revenue),
        total_profit=_q(profit),
        cost_of_goods_sold=_q(cogs),
        total_expenses=_q(total_expenses),
        transaction_count=count,
        average_inventory_value=_q(average_inventory),
        expiry_loss=_q(loss),
        prior_expiry_loss=_q(prior_loss),
    )

    logger.info(
        "kpis_computed",
        extra={
            "window_start": window.start.isoformat(),
            "window_end": window.end.isoformat(),
            "transaction_count": count,
            "total_revenue": str(snapshot.total_revenue),
        },
    )
    return snapshot
