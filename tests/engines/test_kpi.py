"""
Tests for the KPI aggregator.

Covers:
- Window arithmetic
- Margin, basket and cash/credit figures
- Inventory turnover rolled back through the window's movements
- Dead stock, expiry loss trend, sales growth, net profit
- Zero-data snapshots never divide by zero
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from pharmacy_engines.kpi import KPIWindow, compute_kpis, inventory_value_at
from pharmacy_kernel.domain.models import (
    AdjustmentReason,
    Expense,
    PaymentLine,
    PaymentMethod,
    SaleStatus,
    StockAdjustment,
)
from pharmacy_kernel.exceptions import ValidationError
from tests.builders import NOW, item_for, make_batch, make_sale

WINDOW = KPIWindow.ending_at(NOW, 30)


def _adjustment(batch_id, delta, reason, when, unit_cost="10.00"):
    return StockAdjustment(
        id=str(uuid4()),
        batch_id=batch_id,
        medicine_id="med-panadol",
        delta=delta,
        reason=reason,
        quantity_before=100,
        quantity_after=100 + delta,
        unit_cost=Decimal(unit_cost),
        created_at=when,
    )


def _expense(amount, when):
    return Expense(id=str(uuid4()), category="rent", amount=Decimal(amount), expense_date=when)


class TestKPIWindow:
    """Tests for window arithmetic."""

    def test_half_open(self):
        assert WINDOW.contains(WINDOW.start)
        assert not WINDOW.contains(WINDOW.end)

    def test_prior_is_adjacent_and_equal_length(self):
        prior = WINDOW.prior()

        assert prior.end == WINDOW.start
        assert prior.length == WINDOW.length == timedelta(days=30)

    def test_rejects_empty_window(self):
        with pytest.raises(ValidationError):
            KPIWindow(start=NOW, end=NOW)

    def test_rejects_non_positive_days(self):
        with pytest.raises(ValidationError):
            KPIWindow.ending_at(NOW, 0)


class TestMargins:
    """Scenario: revenue 1000, profit 200 gives a 20% margin."""

    def setup_method(self):
        self.batch = make_batch(quantity=10, purchase_price="80.00", sale_price="100.00")
        self.sale = make_sale(
            [item_for(self.batch, 10)],
            sale_date=NOW - timedelta(days=1),
            payments=(
                PaymentLine(PaymentMethod.CASH, Decimal("600")),
                PaymentLine(PaymentMethod.CARD, Decimal("400")),
            ),
        )

    def test_gross_margin(self):
        kpis = compute_kpis(window=WINDOW, sales=[self.sale], batches=[], expenses=[])

        assert kpis.total_revenue == Decimal("1000.00")
        assert kpis.total_profit == Decimal("200.00")
        assert kpis.gross_profit_margin_percent == Decimal("20.00")

    def test_average_transaction_value(self):
        second = make_sale([item_for(self.batch, 5)], sale_date=NOW - timedelta(days=2))

        kpis = compute_kpis(window=WINDOW, sales=[self.sale, second], batches=[], expenses=[])

        assert kpis.transaction_count == 2
        assert kpis.avg_transaction_value == Decimal("750.00")

    def test_cash_credit_ratio(self):
        kpis = compute_kpis(window=WINDOW, sales=[self.sale], batches=[], expenses=[])

        assert kpis.cash_credit_ratio == Decimal("1.50")

    def test_cash_credit_ratio_without_credit_is_cash(self):
        all_cash = make_sale([item_for(self.batch, 2)], sale_date=NOW - timedelta(days=1))

        kpis = compute_kpis(window=WINDOW, sales=[all_cash], batches=[], expenses=[])

        assert kpis.cash_credit_ratio == Decimal("200.00")

    def test_only_completed_sales_in_window_count(self):
        cancelled = make_sale(
            [item_for(self.batch, 3)],
            sale_date=NOW - timedelta(days=1),
            status=SaleStatus.CANCELLED,
        )
        too_old = make_sale([item_for(self.batch, 3)], sale_date=NOW - timedelta(days=31))
        at_end = make_sale([item_for(self.batch, 3)], sale_date=NOW)

        kpis = compute_kpis(
            window=WINDOW, sales=[self.sale, cancelled, too_old, at_end], batches=[], expenses=[]
        )

        assert kpis.transaction_count == 1

    def test_net_profit_subtracts_window_expenses(self):
        expenses = [
            _expense("50", NOW - timedelta(days=5)),
            _expense("30", NOW - timedelta(days=45)),
        ]

        kpis = compute_kpis(window=WINDOW, sales=[self.sale], batches=[], expenses=expenses)

        assert kpis.total_expenses == Decimal("50.00")
        assert kpis.net_profit == Decimal("150.00")
        assert kpis.net_profit_margin_percent == Decimal("15.00")

    def test_sales_growth_against_prior_window(self):
        prior_sale = make_sale([item_for(self.batch, 5)], sale_date=NOW - timedelta(days=40))

        kpis = compute_kpis(
            window=WINDOW, sales=[self.sale, prior_sale], batches=[], expenses=[]
        )

        assert kpis.sales_growth_percent == Decimal("100.00")


class TestInventoryTurnover:
    """Tests for turnover and the rolled-back inventory value."""

    def setup_method(self):
        received = NOW - timedelta(days=60)
        # 20 received, 10 sold in the window.
        self.sold = make_batch(
            batch_id="b-sold", quantity=10, purchase_price="80.00", created_at=received
        )
        self.idle = make_batch(
            batch_id="b-idle", quantity=10, purchase_price="10.00", created_at=received
        )
        self.sale = make_sale(
            [item_for(self.sold, 10, unit_price="100.00")],
            sale_date=NOW - timedelta(days=1),
        )

    def test_opening_value_adds_back_cost_of_goods_sold(self):
        opening = inventory_value_at(
            WINDOW.start,
            as_of=NOW,
            batches=[self.sold, self.idle],
            sales=[self.sale],
            adjustments=[],
        )

        assert opening == Decimal("1700.00")

    def test_turnover(self):
        kpis = compute_kpis(
            window=WINDOW, sales=[self.sale], batches=[self.sold, self.idle], expenses=[]
        )

        assert kpis.cost_of_goods_sold == Decimal("800.00")
        assert kpis.average_inventory_value == Decimal("1300.00")
        assert kpis.inventory_turnover_rate == Decimal("0.62")

    def test_receipts_in_window_are_rolled_back(self):
        fresh = make_batch(
            batch_id="b-fresh", quantity=5, purchase_price="10.00", created_at=NOW - timedelta(days=2)
        )

        opening = inventory_value_at(
            WINDOW.start, as_of=NOW, batches=[self.idle, fresh], sales=[], adjustments=[]
        )

        assert opening == Decimal("100.00")

    def test_dead_stock_ratio(self):
        kpis = compute_kpis(
            window=WINDOW, sales=[self.sale], batches=[self.sold, self.idle], expenses=[]
        )

        assert kpis.dead_stock_ratio == Decimal("0.50")


class TestExpiryLossAndAccuracy:
    """Tests for the expiry loss trend and stock accuracy."""

    def test_expiry_loss_reduction(self):
        adjustments = [
            _adjustment("b-x", -5, AdjustmentReason.EXPIRED, NOW - timedelta(days=45)),
            _adjustment("b-x", -2, AdjustmentReason.EXPIRED, NOW - timedelta(days=10)),
        ]

        kpis = compute_kpis(
            window=WINDOW, sales=[], batches=[], expenses=[], adjustments=adjustments
        )

        assert kpis.prior_expiry_loss == Decimal("50.00")
        assert kpis.expiry_loss == Decimal("20.00")
        assert kpis.expiry_loss_reduction_percent == Decimal("60.00")

    def test_expired_stock_on_hand_counts_as_loss(self):
        expired = make_batch(expires_in_days=-5, quantity=3, purchase_price="7.00")

        kpis = compute_kpis(window=WINDOW, sales=[], batches=[expired], expenses=[])

        assert kpis.expiry_loss == Decimal("21.00")

    def test_no_prior_loss_gives_zero_reduction(self):
        adjustments = [_adjustment("b-x", -2, AdjustmentReason.EXPIRED, NOW - timedelta(days=10))]

        kpis = compute_kpis(
            window=WINDOW, sales=[], batches=[], expenses=[], adjustments=adjustments
        )

        assert kpis.expiry_loss_reduction_percent == Decimal("0.00")

    def test_stock_accuracy(self):
        batch = make_batch(batch_id="b-count", quantity=95)
        adjustments = [
            _adjustment("b-count", -5, AdjustmentReason.COUNT_VARIANCE, NOW - timedelta(days=3)),
            _adjustment("b-count", -4, AdjustmentReason.DAMAGE, NOW - timedelta(days=3)),
        ]

        kpis = compute_kpis(
            window=WINDOW, sales=[], batches=[batch], expenses=[], adjustments=adjustments
        )

        assert kpis.stock_accuracy_percent == Decimal("95.00")


class TestZeroData:
    """Scenario: a window with no completed sales."""

    def test_all_ratios_zero(self):
        kpis = compute_kpis(window=WINDOW, sales=[], batches=[], expenses=[])

        assert kpis.gross_profit_margin_percent == Decimal("0.00")
        assert kpis.avg_transaction_value == Decimal("0.00")
        assert kpis.inventory_turnover_rate == Decimal("0.00")
        assert kpis.cash_credit_ratio == Decimal("0.00")
        assert kpis.dead_stock_ratio == Decimal("0.00")
        assert kpis.sales_growth_percent == Decimal("0.00")
        assert kpis.net_profit_margin_percent == Decimal("0.00")
        assert kpis.stock_accuracy_percent == Decimal("100.00")

    def test_values_are_finite_decimals(self):
        kpis = compute_kpis(window=WINDOW, sales=[], batches=[make_batch()], expenses=[])

        for name in (
            "gross_profit_margin_percent",
            "inventory_turnover_rate",
            "avg_transaction_value",
            "cash_credit_ratio",
            "dead_stock_ratio",
            "expiry_loss_reduction_percent",
        ):
            value = getattr(kpis, name)
            assert isinstance(value, Decimal)
            assert value.is_finite()

    def test_deterministic(self):
        batches = [make_batch(batch_id="b-1")]

        first = compute_kpis(window=WINDOW, sales=[], batches=batches, expenses=[])
        second = compute_kpis(window=WINDOW, sales=[], batches=batches, expenses=[])

        assert first == second
