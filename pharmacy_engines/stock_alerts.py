"""
Module: pharmacy_engines.stock_alerts
Responsibility:
    Derive live low-stock / out-of-stock signals per medicine from current
    ledger state, and list slow-moving medicines that hold stock but have
    not sold recently.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - No alert is ever stored. Each call recomputes from the stock figures
      passed in, so a medicine that is restocked and then depleted again is
      always surfaced again.
    - Alert ids are stable (``low-<medicine_id>``); dismissal is a filter
      the caller applies on ids.

Failure modes:
    - None. Medicines unknown to ``stock_of`` simply report stock 0.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from pharmacy_engines.tracer import traced_engine
from pharmacy_kernel.domain.models import Batch, Medicine, Sale
from pharmacy_kernel.domain.policy import StockAlertLevel
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("engines.stock_alerts")


@dataclass(frozen=True)
class LowStockAlert:
    id: str
    medicine_id: str
    medicine_name: str
    current_stock: int
    reorder_level: int
    suggested_reorder_quantity: int
    level: StockAlertLevel


@dataclass(frozen=True)
class SlowMovingItem:
    """
    A medicine holding stock with no completed sale in the lookback window.

    ``days_since_last_sale`` is None when the medicine has never sold.
    """

    medicine_id: str
    medicine_name: str
    stock_quantity: int
    stock_value: Decimal
    last_sold_at: datetime | None
    days_since_last_sale: int | None


@traced_engine("low_stock_alerts", "1.0")
def generate_low_stock_alerts(
    medicines: Iterable[Medicine],
    stock_of: Callable[[str], int],
) -> tuple[LowStockAlert, ...]:
    """
    Alerts for every active medicine at or below its reorder level.

    Args:
        medicines: Catalog medicines; inactive ones are skipped.
        stock_of: Current stock lookup, normally
            ``BatchLedger.get_medicine_stock``.

    Returns:
        Out-of-stock alerts first, then low-stock, each by medicine name.
    """
    alerts: list[LowStockAlert] = []
    for medicine in medicines:
        if not medicine.is_active:
            continue
        stock = stock_of(medicine.id)
        if stock == 0:
            level = StockAlertLevel.OUT_OF_STOCK
        elif stock <= medicine.reorder_level:
            level = StockAlertLevel.LOW_STOCK
        else:
            continue
        alerts.append(
            LowStockAlert(
                id=f"low-{medicine.id}",
                medicine_id=medicine.id,
                medicine_name=medicine.name,
                current_stock=stock,
                reorder_level=medicine.reorder_level,
                suggested_reorder_quantity=medicine.reorder_quantity,
                level=level,
            )
        )

    alerts.sort(
        key=lambda a: (a.level != StockAlertLevel.OUT_OF_STOCK, a.medicine_name, a.medicine_id)
    )
    logger.debug(
        "low_stock_alerts_generated",
        extra={
            "alert_count": len(alerts),
            "out_of_stock_count": sum(
                1 for a in alerts if a.level == StockAlertLevel.OUT_OF_STOCK
            ),
        },
    )
    return tuple(alerts)


@traced_engine("slow_moving_items", "1.0", fingerprint_fields=("now", "days"))
def find_slow_moving_items(
    *,
    medicines: Iterable[Medicine],
    batches: Iterable[Batch],
    sales: Iterable[Sale],
    now: datetime,
    days: int,
) -> tuple[SlowMovingItem, ...]:
    """Active medicines with stock and no completed sale in the last ``days`` days."""
    last_sold: dict[str, datetime] = {}
    for sale in sales:
        if not sale.is_completed:
            continue
        for item in sale.items:
            seen = last_sold.get(item.medicine_id)
            if seen is None or sale.sale_date > seen:
                last_sold[item.medicine_id] = sale.sale_date

    quantity: dict[str, int] = {}
    value: dict[str, Decimal] = {}
    for batch in batches:
        if not batch.is_available:
            continue
        quantity[batch.medicine_id] = quantity.get(batch.medicine_id, 0) + batch.quantity
        value[batch.medicine_id] = (
            value.get(batch.medicine_id, Decimal("0")) + batch.stock_value
        )

    items: list[SlowMovingItem] = []
    for medicine in medicines:
        if not medicine.is_active or quantity.get(medicine.id, 0) == 0:
            continue
        sold_at = last_sold.get(medicine.id)
        idle_days = (now - sold_at).days if sold_at is not None else None
        if idle_days is not None and idle_days < days:
            continue
        items.append(
            SlowMovingItem(
                medicine_id=medicine.id,
                medicine_name=medicine.name,
                stock_quantity=quantity[medicine.id],
                stock_value=value[medicine.id],
                last_sold_at=sold_at,
                days_since_last_sale=idle_days,
            )
        )

    # Never-sold first, then longest idle, then most capital tied up.
    items.sort(
        key=lambda i: (
            i.days_since_last_sale is not None,
            -(i.days_since_last_sale or 0),
            -i.stock_value,
            i.medicine_id,
        )
    )
    return tuple(items)
