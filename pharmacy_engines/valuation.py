"""
Module: pharmacy_engines.valuation
Responsibility:
    Per-batch profitability rows and stock value totals for the export
    aggregator (batch analysis sheet, valuation summary).

Architecture position:
    Engines -- pure calculation layer, zero I/O. Read-only over batches.

Invariants enforced:
    - Only available batches are valued.
    - Margin is profit per unit over sale price, 0 when the sale price is 0.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from pharmacy_engines.expiry_risk import UNKNOWN_MEDICINE_NAME, days_until_expiry
from pharmacy_engines.tracer import traced_engine
from pharmacy_kernel.domain.models import Batch, Medicine

_ZERO = Decimal("0")
_CENT = Decimal("0.01")


@dataclass(frozen=True)
class BatchAnalysisRow:
    batch_id: str
    medicine_id: str
    medicine_name: str
    batch_number: str
    expiry_date: date
    days_to_expiry: int
    quantity: int
    purchase_price: Decimal
    sale_price: Decimal
    profit_per_unit: Decimal
    margin_percent: Decimal
    stock_value: Decimal
    potential_profit: Decimal


@dataclass(frozen=True)
class StockValuationSummary:
    batch_count: int
    total_units: int
    stock_value: Decimal
    retail_value: Decimal
    potential_profit: Decimal


@traced_engine("batch_analysis", "1.0", fingerprint_fields=("now",))
def build_batch_analysis(
    *,
    batches: Iterable[Batch],
    medicines: Iterable[Medicine] = (),
    now: datetime | date,
) -> tuple[BatchAnalysisRow, ...]:
    """Profitability row per available batch, highest potential profit first."""
    names = {m.id: m.name for m in medicines}
    rows: list[BatchAnalysisRow] = []
    for batch in batches:
        if not batch.is_available:
            continue
        profit_per_unit = batch.sale_price - batch.purchase_price
        margin = (
            profit_per_unit / batch.sale_price * 100 if batch.sale_price else _ZERO
        )
        rows.append(
            BatchAnalysisRow(
                batch_id=batch.id,
                medicine_id=batch.medicine_id,
                medicine_name=names.get(batch.medicine_id, UNKNOWN_MEDICINE_NAME),
                batch_number=batch.batch_number,
                expiry_date=batch.expiry_date,
                days_to_expiry=days_until_expiry(batch.expiry_date, now),
                quantity=batch.quantity,
                purchase_price=batch.purchase_price,
                sale_price=batch.sale_price,
                profit_per_unit=profit_per_unit,
                margin_percent=margin.quantize(_CENT, rounding=ROUND_HALF_UP),
                stock_value=batch.stock_value,
                potential_profit=profit_per_unit * batch.quantity,
            )
        )
    rows.sort(key=lambda r: (-r.potential_profit, r.batch_id))
    return tuple(rows)


def summarize_stock_value(batches: Iterable[Batch]) -> StockValuationSummary:
    available = [b for b in batches if b.is_available]
    stock_value = sum((b.stock_value for b in available), _ZERO)
    retail_value = sum((b.retail_value for b in available), _ZERO)
    return StockValuationSummary(
        batch_count=len(available),
        total_units=sum(b.quantity for b in available),
        stock_value=stock_value,
        retail_value=retail_value,
        potential_profit=retail_value - stock_value,
    )
