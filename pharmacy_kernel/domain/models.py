"""
Inventory Domain Models (``pharmacy_kernel.domain.models``).

Responsibility
--------------
Frozen value objects for the nouns of the batch ledger: medicines, batches,
sales and their line items, payments, expenses and stock adjustments.

Architecture
------------
Layer: **Kernel > Domain** -- pure data structures, no I/O. The ledger
replaces a batch record wholesale (``dataclasses.replace``) under a lock
rather than mutating it in place, so a reader holding a ``Batch`` never
sees a half-applied change.

Invariants
----------
- ``Batch.quantity >= 0`` always.
- All monetary fields are ``Decimal`` -- never ``float``.
- ``SaleItem.profit == (unit_price - purchase_price) * quantity``.

Audit Relevance
---------------
Exhausted batches are retained with ``quantity == 0``; withdrawn batches
keep their quantity with ``is_active == False``. Neither is ever deleted.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class SaleStatus(str, Enum):
    """Sale lifecycle states. Only COMPLETED sales feed KPIs."""

    PENDING = "pending"
    COMPLETED = "completed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Tender types accepted at the till."""

    CASH = "cash"
    CARD = "card"
    JAZZCASH = "jazzcash"
    EASYPAISA = "easypaisa"
    BANK_TRANSFER = "bank_transfer"


class AdjustmentReason(str, Enum):
    """Why an administrative stock correction was made."""

    DAMAGE = "damage"
    THEFT = "theft"
    CORRECTION = "correction"
    EXPIRED = "expired"
    RECALL = "recall"
    COUNT_VARIANCE = "count_variance"


@dataclass(frozen=True)
class Medicine:
    """
    A catalog medicine.

    Owned by catalog management; the kernel only reads it.
    """

    id: str
    name: str
    reorder_level: int = 0
    reorder_quantity: int = 0
    category: str = "tablets"
    generic_name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class Batch:
    """
    A lot of one medicine received together.

    ``created_at`` is the arrival timestamp and the FEFO tie-break.
    ``received_quantity`` is the quantity at receipt and never changes.
    """

    id: str
    medicine_id: str
    batch_number: str
    expiry_date: date
    quantity: int
    purchase_price: Decimal
    sale_price: Decimal
    created_at: datetime | None = None
    is_active: bool = True
    received_quantity: int = 0
    supplier_id: str | None = None

    @property
    def is_available(self) -> bool:
        """Active and holding stock."""
        return self.is_active and self.quantity > 0

    @property
    def stock_value(self) -> Decimal:
        """Quantity on hand at cost."""
        return self.purchase_price * self.quantity

    @property
    def retail_value(self) -> Decimal:
        """Quantity on hand at sale price."""
        return self.sale_price * self.quantity


@dataclass(frozen=True)
class SaleItem:
    """One dispensed line: a quantity taken from a specific batch."""

    medicine_id: str
    batch_id: str
    quantity: int
    unit_price: Decimal
    purchase_price: Decimal
    fefo_override: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def cost(self) -> Decimal:
        return self.purchase_price * self.quantity

    @property
    def profit(self) -> Decimal:
        return (self.unit_price - self.purchase_price) * self.quantity


@dataclass(frozen=True)
class PaymentLine:
    method: PaymentMethod
    amount: Decimal


@dataclass(frozen=True)
class Sale:
    """
    A point-of-sale transaction.

    ``total_amount`` is the billed amount after discount and tax, which
    are applied by the presentation layer. When omitted it defaults to
    the sum of line totals.
    """

    id: str
    invoice_number: str
    sale_date: datetime
    items: tuple[SaleItem, ...]
    payments: tuple[PaymentLine, ...] = ()
    status: SaleStatus = SaleStatus.COMPLETED
    total_amount: Decimal | None = None

    def __post_init__(self) -> None:
        if self.total_amount is None:
            object.__setattr__(
                self,
                "total_amount",
                sum((item.line_total for item in self.items), Decimal("0")),
            )

    @property
    def is_completed(self) -> bool:
        return self.status == SaleStatus.COMPLETED

    @property
    def profit(self) -> Decimal:
        return sum((item.profit for item in self.items), Decimal("0"))

    @property
    def cost(self) -> Decimal:
        return sum((item.cost for item in self.items), Decimal("0"))

    def paid_with(self, method: PaymentMethod) -> Decimal:
        """Amount tendered with the given method."""
        return sum(
            (p.amount for p in self.payments if p.method == method),
            Decimal("0"),
        )


@dataclass(frozen=True)
class Expense:
    id: str
    category: str
    amount: Decimal
    expense_date: datetime


@dataclass(frozen=True)
class StockAdjustment:
    """Append-only record of an administrative stock correction."""

    id: str
    batch_id: str
    medicine_id: str
    delta: int
    reason: AdjustmentReason
    quantity_before: int
    quantity_after: int
    unit_cost: Decimal
    created_at: datetime
    actor_id: str | None = None
    note: str = ""

    @property
    def value(self) -> Decimal:
        """Signed value of the correction at cost."""
        return self.unit_cost * self.delta


@dataclass(frozen=True)
class InventorySnapshot:
    """
    Point-in-time read view of the ledger.

    Reports and dashboards compute over a snapshot; nothing here is
    cached between calls.
    """

    taken_at: datetime
    medicines: tuple[Medicine, ...] = ()
    batches: tuple[Batch, ...] = ()
    sales: tuple[Sale, ...] = ()
    adjustments: tuple[StockAdjustment, ...] = ()
