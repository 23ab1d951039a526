"""
BatchLedger -- owns batch quantities and every mutation applied to them.

Responsibility:
    Receive batches from purchase receiving, decrement them for dispensing
    (alone or as a whole multi-line sale), apply administrative stock
    adjustments, withdraw recalled or damaged lots, and answer stock
    questions per medicine.

Architecture position:
    Kernel > Services -- imperative shell over ``InventoryStore``.
    Receives the store, a Clock and an AuditSink by constructor injection.
    The FEFO selector and report service sit above it and never touch the
    store directly for writes.

Invariants enforced:
    - Stock invariant: ``get_medicine_stock(m)`` is always the sum of
      ``quantity`` over active batches of ``m``; there is no stored total.
    - Non-negative floor: no mutation can leave ``quantity < 0``.
    - All-or-nothing: validation, the caller's ``on_commit`` hook and the
      batch replacement all happen under the medicine lock, and the new
      quantities are published only after ``on_commit`` returns. A raising
      hook leaves the ledger untouched.
    - No lost update: two dispensing requests against the same medicine are
      serialized by ``InventoryStore.medicine_lock``.

Failure modes:
    - ValidationError: non-positive quantity, negative price, missing expiry
      date, duplicate batch id, zero adjustment delta, unknown reason.
    - MedicineNotFoundError: batch received for an unregistered medicine.
    - BatchNotFoundError: unknown batch id.
    - InsufficientStockError: decrement or negative adjustment beyond the
      batch's current quantity (inactive batches count as empty).
    - Anything raised by ``on_commit`` propagates unchanged.

Audit relevance:
    Receipt, withdrawal, adjustment and sale commits each emit an AuditEvent
    through ``deliver_audit_event``. Delivery is best effort and happens
    after the mutation is published, so a failing sink is logged and the
    mutation stands.

Usage:
    store = InventoryStore()
    ledger = BatchLedger(store, clock=SystemClock(), audit_sink=sink)
    ledger.register_medicine(Medicine(id="med-1", name="Panadol"))
    ledger.add_batch(Batch(...))
    ledger.decrement_batch("batch-1", 2, on_commit=sales_repo.save)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from pharmacy_kernel.domain.audit import (
    AuditAction,
    AuditEvent,
    AuditSink,
    deliver_audit_event,
)
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.models import (
    AdjustmentReason,
    Batch,
    InventorySnapshot,
    Medicine,
    Sale,
    StockAdjustment,
)
from pharmacy_kernel.exceptions import (
    BatchNotFoundError,
    InsufficientStockError,
    MedicineNotFoundError,
    ValidationError,
)
from pharmacy_kernel.logging_config import LogContext, get_logger
from pharmacy_kernel.services.inventory_store import InventoryStore

logger = get_logger("services.batch_ledger")


def _as_decimal(field: str, value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, "must be a number", value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(field, "must be a number", value) from exc


def _require_positive_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer", value)
    if value <= 0:
        raise ValidationError(field, "must be positive", value)
    return value


class BatchLedger:
    """
    Batch ledger over an InventoryStore.

    Contract:
        Receives the store, Clock and AuditSink via constructor injection.
        Mutations lock the affected medicine(s); reads never lock.
    Guarantees:
        - ``add_batch`` stores an active batch whose ``received_quantity``
          equals its quantity.
        - ``decrement_batch`` / ``commit_sale`` / ``adjust_batch`` either
          apply completely or not at all.
        - Exhausted and withdrawn batches remain retrievable.
    Non-goals:
        - Does not choose which batch to dispense; that is FefoSelector's job.
        - Does not persist anything; ``on_commit`` hands the record to the
          caller's own persistence inside the critical section.
    """

    def __init__(
        self,
        store: InventoryStore,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink

    # =========================================================================
    # Catalog feed
    # =========================================================================

    def register_medicine(self, medicine: Medicine) -> Medicine:
        """Insert or refresh a catalog medicine (catalog management feed)."""
        if medicine.reorder_level < 0:
            raise ValidationError("reorder_level", "cannot be negative", medicine.reorder_level)
        if medicine.reorder_quantity < 0:
            raise ValidationError(
                "reorder_quantity", "cannot be negative", medicine.reorder_quantity
            )
        self.store.put_medicine(medicine)
        logger.debug("medicine_registered", extra={"medicine_id": medicine.id})
        return medicine

    def get_medicine(self, medicine_id: str) -> Medicine:
        medicine = self.store.get_medicine(medicine_id)
        if medicine is None:
            raise MedicineNotFoundError(medicine_id)
        return medicine

    # =========================================================================
    # Receiving
    # =========================================================================

    def add_batch(self, batch: Batch) -> Batch:
        """
        Record a batch received against a purchase order.

        Preconditions:
            quantity > 0, purchase_price >= 0, sale_price >= 0, expiry_date
            set, medicine registered, batch id unused.

        Postconditions:
            The stored batch is active, ``received_quantity == quantity``
            and ``created_at`` is set (clock time when not supplied).

        Raises:
            ValidationError, MedicineNotFoundError.
        """
        quantity = _require_positive_int("quantity", batch.quantity)
        purchase_price = _as_decimal("purchase_price", batch.purchase_price)
        sale_price = _as_decimal("sale_price", batch.sale_price)
        if purchase_price < 0:
            raise ValidationError("purchase_price", "cannot be negative", purchase_price)
        if sale_price < 0:
            raise ValidationError("sale_price", "cannot be negative", sale_price)
        if batch.expiry_date is None:
            raise ValidationError("expiry_date", "is required")
        if not isinstance(batch.expiry_date, date):
            raise ValidationError("expiry_date", "must be a date", batch.expiry_date)
        if self.store.get_medicine(batch.medicine_id) is None:
            raise MedicineNotFoundError(batch.medicine_id)

        expiry_date = batch.expiry_date
        if isinstance(expiry_date, datetime):
            expiry_date = expiry_date.date()

        stored = replace(
            batch,
            expiry_date=expiry_date,
            purchase_price=purchase_price,
            sale_price=sale_price,
            is_active=True,
            received_quantity=quantity,
            created_at=batch.created_at or self.clock.now(),
        )

        with self.store.medicine_lock(stored.medicine_id):
            try:
                self.store.insert_batch(stored)
            except KeyError:
                raise ValidationError("id", "batch id already exists", stored.id) from None

        logger.info(
            "batch_received",
            extra={
                "batch_id": stored.id,
                "medicine_id": stored.medicine_id,
                "batch_number": stored.batch_number,
                "quantity": quantity,
                "expiry_date": stored.expiry_date,
                "purchase_price": purchase_price,
            },
        )
        self._audit(
            AuditAction.BATCH_RECEIVED,
            stored,
            {"quantity": quantity, "expiry_date": stored.expiry_date},
        )
        return stored

    # =========================================================================
    # Dispensing
    # =========================================================================

    def decrement_batch(
        self,
        batch_id: str,
        quantity: int,
        on_commit: Callable[[Batch], None] | None = None,
    ) -> Batch:
        """
        Remove ``quantity`` units from one batch.

        ``on_commit`` receives the would-be batch record while the medicine
        lock is held and before the new quantity is published; it is where
        the caller persists its sale record. If it raises, nothing changes.

        Returns:
            The updated batch.

        Raises:
            ValidationError, BatchNotFoundError, InsufficientStockError.
        """
        quantity = _require_positive_int("quantity", quantity)
        medicine_id = self.get_batch(batch_id).medicine_id

        with self.store.medicine_lock(medicine_id):
            current = self.get_batch(batch_id)
            available = current.quantity if current.is_active else 0
            if quantity > available:
                logger.warning(
                    "batch_decrement_rejected",
                    extra={
                        "batch_id": batch_id,
                        "medicine_id": medicine_id,
                        "requested": quantity,
                        "available": available,
                    },
                )
                raise InsufficientStockError(batch_id, quantity, available)

            updated = replace(current, quantity=current.quantity - quantity)
            if on_commit is not None:
                on_commit(updated)
            self.store.replace_batch(updated)

        logger.info(
            "batch_decremented",
            extra={
                "batch_id": batch_id,
                "medicine_id": medicine_id,
                "quantity": quantity,
                "remaining": updated.quantity,
            },
        )
        return updated

    def commit_sale(
        self,
        sale: Sale,
        on_commit: Callable[[Sale], None] | None = None,
    ) -> Sale:
        """
        Decrement every line of ``sale`` and journal the sale, atomically.

        Lines drawing on the same batch are summed before the stock check.
        Every affected medicine is locked for the whole unit.

        Only completed sales move stock; pending, returned and cancelled
        sales are rejected. Each line must name the medicine its batch
        belongs to.

        Raises:
            ValidationError, BatchNotFoundError, InsufficientStockError.
        """
        if not sale.items:
            raise ValidationError("items", "a sale needs at least one line", sale.id)
        if not sale.is_completed:
            raise ValidationError("status", "only completed sales are committed", sale.status)

        requested: dict[str, int] = defaultdict(int)
        for item in sale.items:
            requested[item.batch_id] += _require_positive_int("quantity", item.quantity)

        medicine_ids = set()
        for item in sale.items:
            batch = self.get_batch(item.batch_id)
            if item.medicine_id != batch.medicine_id:
                raise ValidationError(
                    "medicine_id",
                    f"line names {item.medicine_id} but batch belongs to {batch.medicine_id}",
                    item.batch_id,
                )
            medicine_ids.add(batch.medicine_id)

        with LogContext.bind(sale_id=sale.id):
            with self.store.locked_medicines(medicine_ids):
                updates: list[Batch] = []
                for batch_id, quantity in requested.items():
                    current = self.get_batch(batch_id)
                    available = current.quantity if current.is_active else 0
                    if quantity > available:
                        logger.warning(
                            "sale_commit_rejected",
                            extra={
                                "batch_id": batch_id,
                                "requested": quantity,
                                "available": available,
                            },
                        )
                        raise InsufficientStockError(batch_id, quantity, available)
                    updates.append(replace(current, quantity=current.quantity - quantity))

                if on_commit is not None:
                    on_commit(sale)
                for updated in updates:
                    self.store.replace_batch(updated)
                self.store.append_sale(sale)

            logger.info(
                "sale_committed",
                extra={
                    "invoice_number": sale.invoice_number,
                    "line_count": len(sale.items),
                    "batch_count": len(updates),
                    "total_amount": sale.total_amount,
                },
            )
            deliver_audit_event(
                self.audit_sink,
                AuditEvent.create(
                    action=AuditAction.SALE_COMMITTED,
                    entity_type="sale",
                    entity_id=sale.id,
                    occurred_at=self.clock.now(),
                    payload={
                        "invoice_number": sale.invoice_number,
                        "batches": {k: v for k, v in sorted(requested.items())},
                        "fefo_overrides": sum(1 for i in sale.items if i.fefo_override),
                    },
                ),
            )
        return sale

    # =========================================================================
    # Administrative corrections
    # =========================================================================

    def adjust_batch(
        self,
        batch_id: str,
        delta: int,
        reason: AdjustmentReason | str,
        actor_id: str | None = None,
        note: str = "",
    ) -> StockAdjustment:
        """
        Apply an administrative correction (damage, theft, count variance...).

        Emits a ``stock_adjusted`` audit event, never an override event.

        Raises:
            ValidationError: zero or non-integer delta, unknown reason.
            BatchNotFoundError: unknown batch.
            InsufficientStockError: the correction would go below zero.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta", "must be an integer", delta)
        if delta == 0:
            raise ValidationError("delta", "must be non-zero", delta)
        try:
            reason = AdjustmentReason(reason)
        except ValueError:
            raise ValidationError("reason", "unknown adjustment reason", reason) from None

        medicine_id = self.get_batch(batch_id).medicine_id
        with self.store.medicine_lock(medicine_id):
            current = self.get_batch(batch_id)
            new_quantity = current.quantity + delta
            if new_quantity < 0:
                raise InsufficientStockError(batch_id, -delta, current.quantity)

            adjustment = StockAdjustment(
                id=str(uuid4()),
                batch_id=batch_id,
                medicine_id=medicine_id,
                delta=delta,
                reason=reason,
                quantity_before=current.quantity,
                quantity_after=new_quantity,
                unit_cost=current.purchase_price,
                created_at=self.clock.now(),
                actor_id=actor_id,
                note=note,
            )
            self.store.replace_batch(replace(current, quantity=new_quantity))
            self.store.append_adjustment(adjustment)

        logger.info(
            "stock_adjusted",
            extra={
                "batch_id": batch_id,
                "medicine_id": medicine_id,
                "delta": delta,
                "reason": reason.value,
                "quantity_after": new_quantity,
            },
        )
        self._audit(
            AuditAction.STOCK_ADJUSTED,
            current,
            {
                "adjustment_id": adjustment.id,
                "delta": delta,
                "reason": reason.value,
                "quantity_before": adjustment.quantity_before,
                "quantity_after": new_quantity,
                "note": note,
            },
            actor_id=actor_id,
        )
        return adjustment

    def withdraw_batch(
        self,
        batch_id: str,
        reason: AdjustmentReason | str,
        actor_id: str | None = None,
    ) -> Batch:
        """Take a batch out of service (recall, damage). Quantity is kept."""
        try:
            reason = AdjustmentReason(reason)
        except ValueError:
            raise ValidationError("reason", "unknown adjustment reason", reason) from None

        medicine_id = self.get_batch(batch_id).medicine_id
        with self.store.medicine_lock(medicine_id):
            current = self.get_batch(batch_id)
            if not current.is_active:
                return current
            withdrawn = replace(current, is_active=False)
            self.store.replace_batch(withdrawn)

        logger.info(
            "batch_withdrawn",
            extra={
                "batch_id": batch_id,
                "medicine_id": medicine_id,
                "reason": reason.value,
                "quantity": withdrawn.quantity,
            },
        )
        self._audit(
            AuditAction.BATCH_WITHDRAWN,
            withdrawn,
            {"reason": reason.value, "quantity": withdrawn.quantity},
            actor_id=actor_id,
        )
        return withdrawn

    # =========================================================================
    # Reads (lock-free)
    # =========================================================================

    def get_batch(self, batch_id: str) -> Batch:
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def get_medicine_stock(self, medicine_id: str) -> int:
        """Sum of quantity over active batches; 0 for an unknown medicine."""
        return sum(
            b.quantity for b in self.store.batches_for(medicine_id) if b.is_active
        )

    def list_available_batches(self, medicine_id: str) -> list[Batch]:
        """Active batches with stock, in no particular order."""
        return [b for b in self.store.batches_for(medicine_id) if b.is_available]

    def snapshot(self) -> InventorySnapshot:
        return self.store.snapshot(self.clock.now())

    # =========================================================================
    # Internal
    # =========================================================================

    def _audit(
        self,
        action: AuditAction,
        batch: Batch,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> None:
        deliver_audit_event(
            self.audit_sink,
            AuditEvent.create(
                action=action,
                entity_type="batch",
                entity_id=batch.id,
                occurred_at=self.clock.now(),
                payload={"medicine_id": batch.medicine_id, **payload},
                actor_id=actor_id,
            ),
        )
