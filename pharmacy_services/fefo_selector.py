"""
FefoSelector -- FEFO dispensing arbitration with two-phase overrides.

Responsibility:
    Decide which batch satisfies a dispensing request. The FEFO suggestion
    is always accepted. A request for any other batch is rejected in
    STRICT mode, and in SUGGEST mode becomes a pending override that the
    caller must confirm (or cancel) before anything is decremented.

Architecture position:
    Services -- stateful orchestration over the BatchLedger.
    Ordering comes from pharmacy_engines.fefo; writes go through the ledger.

Invariants enforced:
    - STRICT mode never yields ``override=True``; a non-suggested request
      raises FefoStrictViolation with no mutation and no audit event.
    - ``propose_override`` never mutates the ledger.
    - A pending override token is consumed exactly once. Confirming twice,
      after cancel, or after its time-to-live raises PendingSelectionError.
    - Lapsed proposals are dropped on every propose and confirm, so
      abandoned tokens do not accumulate.
    - ``confirm_override`` re-validates stock under the medicine lock and
      emits exactly one FEFO_OVERRIDE audit event per successful confirm.
    - When a Sale is supplied, the decrement and the sale journal entry
      are one ``BatchLedger.commit_sale`` unit, so reports see the sale.

Failure modes:
    - BatchNotFoundError: requested batch unknown, belongs to another
      medicine, or is not available.
    - InsufficientStockError: requested batch holds less than ``quantity``.
    - FefoStrictViolation: STRICT mode and a non-suggested batch.
    - PendingSelectionError: token reused, cancelled, expired or never
      issued.
    - ValidationError: the supplied Sale does not carry the selected
      quantity on the selected batch.

Audit relevance:
    Every confirmed override records medicine, requested batch and the
    batch FEFO suggested at proposal time. Audit delivery is best effort
    and never rolls back the decrement.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from pharmacy_config.schema import InventorySettings
from pharmacy_engines.fefo import order_fefo
from pharmacy_kernel.domain.audit import (
    AuditAction,
    AuditEvent,
    AuditSink,
    deliver_audit_event,
)
from pharmacy_kernel.domain.clock import Clock
from pharmacy_kernel.domain.models import Batch, Sale
from pharmacy_kernel.domain.policy import FefoMode
from pharmacy_kernel.exceptions import (
    BatchNotFoundError,
    FefoStrictViolation,
    InsufficientStockError,
    PendingSelectionError,
    ValidationError,
)
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.services.batch_ledger import BatchLedger

logger = get_logger("services.fefo_selector")

# Placeholder batch id reported when a medicine has nothing to suggest.
NO_AVAILABLE_BATCH = "none"

DEFAULT_OVERRIDE_TTL_SECONDS = InventorySettings.override_ttl_seconds


@dataclass(frozen=True)
class BatchSelection:
    """An accepted, non-override selection ready to dispense."""

    medicine_id: str
    batch_id: str
    quantity: int
    override: bool = False


@dataclass(frozen=True)
class PendingOverride:
    """
    A proposed override awaiting confirmation.

    Holding one changes nothing; only ``FefoSelector.confirm_override``
    decrements stock.
    """

    token: str
    medicine_id: str
    requested_batch_id: str
    suggested_batch_id: str
    quantity: int
    proposed_at: datetime
    expires_at: datetime
    override: bool = True

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class FefoSelector:
    """
    FEFO batch selection over a BatchLedger.

    Contract:
        Receives ledger, AuditSink, Clock, the default FefoMode and the
        override time-to-live via constructor injection. ``mode`` can be
        overridden per call.
    Guarantees:
        - ``get_fefo_batches`` is sorted by (expiry_date, created_at, id).
        - Override tokens are single-use and lapse after
          ``override_ttl_seconds`` of clock time.
    Non-goals:
        - Does not persist pending overrides; an abandoned proposal lapses
          and is dropped.
    """

    def __init__(
        self,
        ledger: BatchLedger,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
        mode: FefoMode = FefoMode.SUGGEST,
        override_ttl_seconds: int = DEFAULT_OVERRIDE_TTL_SECONDS,
    ):
        if override_ttl_seconds <= 0:
            raise ValidationError(
                "override_ttl_seconds", "must be positive", override_ttl_seconds
            )
        self.ledger = ledger
        self.audit_sink = audit_sink if audit_sink is not None else ledger.audit_sink
        self.clock = clock or ledger.clock
        self.mode = FefoMode(mode)
        self.override_ttl = timedelta(seconds=override_ttl_seconds)
        self._pending: dict[str, PendingOverride] = {}
        self._pending_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        ledger: BatchLedger,
        settings: InventorySettings,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
    ) -> FefoSelector:
        """Selector using the settings' FEFO mode and override time-to-live."""
        return cls(
            ledger,
            audit_sink=audit_sink,
            clock=clock,
            mode=settings.fefo_mode,
            override_ttl_seconds=settings.override_ttl_seconds,
        )

    # =========================================================================
    # Ordering
    # =========================================================================

    def get_fefo_batches(self, medicine_id: str) -> list[Batch]:
        """Available batches for the medicine, soonest expiry first."""
        return order_fefo(self.ledger.list_available_batches(medicine_id))

    def get_suggested_batch(self, medicine_id: str) -> Batch | None:
        ordered = self.get_fefo_batches(medicine_id)
        return ordered[0] if ordered else None

    # =========================================================================
    # Selection
    # =========================================================================

    def select_batch(
        self,
        medicine_id: str,
        requested_batch_id: str | None,
        quantity: int,
        mode: FefoMode | None = None,
    ) -> BatchSelection | PendingOverride:
        """
        Arbitrate a dispensing request.

        ``requested_batch_id=None`` selects the FEFO suggestion. When only
        one batch is available it is the suggestion, so it is accepted as a
        normal selection.

        Returns:
            BatchSelection for the suggested batch, or a PendingOverride in
            SUGGEST mode for any other batch.

        Raises:
            ValidationError, BatchNotFoundError, InsufficientStockError,
            FefoStrictViolation.
        """
        mode = FefoMode(mode) if mode is not None else self.mode
        requested, suggested = self._resolve_request(
            medicine_id, requested_batch_id, quantity
        )

        if requested.id == suggested.id:
            logger.debug(
                "fefo_selection_accepted",
                extra={"medicine_id": medicine_id, "batch_id": requested.id},
            )
            return BatchSelection(
                medicine_id=medicine_id,
                batch_id=requested.id,
                quantity=quantity,
            )

        if mode == FefoMode.STRICT:
            logger.info(
                "fefo_strict_violation",
                extra={
                    "medicine_id": medicine_id,
                    "requested_batch_id": requested.id,
                    "suggested_batch_id": suggested.id,
                },
            )
            raise FefoStrictViolation(medicine_id, requested.id, suggested.id)

        return self._register_pending(medicine_id, requested, suggested, quantity)

    def propose_override(
        self,
        medicine_id: str,
        requested_batch_id: str,
        quantity: int,
        mode: FefoMode | None = None,
    ) -> PendingOverride:
        """
        Register a pending override for a non-suggested batch. No mutation.

        Raises:
            ValidationError: the requested batch is the FEFO suggestion.
            FefoStrictViolation: STRICT mode.
            BatchNotFoundError, InsufficientStockError.
        """
        mode = FefoMode(mode) if mode is not None else self.mode
        requested, suggested = self._resolve_request(
            medicine_id, requested_batch_id, quantity
        )
        if requested.id == suggested.id:
            raise ValidationError(
                "requested_batch_id",
                "is the FEFO suggestion and needs no override",
                requested.id,
            )
        if mode == FefoMode.STRICT:
            raise FefoStrictViolation(medicine_id, requested.id, suggested.id)
        return self._register_pending(medicine_id, requested, suggested, quantity)

    def confirm_override(
        self,
        pending: PendingOverride,
        actor_id: str | None = None,
        on_commit: Callable[[Any], None] | None = None,
        sale: Sale | None = None,
    ) -> Batch:
        """
        Consume ``pending`` and decrement the requested batch.

        The token is consumed before the decrement; if stock moved since
        the proposal and the decrement fails, the proposal is dead and the
        caller proposes again.

        With ``sale``, the decrement is committed together with the sale
        journal entry through ``BatchLedger.commit_sale``; the sale's lines
        on the requested batch are flagged ``fefo_override`` and must sum to
        the proposed quantity. ``on_commit`` then receives the Sale instead
        of the Batch.

        Returns:
            The updated batch.

        Raises:
            PendingSelectionError, InsufficientStockError, BatchNotFoundError,
            ValidationError.
        """
        now = self.clock.now()
        with self._pending_lock:
            registered = self._pending.pop(pending.token, None)
            self._drop_expired(now)
        if registered is None:
            reason = "expired" if pending.is_expired(now) else "already confirmed or cancelled"
            raise PendingSelectionError(pending.token, reason)
        if registered.is_expired(now):
            logger.info(
                "fefo_override_expired",
                extra={
                    "token": registered.token,
                    "medicine_id": registered.medicine_id,
                    "proposed_at": registered.proposed_at,
                },
            )
            raise PendingSelectionError(registered.token, "expired")

        if sale is None:
            updated = self.ledger.decrement_batch(
                registered.requested_batch_id,
                registered.quantity,
                on_commit=on_commit,
            )
        else:
            _require_sale_covers(sale, registered.requested_batch_id, registered.quantity)
            flagged = replace(
                sale,
                items=tuple(
                    replace(item, fefo_override=True)
                    if item.batch_id == registered.requested_batch_id
                    else item
                    for item in sale.items
                ),
            )
            self.ledger.commit_sale(flagged, on_commit=on_commit)
            updated = self.ledger.get_batch(registered.requested_batch_id)

        logger.info(
            "fefo_override_confirmed",
            extra={
                "token": registered.token,
                "medicine_id": registered.medicine_id,
                "requested_batch_id": registered.requested_batch_id,
                "suggested_batch_id": registered.suggested_batch_id,
                "quantity": registered.quantity,
            },
        )
        deliver_audit_event(
            self.audit_sink,
            AuditEvent.create(
                action=AuditAction.FEFO_OVERRIDE,
                entity_type="batch",
                entity_id=registered.requested_batch_id,
                occurred_at=self.clock.now(),
                payload={
                    "medicine_id": registered.medicine_id,
                    "requested_batch_id": registered.requested_batch_id,
                    "suggested_batch_id": registered.suggested_batch_id,
                    "quantity": registered.quantity,
                    "token": registered.token,
                },
                actor_id=actor_id,
            ),
        )
        return updated

    def cancel_override(self, pending: PendingOverride) -> bool:
        """Discard a pending override. Returns False if it was already gone."""
        with self._pending_lock:
            removed = self._pending.pop(pending.token, None)
        logger.debug(
            "fefo_override_cancelled",
            extra={"token": pending.token, "was_pending": removed is not None},
        )
        return removed is not None

    def pending_overrides(self) -> list[PendingOverride]:
        """Live proposals; lapsed ones are dropped first."""
        with self._pending_lock:
            self._drop_expired(self.clock.now())
            return list(self._pending.values())

    def dispense(
        self,
        selection: BatchSelection,
        on_commit: Callable[[Any], None] | None = None,
        sale: Sale | None = None,
    ) -> Batch:
        """
        Commit an accepted (non-override) selection through the ledger.

        With ``sale``, the sale is committed through ``BatchLedger.commit_sale``
        so the decrement and the journal entry are one unit; its lines on
        the selected batch must sum to the selected quantity.
        """
        if selection.override:
            raise PendingSelectionError(
                getattr(selection, "token", ""), "overrides must go through confirm_override"
            )
        if sale is None:
            return self.ledger.decrement_batch(
                selection.batch_id, selection.quantity, on_commit=on_commit
            )
        _require_sale_covers(sale, selection.batch_id, selection.quantity)
        self.ledger.commit_sale(sale, on_commit=on_commit)
        return self.ledger.get_batch(selection.batch_id)

    # =========================================================================
    # Internal
    # =========================================================================

    def _resolve_request(
        self,
        medicine_id: str,
        requested_batch_id: str | None,
        quantity: int,
    ) -> tuple[Batch, Batch]:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", "must be a positive integer", quantity)

        ordered = self.get_fefo_batches(medicine_id)
        if not ordered:
            raise BatchNotFoundError(requested_batch_id or NO_AVAILABLE_BATCH, medicine_id)
        suggested = ordered[0]

        if requested_batch_id is None:
            requested = suggested
        else:
            requested = next((b for b in ordered if b.id == requested_batch_id), None)
            if requested is None:
                raise BatchNotFoundError(requested_batch_id, medicine_id)

        if requested.quantity < quantity:
            raise InsufficientStockError(requested.id, quantity, requested.quantity)
        return requested, suggested

    def _register_pending(
        self,
        medicine_id: str,
        requested: Batch,
        suggested: Batch,
        quantity: int,
    ) -> PendingOverride:
        now = self.clock.now()
        pending = PendingOverride(
            token=str(uuid4()),
            medicine_id=medicine_id,
            requested_batch_id=requested.id,
            suggested_batch_id=suggested.id,
            quantity=quantity,
            proposed_at=now,
            expires_at=now + self.override_ttl,
        )
        with self._pending_lock:
            self._drop_expired(now)
            self._pending[pending.token] = pending
        logger.info(
            "fefo_override_proposed",
            extra={
                "token": pending.token,
                "medicine_id": medicine_id,
                "requested_batch_id": requested.id,
                "suggested_batch_id": suggested.id,
                "quantity": quantity,
            },
        )
        return pending

    def _drop_expired(self, now: datetime) -> None:
        """Remove lapsed proposals. Caller holds ``_pending_lock``."""
        expired = [t for t, p in self._pending.items() if p.is_expired(now)]
        for token in expired:
            del self._pending[token]
        if expired:
            logger.debug("fefo_overrides_dropped", extra={"count": len(expired)})


def _require_sale_covers(sale: Sale, batch_id: str, quantity: int) -> None:
    drawn = sum(item.quantity for item in sale.items if item.batch_id == batch_id)
    if drawn != quantity:
        raise ValidationError(
            "items",
            f"sale draws {drawn} from batch {batch_id}, selection is {quantity}",
            sale.id,
        )
