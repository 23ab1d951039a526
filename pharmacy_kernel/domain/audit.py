"""
Audit events and sinks (``pharmacy_kernel.domain.audit``).

Responsibility:
    Define the audit event record emitted by ledger mutations and FEFO
    overrides, the ``AuditSink`` interface the host application implements,
    and two concrete sinks: an in-memory hash-chained sink and a sink that
    writes to the structured log.

Architecture position:
    Kernel > Domain. The real audit store is an external collaborator; the
    kernel only knows the ``AuditSink`` contract.

Invariants enforced:
    - Delivery is fire-and-forget: ``deliver_audit_event`` never raises, so
      a sink failure can never roll back or block a committed mutation.
    - InMemoryAuditSink chains every event to its predecessor
      (``hash = H(entity_type | entity_id | action | payload_hash | prev)``).

Failure modes:
    - Sinks may raise ``AuditDeliveryError`` (or anything else); the failure
      is logged as ``audit_delivery_failed`` and swallowed by delivery.

Audit relevance:
    FEFO_OVERRIDE events carry the medicine, the batch actually dispensed
    and the batch the policy suggested, which is what a pharmacist reviewing
    dispensing exceptions needs.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("domain.audit")


class AuditAction(str, Enum):
    """Types of auditable inventory actions."""

    BATCH_RECEIVED = "batch_received"
    BATCH_WITHDRAWN = "batch_withdrawn"
    STOCK_ADJUSTED = "stock_adjusted"
    SALE_COMMITTED = "sale_committed"
    FEFO_OVERRIDE = "fefo_override"


@dataclass(frozen=True)
class AuditEvent:
    """A single auditable occurrence."""

    event_id: str
    action: AuditAction
    entity_type: str
    entity_id: str
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    actor_id: str | None = None

    @classmethod
    def create(
        cls,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        occurred_at: datetime,
        payload: dict[str, Any] | None = None,
        actor_id: str | None = None,
    ) -> AuditEvent:
        return cls(
            event_id=str(uuid4()),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            occurred_at=occurred_at,
            payload=dict(payload or {}),
            actor_id=actor_id,
        )


class AuditSink(ABC):
    """
    Receiver of audit events.

    Contract:
        ``emit`` accepts one event. It may raise on failure; callers go
        through ``deliver_audit_event`` which contains the failure.
    """

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        ...


@dataclass(frozen=True)
class ChainedAuditRecord:
    seq: int
    event: AuditEvent
    payload_hash: str
    prev_hash: str | None
    hash: str


class InMemoryAuditSink(AuditSink):
    """
    Hash-chained, append-only in-process audit log.

    Used by tests and by hosts embedding the engine without an external
    audit store.
    """

    def __init__(self) -> None:
        self._records: list[ChainedAuditRecord] = []
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        payload_hash = hash_payload(event.payload)
        with self._lock:
            prev_hash = self._records[-1].hash if self._records else None
            record = ChainedAuditRecord(
                seq=len(self._records) + 1,
                event=event,
                payload_hash=payload_hash,
                prev_hash=prev_hash,
                hash=hash_audit_event(
                    event.entity_type,
                    event.entity_id,
                    event.action.value,
                    payload_hash,
                    prev_hash,
                ),
            )
            self._records.append(record)

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return [r.event for r in self._records]

    @property
    def records(self) -> list[ChainedAuditRecord]:
        with self._lock:
            return list(self._records)

    def events_for(self, action: AuditAction) -> list[AuditEvent]:
        return [e for e in self.events if e.action == action]

    def validate_chain(self) -> bool:
        """Recompute every hash; False if any record was altered."""
        prev_hash: str | None = None
        for record in self.records:
            if record.prev_hash != prev_hash:
                return False
            if hash_payload(record.event.payload) != record.payload_hash:
                return False
            expected = hash_audit_event(
                record.event.entity_type,
                record.event.entity_id,
                record.event.action.value,
                record.payload_hash,
                prev_hash,
            )
            if expected != record.hash:
                return False
            prev_hash = record.hash
        return True


class LoggingAuditSink(AuditSink):
    """Writes each audit event to the structured log as ``audit_event``."""

    def __init__(self) -> None:
        self._logger = get_logger("audit")

    def emit(self, event: AuditEvent) -> None:
        self._logger.info(
            "audit_event",
            extra={
                "audit_event_id": event.event_id,
                "audit_action": event.action.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "occurred_at": event.occurred_at,
                "audit_payload": event.payload,
                "audit_actor_id": event.actor_id,
            },
        )


def deliver_audit_event(sink: AuditSink | None, event: AuditEvent) -> bool:
    """
    Best-effort delivery of ``event`` to ``sink``.

    Returns True when the sink accepted the event. Failures are logged and
    reported through the return value only.
    """
    if sink is None:
        return False
    try:
        sink.emit(event)
    except Exception:
        logger.exception(
            "audit_delivery_failed",
            extra={
                "audit_event_id": event.event_id,
                "audit_action": event.action.value,
                "entity_id": event.entity_id,
            },
        )
        return False
    return True
