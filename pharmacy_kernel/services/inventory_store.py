"""
InventoryStore -- explicit in-process repository for ledger state.

Responsibility:
    Hold the medicine catalog, batch records, the sale journal and the
    stock-adjustment journal, together with the per-medicine lock registry
    that serializes mutations. One store is constructed by the host
    application and passed by reference to the ledger and every reader.

Architecture position:
    Kernel > Services -- storage primitive beneath BatchLedger. It enforces
    no business rules; BatchLedger does.

Invariants enforced:
    - Batch records are never removed; ``replace_batch`` swaps a record for
      its successor under the same id.
    - Structural inserts are copy-on-write, so a reader iterating a batch
      collection is never invalidated by a concurrent insert.
    - ``locked_medicines`` acquires medicine locks in sorted id order, so two
      multi-medicine commits cannot deadlock each other.

Failure modes:
    - KeyError from ``insert_batch`` on a duplicate batch id.

Audit relevance:
    The sale and adjustment journals are append-only; together with the
    batch records they are the full movement history for every lot.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime

from pharmacy_kernel.domain.models import (
    Batch,
    InventorySnapshot,
    Medicine,
    Sale,
    StockAdjustment,
)


class InventoryStore:
    """
    In-memory ledger state with per-medicine locking.

    Contract:
        Writers hold ``medicine_lock`` for the medicine they touch.
        Readers take no lock and see the latest published records.
    """

    def __init__(self) -> None:
        self._medicines: dict[str, Medicine] = {}
        self._batches: dict[str, Batch] = {}
        self._batch_ids_by_medicine: dict[str, tuple[str, ...]] = {}
        self._sales: list[Sale] = []
        self._adjustments: list[StockAdjustment] = []

        self._registry_lock = threading.Lock()
        self._medicine_locks: dict[str, threading.RLock] = {}

    # =========================================================================
    # Locking
    # =========================================================================

    def _lock_for(self, medicine_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._medicine_locks.get(medicine_id)
            if lock is None:
                lock = threading.RLock()
                self._medicine_locks[medicine_id] = lock
            return lock

    @contextmanager
    def medicine_lock(self, medicine_id: str) -> Iterator[None]:
        """Hold the mutation lock for one medicine."""
        with self._lock_for(medicine_id):
            yield

    @contextmanager
    def locked_medicines(self, medicine_ids: Iterable[str]) -> Iterator[None]:
        """Hold the mutation locks for several medicines, in sorted order."""
        with ExitStack() as stack:
            for medicine_id in sorted(set(medicine_ids)):
                stack.enter_context(self._lock_for(medicine_id))
            yield

    # =========================================================================
    # Catalog
    # =========================================================================

    def put_medicine(self, medicine: Medicine) -> None:
        with self._registry_lock:
            self._medicines = {**self._medicines, medicine.id: medicine}

    def get_medicine(self, medicine_id: str) -> Medicine | None:
        return self._medicines.get(medicine_id)

    def medicines(self) -> tuple[Medicine, ...]:
        return tuple(self._medicines.values())

    # =========================================================================
    # Batches
    # =========================================================================

    def insert_batch(self, batch: Batch) -> None:
        with self._registry_lock:
            if batch.id in self._batches:
                raise KeyError(batch.id)
            self._batches = {**self._batches, batch.id: batch}
            existing = self._batch_ids_by_medicine.get(batch.medicine_id, ())
            self._batch_ids_by_medicine = {
                **self._batch_ids_by_medicine,
                batch.medicine_id: existing + (batch.id,),
            }

    def replace_batch(self, batch: Batch) -> None:
        # Same key, so the dict never changes size under a reader.
        with self._registry_lock:
            self._batches[batch.id] = batch

    def get_batch(self, batch_id: str) -> Batch | None:
        return self._batches.get(batch_id)

    def batches(self) -> tuple[Batch, ...]:
        return tuple(self._batches.values())

    def batches_for(self, medicine_id: str) -> tuple[Batch, ...]:
        # Index first: insert_batch publishes the batch before its index entry.
        ids = self._batch_ids_by_medicine.get(medicine_id, ())
        batches = self._batches
        return tuple(batches[batch_id] for batch_id in ids)

    # =========================================================================
    # Journals
    # =========================================================================

    def append_sale(self, sale: Sale) -> None:
        self._sales.append(sale)

    def sales(self) -> tuple[Sale, ...]:
        return tuple(self._sales)

    def append_adjustment(self, adjustment: StockAdjustment) -> None:
        self._adjustments.append(adjustment)

    def adjustments(self) -> tuple[StockAdjustment, ...]:
        return tuple(self._adjustments)

    def snapshot(self, taken_at: datetime) -> InventorySnapshot:
        return InventorySnapshot(
            taken_at=taken_at,
            medicines=self.medicines(),
            batches=self.batches(),
            sales=self.sales(),
            adjustments=self.adjustments(),
        )
