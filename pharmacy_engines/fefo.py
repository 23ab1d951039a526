"""
Module: pharmacy_engines.fefo
Responsibility:
    First-Expiry-First-Out ordering of a medicine's batches and the pick of
    the batch that should be dispensed next.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The stateful half (pending overrides, audit, ledger writes) lives in
    pharmacy_services.fefo_selector.

Invariants enforced:
    - Only available batches (active, quantity > 0) are ordered.
    - Total order: (expiry_date, created_at, id). Two batches never compare
      equal, so the suggestion is deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from pharmacy_kernel.domain.models import Batch


def fefo_sort_key(batch: Batch) -> tuple[date, bool, float, str]:
    # Batches without an arrival timestamp sort after dated ones.
    created = batch.created_at
    return (
        batch.expiry_date,
        created is None,
        created.timestamp() if created is not None else 0.0,
        batch.id,
    )


def order_fefo(batches: Iterable[Batch]) -> list[Batch]:
    """Available batches, soonest expiry first."""
    return sorted((b for b in batches if b.is_available), key=fefo_sort_key)


def suggest(batches: Iterable[Batch]) -> Batch | None:
    """The batch FEFO says to dispense next, or None when nothing is available."""
    ordered = order_fefo(batches)
    return ordered[0] if ordered else None
