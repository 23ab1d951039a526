"""
Pytest fixtures for the pharmacy inventory test suite.

Provides:
- Structured logging capture
- Deterministic clock, in-memory store, ledger and selector factories
- Record builders live in tests/builders.py
"""

import json
import logging
from io import StringIO

import pytest

from pharmacy_kernel.domain.audit import InMemoryAuditSink
from pharmacy_kernel.domain.clock import DeterministicClock
from pharmacy_kernel.domain.models import Batch, Medicine
from pharmacy_kernel.domain.policy import FefoMode
from pharmacy_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pharmacy_kernel.services.batch_ledger import BatchLedger
from pharmacy_kernel.services.inventory_store import InventoryStore
from pharmacy_services.fefo_selector import FefoSelector
from tests.builders import NOW, make_batch


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as exercising real thread contention"
    )


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pharmacy_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.add_batch(...)
            logs = captured_logs()
            assert any(r["message"] == "batch_received" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pharmacy_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Kernel fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock(NOW)


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def store():
    return InventoryStore()


@pytest.fixture
def ledger(store, deterministic_clock, audit_sink):
    return BatchLedger(store, clock=deterministic_clock, audit_sink=audit_sink)


@pytest.fixture
def panadol(ledger):
    """Registered medicine with reorder level 10 / reorder quantity 50."""
    return ledger.register_medicine(
        Medicine(id="med-panadol", name="Panadol", reorder_level=10, reorder_quantity=50)
    )


@pytest.fixture
def receive(ledger, panadol):
    """Receive a batch into the ledger. Accepts ``make_batch`` kwargs."""

    def _receive(medicine_id: str = "med-panadol", **kwargs) -> Batch:
        return ledger.add_batch(make_batch(medicine_id, **kwargs))

    return _receive


@pytest.fixture
def make_selector(ledger, audit_sink, deterministic_clock):
    """Factory for a FefoSelector in the given mode."""

    def _make(mode: FefoMode = FefoMode.SUGGEST) -> FefoSelector:
        return FefoSelector(ledger, audit_sink=audit_sink, clock=deterministic_clock, mode=mode)

    return _make
