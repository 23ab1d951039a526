"""
Tests for FefoSelector.

Covers:
- FEFO ordering through the ledger
- Normal selections, including the single-batch shortcut
- Strict-mode rejection with no side effects
- Two-phase overrides: propose, confirm exactly once, cancel
- Audit payload for confirmed overrides
- Override time-to-live and dropping of lapsed proposals
"""

from datetime import timedelta

import pytest

from pharmacy_config.schema import InventorySettings
from pharmacy_kernel.domain.audit import AuditAction, AuditSink
from pharmacy_kernel.domain.models import AdjustmentReason, Medicine
from pharmacy_kernel.domain.policy import FefoMode
from pharmacy_kernel.exceptions import (
    BatchNotFoundError,
    FefoStrictViolation,
    InsufficientStockError,
    NotFoundError,
    PendingSelectionError,
    ValidationError,
)
from pharmacy_services.fefo_selector import (
    DEFAULT_OVERRIDE_TTL_SECONDS,
    BatchSelection,
    FefoSelector,
    PendingOverride,
)


@pytest.fixture
def panadol_batches(receive):
    """Scenario: A expires in 10 days (qty 5), B in 90 days (qty 20)."""
    a = receive(batch_id="b-a", expires_in_days=10, quantity=5)
    b = receive(batch_id="b-b", expires_in_days=90, quantity=20)
    return a, b


class TestOrdering:
    """Tests for FEFO reads."""

    def test_get_fefo_batches(self, make_selector, panadol_batches):
        selector = make_selector()

        assert [b.id for b in selector.get_fefo_batches("med-panadol")] == ["b-a", "b-b"]

    def test_suggested_batch(self, make_selector, panadol_batches):
        assert make_selector().get_suggested_batch("med-panadol").id == "b-a"

    def test_no_suggestion_without_stock(self, make_selector, panadol):
        assert make_selector().get_suggested_batch("med-panadol") is None

    def test_exhausted_batch_drops_out(self, make_selector, ledger, panadol_batches):
        ledger.decrement_batch("b-a", 5)

        assert make_selector().get_suggested_batch("med-panadol").id == "b-b"


class TestScenarioPanadol:
    """Scenario: strict rejects B; suggest proposes, confirm decrements B."""

    def test_strict_rejects_non_suggested(self, make_selector, ledger, audit_sink, panadol_batches):
        selector = make_selector(FefoMode.STRICT)

        with pytest.raises(FefoStrictViolation) as exc_info:
            selector.select_batch("med-panadol", "b-b", 1)

        assert exc_info.value.suggested_batch_id == "b-a"
        assert ledger.get_batch("b-b").quantity == 20
        assert audit_sink.events_for(AuditAction.FEFO_OVERRIDE) == []

    def test_suggest_proposes_then_confirm_decrements(
        self, make_selector, ledger, audit_sink, panadol_batches
    ):
        selector = make_selector(FefoMode.SUGGEST)

        pending = selector.select_batch("med-panadol", "b-b", 1)

        assert isinstance(pending, PendingOverride)
        assert pending.override is True
        assert ledger.get_batch("b-b").quantity == 20

        updated = selector.confirm_override(pending, actor_id="pharmacist-1")

        assert updated.quantity == 19
        (event,) = audit_sink.events_for(AuditAction.FEFO_OVERRIDE)
        assert event.payload["medicine_id"] == "med-panadol"
        assert event.payload["requested_batch_id"] == "b-b"
        assert event.payload["suggested_batch_id"] == "b-a"
        assert event.actor_id == "pharmacist-1"


class TestSelectBatch:
    """Tests for normal selection."""

    def test_suggested_batch_is_normal_selection(self, make_selector, panadol_batches):
        selection = make_selector(FefoMode.STRICT).select_batch("med-panadol", "b-a", 2)

        assert selection == BatchSelection("med-panadol", "b-a", 2)
        assert selection.override is False

    def test_none_requests_the_suggestion(self, make_selector, panadol_batches):
        selection = make_selector().select_batch("med-panadol", None, 1)

        assert selection.batch_id == "b-a"

    def test_single_batch_shortcut(self, make_selector, receive):
        receive(batch_id="b-only", expires_in_days=200, quantity=3)

        selection = make_selector(FefoMode.STRICT).select_batch("med-panadol", "b-only", 3)

        assert selection.override is False

    def test_unknown_batch(self, make_selector, panadol_batches):
        with pytest.raises(NotFoundError):
            make_selector().select_batch("med-panadol", "b-nope", 1)

    def test_batch_of_another_medicine(self, make_selector, ledger, receive, panadol_batches):
        ledger.register_medicine(Medicine(id="med-brufen", name="Brufen"))
        receive("med-brufen", batch_id="b-brufen")

        with pytest.raises(BatchNotFoundError):
            make_selector().select_batch("med-panadol", "b-brufen", 1)

    def test_withdrawn_batch_not_selectable(self, make_selector, ledger, panadol_batches):
        ledger.withdraw_batch("b-b", AdjustmentReason.RECALL)

        with pytest.raises(BatchNotFoundError):
            make_selector().select_batch("med-panadol", "b-b", 1)

    def test_insufficient_quantity(self, make_selector, panadol_batches):
        with pytest.raises(InsufficientStockError):
            make_selector().select_batch("med-panadol", "b-a", 6)

    def test_no_stock_at_all(self, make_selector, panadol):
        with pytest.raises(BatchNotFoundError):
            make_selector().select_batch("med-panadol", None, 1)

    def test_rejects_bad_quantity(self, make_selector, panadol_batches):
        with pytest.raises(ValidationError):
            make_selector().select_batch("med-panadol", "b-a", 0)

    def test_per_call_mode_overrides_default(self, make_selector, panadol_batches):
        selector = make_selector(FefoMode.SUGGEST)

        with pytest.raises(FefoStrictViolation):
            selector.select_batch("med-panadol", "b-b", 1, mode=FefoMode.STRICT)

    def test_dispense_normal_selection(self, make_selector, ledger, panadol_batches):
        selector = make_selector()
        selection = selector.select_batch("med-panadol", "b-a", 2)

        selector.dispense(selection)

        assert ledger.get_batch("b-a").quantity == 3

    def test_dispense_refuses_pending_override(self, make_selector, ledger, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 1)

        with pytest.raises(PendingSelectionError):
            selector.dispense(pending)

        assert ledger.get_batch("b-b").quantity == 20


class TestOverrideLifecycle:
    """Tests for propose / confirm / cancel."""

    def test_confirm_twice_fails(self, make_selector, ledger, audit_sink, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 2)
        selector.confirm_override(pending)

        with pytest.raises(PendingSelectionError):
            selector.confirm_override(pending)

        assert ledger.get_batch("b-b").quantity == 18
        assert len(audit_sink.events_for(AuditAction.FEFO_OVERRIDE)) == 1

    def test_cancel_is_no_op_on_ledger(self, make_selector, ledger, audit_sink, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 2)

        assert selector.cancel_override(pending) is True
        assert selector.cancel_override(pending) is False
        with pytest.raises(PendingSelectionError):
            selector.confirm_override(pending)

        assert ledger.get_batch("b-b").quantity == 20
        assert audit_sink.events_for(AuditAction.FEFO_OVERRIDE) == []

    def test_pending_overrides_listed_until_resolved(self, make_selector, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 1)

        assert selector.pending_overrides() == [pending]
        selector.confirm_override(pending)
        assert selector.pending_overrides() == []

    def test_confirm_revalidates_stock(self, make_selector, ledger, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 15)
        ledger.decrement_batch("b-b", 10)

        with pytest.raises(InsufficientStockError):
            selector.confirm_override(pending)

        assert ledger.get_batch("b-b").quantity == 10

    def test_propose_for_suggested_batch_rejected(self, make_selector, panadol_batches):
        with pytest.raises(ValidationError):
            make_selector().propose_override("med-panadol", "b-a", 1)

    def test_propose_in_strict_mode_rejected(self, make_selector, panadol_batches):
        with pytest.raises(FefoStrictViolation):
            make_selector(FefoMode.STRICT).propose_override("med-panadol", "b-b", 1)

    def test_confirm_with_failing_audit_still_decrements(self, ledger, deterministic_clock, panadol_batches):
        class _Down(AuditSink):
            def emit(self, event):
                raise TimeoutError("sink timeout")

        selector = FefoSelector(ledger, audit_sink=_Down(), clock=deterministic_clock)
        pending = selector.propose_override("med-panadol", "b-b", 1)

        updated = selector.confirm_override(pending)

        assert updated.quantity == 19

    def test_confirm_on_commit_failure_leaves_stock(self, make_selector, ledger, panadol_batches):
        selector = make_selector()
        pending = selector.propose_override("med-panadol", "b-b", 1)

        def fail(_):
            raise RuntimeError("sale insert failed")

        with pytest.raises(RuntimeError):
            selector.confirm_override(pending, on_commit=fail)

        assert ledger.get_batch("b-b").quantity == 20

    def test_override_logs_carry_identifiers(self, make_selector, captured_logs, panadol_batches):
        selector = make_selector()
        selector.confirm_override(selector.propose_override("med-panadol", "b-b", 1))

        confirmed = [r for r in captured_logs() if r["message"] == "fefo_override_confirmed"]
        assert confirmed[0]["requested_batch_id"] == "b-b"
        assert confirmed[0]["suggested_batch_id"] == "b-a"


class TestOverrideExpiry:
    """Unconfirmed overrides lapse after the configured time-to-live."""

    def test_confirm_after_ttl_rejected(
        self, make_selector, ledger, audit_sink, deterministic_clock, panadol_batches
    ):
        selector = make_selector(FefoMode.SUGGEST)
        pending = selector.propose_override("med-panadol", "b-b", 1)

        deterministic_clock.advance(DEFAULT_OVERRIDE_TTL_SECONDS + 1)

        with pytest.raises(PendingSelectionError) as exc_info:
            selector.confirm_override(pending)
        assert exc_info.value.reason == "expired"
        assert ledger.get_batch("b-b").quantity == 20
        assert audit_sink.events_for(AuditAction.FEFO_OVERRIDE) == []

    def test_confirm_within_ttl_succeeds(self, make_selector, deterministic_clock, panadol_batches):
        selector = make_selector(FefoMode.SUGGEST)
        pending = selector.propose_override("med-panadol", "b-b", 1)

        deterministic_clock.advance(DEFAULT_OVERRIDE_TTL_SECONDS - 1)

        assert selector.confirm_override(pending).quantity == 19

    def test_expires_at_follows_ttl(self, make_selector, deterministic_clock, panadol_batches):
        pending = make_selector().propose_override("med-panadol", "b-b", 1)

        assert pending.proposed_at == deterministic_clock.now()
        assert pending.expires_at == pending.proposed_at + timedelta(
            seconds=DEFAULT_OVERRIDE_TTL_SECONDS
        )

    def test_abandoned_proposals_dropped(self, make_selector, deterministic_clock, panadol_batches):
        selector = make_selector(FefoMode.SUGGEST)
        abandoned = [selector.propose_override("med-panadol", "b-b", 1) for _ in range(1000)]
        assert len(selector.pending_overrides()) == 1000

        deterministic_clock.advance(DEFAULT_OVERRIDE_TTL_SECONDS)
        fresh = selector.propose_override("med-panadol", "b-b", 1)

        assert selector.pending_overrides() == [fresh]
        with pytest.raises(PendingSelectionError) as exc_info:
            selector.confirm_override(abandoned[0])
        assert exc_info.value.reason == "expired"

    def test_lapsed_proposals_not_listed(self, make_selector, deterministic_clock, panadol_batches):
        selector = make_selector(FefoMode.SUGGEST)
        selector.propose_override("med-panadol", "b-b", 1)

        deterministic_clock.advance(DEFAULT_OVERRIDE_TTL_SECONDS + 60)

        assert selector.pending_overrides() == []

    def test_ttl_from_settings(self, ledger, audit_sink, deterministic_clock, panadol_batches):
        settings = InventorySettings(fefo_mode=FefoMode.SUGGEST, override_ttl_seconds=60)
        selector = FefoSelector.from_settings(
            ledger, settings, audit_sink=audit_sink, clock=deterministic_clock
        )
        pending = selector.propose_override("med-panadol", "b-b", 1)

        deterministic_clock.advance(61)

        with pytest.raises(PendingSelectionError):
            selector.confirm_override(pending)
        assert ledger.get_batch("b-b").quantity == 20

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, ledger, ttl):
        with pytest.raises(ValidationError) as exc_info:
            FefoSelector(ledger, override_ttl_seconds=ttl)
        assert exc_info.value.field == "override_ttl_seconds"

    def test_expired_confirm_logged(
        self, make_selector, captured_logs, deterministic_clock, panadol_batches
    ):
        selector = make_selector(FefoMode.SUGGEST)
        pending = selector.propose_override("med-panadol", "b-b", 1)
        deterministic_clock.advance(DEFAULT_OVERRIDE_TTL_SECONDS)

        with pytest.raises(PendingSelectionError):
            selector.confirm_override(pending)

        (record,) = [r for r in captured_logs() if r["message"] == "fefo_override_expired"]
        assert record["token"] == pending.token
