"""
Module: pharmacy_engines.expiry_risk
Responsibility:
    Score every batch's expiry exposure: days to expiry, a 0-100 risk
    percentage relative to the configured notice horizon, an alert tier and
    a recommended action. Build the expiry risk report and the live expiry
    alert list consumed by dashboards and the alerts page.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pharmacy_kernel.domain and pharmacy_kernel.logging_config.

Invariants enforced:
    - Purity: the current time is always a parameter; nothing here reads a
      clock. Risk is recomputed on every call and never stored.
    - Monotonic risk: for d1 < d2 <= horizon, risk(d1) >= risk(d2).
    - Boundary values: days <= 0 scores 100, days >= horizon scores 0.
    - Decimal-only arithmetic for risk and loss amounts.

Failure modes:
    - None for well-formed batches. Empty inputs produce empty reports.

Audit relevance:
    ``potential_loss`` (quantity x purchase price) is the figure the owner
    reviews when deciding write-offs; the report surfaces the soonest and
    then the costliest exposure first.

Usage:
    from pharmacy_engines.expiry_risk import ExpiryRiskScorer
    from pharmacy_kernel.domain.policy import ExpiryThresholds

    scorer = ExpiryRiskScorer(ExpiryThresholds(critical=30, warning=60, notice=90))
    score = scorer.score(batch, now)
    report = scorer.build_report(batches=batches, medicines=medicines, now=now)
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

from pharmacy_engines.tracer import traced_engine
from pharmacy_kernel.domain.models import Batch, Medicine
from pharmacy_kernel.domain.policy import (
    ExpiryAlertLevel,
    ExpiryRecommendation,
    ExpiryThresholds,
)
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("engines.expiry_risk")

_SECONDS_PER_DAY = 86_400
_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")

# Risk floors that escalate a batch regardless of the day thresholds.
CRITICAL_RISK = Decimal("80")
WARNING_RISK = Decimal("50")
NOTICE_RISK = Decimal("25")

UNKNOWN_MEDICINE_NAME = "Unknown"


@dataclass(frozen=True)
class ExpiryScore:
    """Days to expiry, risk percentage and alert tier for one batch."""

    days_until_expiry: int
    risk_percent: Decimal
    alert_level: ExpiryAlertLevel


@dataclass(frozen=True)
class ExpiryRiskEntry:
    """
    One row of the expiry risk report.

    Contract:
        Only produced for available batches whose alert level is not NONE.
    """

    batch_id: str
    medicine_id: str
    medicine_name: str
    batch_number: str
    expiry_date: date
    quantity: int
    days_until_expiry: int
    risk_percent: Decimal
    alert_level: ExpiryAlertLevel
    potential_loss: Decimal
    recommendation: ExpiryRecommendation


@dataclass(frozen=True)
class ExpiryAlert:
    """
    Live expiry alert.

    ``id`` is stable per batch (``exp-<batch_id>``) so a caller can filter
    out alerts the user dismissed without the engine storing anything.
    """

    id: str
    batch_id: str
    medicine_id: str
    medicine_name: str
    batch_number: str
    expiry_date: date
    days_until_expiry: int
    quantity: int
    alert_level: ExpiryAlertLevel


# =============================================================================
# Scalar scoring
# =============================================================================


def days_until_expiry(expiry_date: date, now: datetime | date) -> int:
    """
    Whole days from ``now`` until the start of ``expiry_date``, rounded up.

    The expiry instant is 00:00 of the expiry date in ``now``'s timezone.
    Negative once the batch has expired.
    """
    if isinstance(expiry_date, datetime):
        expiry_date = expiry_date.date()
    if not isinstance(now, datetime):
        return (expiry_date - now).days
    expiry_start = datetime.combine(expiry_date, time.min, tzinfo=now.tzinfo)
    seconds = (expiry_start - now).total_seconds()
    return math.ceil(seconds / _SECONDS_PER_DAY)


def risk_percent(days: int, horizon_days: int) -> Decimal:
    """``clamp(100 * (1 - days / horizon), 0, 100)`` rounded to 0.01."""
    if days <= 0:
        return _HUNDRED.quantize(_CENT)
    if horizon_days <= 0 or days >= horizon_days:
        return Decimal("0").quantize(_CENT)
    raw = _HUNDRED * (Decimal(1) - Decimal(days) / Decimal(horizon_days))
    return min(_HUNDRED, max(Decimal("0"), raw)).quantize(_CENT, rounding=ROUND_HALF_UP)


def classify_alert_level(
    days: int,
    risk: Decimal,
    thresholds: ExpiryThresholds,
) -> ExpiryAlertLevel:
    """Tier by day threshold or risk floor, whichever is more severe."""
    if days <= thresholds.critical or risk >= CRITICAL_RISK:
        return ExpiryAlertLevel.CRITICAL
    if days <= thresholds.warning or risk >= WARNING_RISK:
        return ExpiryAlertLevel.WARNING
    if days <= thresholds.notice or risk >= NOTICE_RISK:
        return ExpiryAlertLevel.NOTICE
    return ExpiryAlertLevel.NONE


def recommend_action(days: int, thresholds: ExpiryThresholds) -> ExpiryRecommendation:
    """Write off expired stock; otherwise escalate from promote to sell urgently."""
    if days <= 0:
        return ExpiryRecommendation.WRITE_OFF
    if days <= thresholds.critical:
        return ExpiryRecommendation.SELL_URGENTLY
    if days <= thresholds.warning:
        return ExpiryRecommendation.RETURN_TO_SUPPLIER
    return ExpiryRecommendation.PROMOTE


def score_batch(
    batch: Batch,
    now: datetime | date,
    thresholds: ExpiryThresholds,
) -> ExpiryScore:
    """Score one batch. Pure function of (expiry_date, now, thresholds)."""
    days = days_until_expiry(batch.expiry_date, now)
    risk = risk_percent(days, thresholds.horizon_days)
    return ExpiryScore(
        days_until_expiry=days,
        risk_percent=risk,
        alert_level=classify_alert_level(days, risk, thresholds),
    )


# =============================================================================
# Reports
# =============================================================================


def _names_by_id(medicines: Iterable[Medicine]) -> dict[str, str]:
    return {m.id: m.name for m in medicines}


class ExpiryRiskScorer:
    """
    Expiry scoring bound to one threshold configuration.

    Contract:
        Pure -- no I/O, no clock; ``now`` is always passed in.
    Guarantees:
        - Only available batches (active, quantity > 0) are reported.
        - Report order: days_until_expiry ascending, then potential_loss
          descending, then batch id.
    Non-goals:
        - Does not apply dismissal filters; alert ids are stable so the
          caller can.
    """

    def __init__(self, thresholds: ExpiryThresholds | None = None):
        self.thresholds = thresholds or ExpiryThresholds()

    def score(self, batch: Batch, now: datetime | date) -> ExpiryScore:
        return score_batch(batch, now, self.thresholds)

    @traced_engine("expiry_risk", "1.0", fingerprint_fields=("now",))
    def build_report(
        self,
        *,
        batches: Iterable[Batch],
        medicines: Iterable[Medicine] = (),
        now: datetime | date,
    ) -> tuple[ExpiryRiskEntry, ...]:
        """Risk rows for every available batch with an alert tier."""
        names = _names_by_id(medicines)
        entries: list[ExpiryRiskEntry] = []
        for batch in batches:
            if not batch.is_available:
                continue
            score = self.score(batch, now)
            if score.alert_level == ExpiryAlertLevel.NONE:
                continue
            entries.append(
                ExpiryRiskEntry(
                    batch_id=batch.id,
                    medicine_id=batch.medicine_id,
                    medicine_name=names.get(batch.medicine_id, UNKNOWN_MEDICINE_NAME),
                    batch_number=batch.batch_number,
                    expiry_date=batch.expiry_date,
                    quantity=batch.quantity,
                    days_until_expiry=score.days_until_expiry,
                    risk_percent=score.risk_percent,
                    alert_level=score.alert_level,
                    potential_loss=batch.stock_value,
                    recommendation=recommend_action(
                        score.days_until_expiry, self.thresholds
                    ),
                )
            )

        entries.sort(key=lambda e: (e.days_until_expiry, -e.potential_loss, e.batch_id))
        logger.debug(
            "expiry_risk_report_built",
            extra={
                "entry_count": len(entries),
                "critical_count": sum(
                    1 for e in entries if e.alert_level == ExpiryAlertLevel.CRITICAL
                ),
            },
        )
        return tuple(entries)

    @traced_engine("expiry_alerts", "1.0", fingerprint_fields=("now",))
    def build_alerts(
        self,
        *,
        batches: Iterable[Batch],
        medicines: Iterable[Medicine] = (),
        now: datetime | date,
    ) -> tuple[ExpiryAlert, ...]:
        """Live alerts for available batches, soonest expiry first."""
        names = _names_by_id(medicines)
        alerts: list[ExpiryAlert] = []
        for batch in batches:
            if not batch.is_available:
                continue
            score = self.score(batch, now)
            if score.alert_level == ExpiryAlertLevel.NONE:
                continue
            alerts.append(
                ExpiryAlert(
                    id=f"exp-{batch.id}",
                    batch_id=batch.id,
                    medicine_id=batch.medicine_id,
                    medicine_name=names.get(batch.medicine_id, UNKNOWN_MEDICINE_NAME),
                    batch_number=batch.batch_number,
                    expiry_date=batch.expiry_date,
                    days_until_expiry=score.days_until_expiry,
                    quantity=batch.quantity,
                    alert_level=score.alert_level,
                )
            )
        alerts.sort(key=lambda a: (a.days_until_expiry, a.batch_id))
        return tuple(alerts)

    def find_expiring(
        self,
        *,
        batches: Iterable[Batch],
        now: datetime | date,
        within_days: int,
    ) -> tuple[Batch, ...]:
        """Available batches expiring within ``within_days`` (expired included)."""
        expiring = [
            b for b in batches
            if b.is_available and days_until_expiry(b.expiry_date, now) <= within_days
        ]
        expiring.sort(key=lambda b: (b.expiry_date, b.id))
        return tuple(expiring)


def build_expiry_risk_report(
    batches: Iterable[Batch],
    medicines: Iterable[Medicine],
    now: datetime | date,
    thresholds: ExpiryThresholds,
) -> tuple[ExpiryRiskEntry, ...]:
    """Functional entry point for the expiry risk report."""
    return ExpiryRiskScorer(thresholds).build_report(
        batches=batches, medicines=medicines, now=now
    )


def build_expiry_alerts(
    batches: Iterable[Batch],
    medicines: Iterable[Medicine],
    now: datetime | date,
    thresholds: ExpiryThresholds,
) -> tuple[ExpiryAlert, ...]:
    return ExpiryRiskScorer(thresholds).build_alerts(
        batches=batches, medicines=medicines, now=now
    )


def find_expiring_batches(
    batches: Iterable[Batch],
    now: datetime | date,
    within_days: int,
) -> tuple[Batch, ...]:
    return ExpiryRiskScorer().find_expiring(
        batches=batches, now=now, within_days=within_days
    )
