"""
Dispensing and alerting policy types (``pharmacy_kernel.domain.policy``).

Closed enums for FEFO mode and alert tiers, plus the expiry threshold
triple. Every branch in the selector and the scorers matches on these
values; free-form strings never reach the engines.

Invariants
----------
- ``0 <= critical <= warning <= notice`` and ``notice > 0``.
- ``ExpiryThresholds.horizon_days`` is always the widest window (notice).
"""

from dataclasses import dataclass
from enum import Enum


class FefoMode(str, Enum):
    """How the selector treats a request for a non-suggested batch."""

    STRICT = "strict"    # reject outright
    SUGGEST = "suggest"  # allow after explicit, audited confirmation


class ExpiryAlertLevel(str, Enum):
    """Expiry alert tiers, mildest first."""

    NONE = "none"
    NOTICE = "notice"
    WARNING = "warning"
    CRITICAL = "critical"


class StockAlertLevel(str, Enum):
    """Replenishment alert tiers."""

    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class ExpiryRecommendation(str, Enum):
    """Suggested action for a batch nearing expiry."""

    WRITE_OFF = "write_off"
    SELL_URGENTLY = "sell_urgently"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    PROMOTE = "promote"


@dataclass(frozen=True)
class ExpiryThresholds:
    """
    Day thresholds for expiry alert tiers.

    Contract:
        Frozen; validated on construction.
    Guarantees:
        - Tiers are nested: critical <= warning <= notice.
        - ``horizon_days`` > 0, so risk scoring never divides by zero.
    """

    critical: int = 30
    warning: int = 60
    notice: int = 90

    def __post_init__(self) -> None:
        if self.critical < 0:
            raise ValueError("critical threshold cannot be negative")
        if not self.critical <= self.warning <= self.notice:
            raise ValueError(
                "expiry thresholds must satisfy critical <= warning <= notice, "
                f"got {self.critical}/{self.warning}/{self.notice}"
            )
        if self.notice <= 0:
            raise ValueError("notice threshold must be positive")

    @property
    def horizon_days(self) -> int:
        """Widest configured window; risk is 0 beyond it."""
        return self.notice
