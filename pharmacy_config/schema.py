"""
InventorySettings schema.

The parsed, validated form of a settings YAML file. The loader builds it;
services read it. Nothing here touches the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pharmacy_kernel.domain.policy import ExpiryThresholds, FefoMode
from pharmacy_kernel.exceptions import SettingsError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class InventorySettings:
    """
    Runtime settings for dispensing and reporting.

    Contract:
        Frozen; validated in ``__post_init__``.
    Guarantees:
        - ``slow_moving_days``, ``kpi_window_days`` and
          ``override_ttl_seconds`` are positive.
        - ``currency`` is a three-letter code.
    """

    settings_id: str = "default"
    version: int = 1
    fefo_mode: FefoMode = FefoMode.SUGGEST
    expiry_thresholds: ExpiryThresholds = field(default_factory=ExpiryThresholds)
    slow_moving_days: int = 90
    kpi_window_days: int = 30
    override_ttl_seconds: int = 900
    currency: str = "PKR"
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.slow_moving_days <= 0:
            raise SettingsError("slow_moving_days", "must be positive")
        if self.override_ttl_seconds <= 0:
            raise SettingsError("override_ttl_seconds", "must be positive")
        if self.kpi_window_days <= 0:
            raise SettingsError("kpi_window_days", "must be positive")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise SettingsError("currency", f"not a currency code: {self.currency!r}")

        logger.info(
            "inventory_settings_initialized",
            extra={
                "settings_id": self.settings_id,
                "version": self.version,
                "fefo_mode": self.fefo_mode.value,
                "expiry_critical_days": self.expiry_thresholds.critical,
                "expiry_warning_days": self.expiry_thresholds.warning,
                "expiry_notice_days": self.expiry_thresholds.notice,
            },
        )

    @classmethod
    def with_defaults(cls) -> InventorySettings:
        return cls()
