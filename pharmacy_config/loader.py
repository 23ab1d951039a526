"""
Settings Loader (``pharmacy_config.loader``).

Responsibility
--------------
Load a settings YAML file and parse it into a frozen
``InventorySettings``. Runtime callers go through
``pharmacy_config.get_active_settings()`` rather than calling this module.

Invariants enforced
-------------------
* Unknown top-level keys are rejected, so a typo never silently falls
  back to a default.
* Every parse problem raises ``SettingsError`` naming the offending key.
* ``compute_checksum`` is deterministic over the parsed document.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values  -> ``SettingsError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from pharmacy_config.schema import InventorySettings
from pharmacy_kernel.domain.policy import ExpiryThresholds, FefoMode
from pharmacy_kernel.exceptions import SettingsError
from pharmacy_kernel.utils.hashing import hash_payload

_KNOWN_KEYS = frozenset({
    "settings_id",
    "version",
    "fefo_mode",
    "expiry_alert_days",
    "slow_moving_days",
    "kpi_window_days",
    "override_ttl_seconds",
    "currency",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        SettingsError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError("<root>", f"expected a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    return hash_payload(data)


def _parse_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SettingsError(key, f"must be an integer, got {value!r}")
    return value


def parse_fefo_mode(value: Any) -> FefoMode:
    try:
        return FefoMode(str(value).lower())
    except ValueError:
        raise SettingsError("fefo_mode", f"must be 'strict' or 'suggest', got {value!r}") from None


def parse_thresholds(data: dict[str, Any] | None) -> ExpiryThresholds:
    if data is None:
        return ExpiryThresholds()
    if not isinstance(data, dict):
        raise SettingsError("expiry_alert_days", "must be a mapping")
    unknown = set(data) - {"critical", "warning", "notice"}
    if unknown:
        raise SettingsError("expiry_alert_days", f"unknown keys: {sorted(unknown)}")
    defaults = ExpiryThresholds()
    try:
        return ExpiryThresholds(
            critical=_parse_int(data, "critical", defaults.critical),
            warning=_parse_int(data, "warning", defaults.warning),
            notice=_parse_int(data, "notice", defaults.notice),
        )
    except ValueError as exc:
        raise SettingsError("expiry_alert_days", str(exc)) from exc


def parse_settings(data: dict[str, Any]) -> InventorySettings:
    """
    Parse an ``InventorySettings`` from a dict.

    Missing keys take the ``InventorySettings`` defaults.

    Raises:
        SettingsError: unknown keys or invalid values.
    """
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise SettingsError("<root>", f"unknown keys: {sorted(unknown)}")

    defaults = InventorySettings.with_defaults()
    return InventorySettings(
        settings_id=str(data.get("settings_id", defaults.settings_id)),
        version=_parse_int(data, "version", defaults.version),
        fefo_mode=parse_fefo_mode(data.get("fefo_mode", defaults.fefo_mode.value)),
        expiry_thresholds=parse_thresholds(data.get("expiry_alert_days")),
        slow_moving_days=_parse_int(data, "slow_moving_days", defaults.slow_moving_days),
        kpi_window_days=_parse_int(data, "kpi_window_days", defaults.kpi_window_days),
        override_ttl_seconds=_parse_int(
            data, "override_ttl_seconds", defaults.override_ttl_seconds
        ),
        currency=str(data.get("currency", defaults.currency)).upper(),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> InventorySettings:
    return parse_settings(load_yaml_file(path))
