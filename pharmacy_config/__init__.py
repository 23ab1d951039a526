"""
pharmacy_config -- single public entrypoint for inventory settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``. Services receive the returned
    ``InventorySettings``; they never read files themselves.

Architecture position:
    Configuration -- sits above ``pharmacy_kernel`` and beside
    ``pharmacy_services``. The kernel never imports from here.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``SettingsError`` -- the file parsed but failed validation.

Audit relevance:
    Every successful call emits a ``PHARMACY_CONFIG_TRACE`` log entry with
    the settings id, version and checksum, tying dispensing decisions to
    the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pharmacy_config.loader import load_settings
from pharmacy_config.schema import InventorySettings

_logger = logging.getLogger("pharmacy_kernel.config")

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(path: Path | str | None = None) -> InventorySettings:
    """Load and validate settings, defaulting to the packaged ``sets/default.yaml``.

    Not cached; callers hold the returned settings for as long as they need.
    """
    settings_path = Path(path) if path is not None else _DEFAULT_SETTINGS_FILE
    settings = load_settings(settings_path)

    _logger.info(
        "PHARMACY_CONFIG_TRACE",
        extra={
            "trace_type": "PHARMACY_CONFIG_TRACE",
            "settings_id": settings.settings_id,
            "settings_version": settings.version,
            "checksum": settings.checksum,
            "fefo_mode": settings.fefo_mode.value,
            "source": str(settings_path),
        },
    )
    return settings


__all__ = ["InventorySettings", "get_active_settings"]
