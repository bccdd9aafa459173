"""
ledger_config -- runtime settings for the ledger.

``get_settings()`` is the single entry point services and the facade use;
nothing else reads configuration files or the environment.  The kernel
never imports this package: ``LedgerCore`` passes the values it needs
(match window, entry number prefix, retained earnings tag) into services.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import compute_checksum, load_settings
from ledger_config.schema import LedgerSettings
from ledger_kernel.logging_config import get_logger

logger = get_logger("config")

__all__ = ["LedgerSettings", "get_settings", "load_settings"]


def get_settings(path: Path | str | None = None) -> LedgerSettings:
    """Load the active settings and log which configuration is in force."""
    settings = load_settings(path)
    logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "checksum": compute_checksum(settings)[:16],
            "match_window_days": settings.match_window_days,
            "default_currency": settings.default_currency,
        },
    )
    return settings
