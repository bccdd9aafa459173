"""
Configuration schema (``ledger_config.schema``).

Every setting the ledger reads at runtime lives on ``LedgerSettings``.  The
dataclass is frozen and validates itself on construction, so an invalid
configuration never reaches a service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class LedgerSettings:
    """
    Runtime settings for a ledger deployment.

    Raises:
        ValueError: on construction when a value is out of range.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    pool_size: int = 5
    match_window_days: int = 3
    log_level: str = "INFO"
    default_currency: str = "USD"
    retained_earnings_tag: str = "retained_earnings"
    entry_number_prefix: str = "JE"

    def __post_init__(self) -> None:
        if not isinstance(self.database_url, str) or not self.database_url:
            raise ValueError("database_url must be a non-empty string")
        if not isinstance(self.echo_sql, bool):
            raise ValueError(f"echo_sql must be a boolean, got {self.echo_sql!r}")
        if isinstance(self.pool_size, bool) or not isinstance(self.pool_size, int) or self.pool_size < 1:
            raise ValueError(f"pool_size must be a positive integer, got {self.pool_size!r}")
        if (
            isinstance(self.match_window_days, bool)
            or not isinstance(self.match_window_days, int)
            or self.match_window_days < 0
        ):
            raise ValueError(f"match_window_days must be a non-negative integer, got {self.match_window_days!r}")
        if not isinstance(self.log_level, str) or self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {self.log_level!r}")
        if not isinstance(self.default_currency, str) or len(self.default_currency) != 3:
            raise ValueError(f"default_currency must be a 3-letter ISO code, got {self.default_currency!r}")
        if not isinstance(self.retained_earnings_tag, str) or not self.retained_earnings_tag:
            raise ValueError("retained_earnings_tag must be a non-empty string")
        if not isinstance(self.entry_number_prefix, str) or not self.entry_number_prefix.isalnum():
            raise ValueError(f"entry_number_prefix must be alphanumeric, got {self.entry_number_prefix!r}")

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())
