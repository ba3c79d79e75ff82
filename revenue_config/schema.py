"""
Configuration schema (``revenue_config.schema``).

Responsibility
--------------
Frozen dataclass describing every tunable of the reconciliation engine,
with validation in ``__post_init__`` so an invalid configuration can never
be constructed.

Architecture position
---------------------
**Config layer** -- pure data.  No dependency on the kernel.

Failure modes
-------------
* Out-of-range or unknown values -> ``ValueError`` with the field name.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

SPILLOVER_POLICIES = ("oldest_first", "newest_first", "largest_due_first")


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings for the reconciliation engine and reports."""

    currency_decimal_places: int = 2
    rounding_tolerance: Decimal = Decimal("0.01")
    spillover_policy: str = "oldest_first"
    max_conflict_retries: int = 5
    retry_backoff_seconds: Decimal = Decimal("0.05")
    reporting_timezone: str = "UTC"
    database_url: str = "sqlite:///revenue.db"
    pool_size: int = 20
    echo_sql: bool = False
    version: int = 1

    def __post_init__(self) -> None:
        if not 0 <= self.currency_decimal_places <= 6:
            raise ValueError(
                f"currency_decimal_places must be between 0 and 6, "
                f"got {self.currency_decimal_places}"
            )
        if self.rounding_tolerance < 0:
            raise ValueError(
                f"rounding_tolerance must not be negative, got {self.rounding_tolerance}"
            )
        if self.spillover_policy not in SPILLOVER_POLICIES:
            raise ValueError(
                f"spillover_policy must be one of {', '.join(SPILLOVER_POLICIES)}, "
                f"got {self.spillover_policy!r}"
            )
        if self.max_conflict_retries < 1:
            raise ValueError(
                f"max_conflict_retries must be at least 1, got {self.max_conflict_retries}"
            )
        if self.retry_backoff_seconds < 0:
            raise ValueError(
                f"retry_backoff_seconds must not be negative, got {self.retry_backoff_seconds}"
            )
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {self.pool_size}")
        if not self.database_url:
            raise ValueError("database_url is required")
        try:
            ZoneInfo(self.reporting_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"reporting_timezone is not a known timezone: {self.reporting_timezone!r}"
            ) from None
