"""
Config -> Kernel Bridges.

Functions that convert an ``EngineConfig`` into kernel inputs.  These live in
revenue_config (the producer) because the kernel must NEVER import
revenue_config.

Usage:
    from revenue_config import get_active_config
    from revenue_config.bridges import build_engine_for, build_session_factory

    config = get_active_config()
    session_factory = build_session_factory(config)
    engine = build_engine_for(config, session_factory)
"""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session, sessionmaker

from revenue_config.schema import EngineConfig
from revenue_kernel.db.engine import build_engine
from revenue_kernel.domain.clock import Clock
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.domain.spillover import SpilloverPolicy
from revenue_kernel.services.reconciliation_engine import (
    ReconciliationEngine,
    ReconciliationSettings,
)


def build_reconciliation_settings(config: EngineConfig) -> ReconciliationSettings:
    return ReconciliationSettings(
        decimal_places=config.currency_decimal_places,
        rounding_tolerance=config.rounding_tolerance,
        spillover_policy=SpilloverPolicy.parse(config.spillover_policy),
        max_conflict_retries=config.max_conflict_retries,
        retry_backoff_seconds=float(config.retry_backoff_seconds),
    )


def build_session_factory(config: EngineConfig) -> sessionmaker[Session]:
    """Engine and session factory for ``config.database_url``."""
    engine = build_engine(
        config.database_url,
        echo=config.echo_sql,
        pool_size=config.pool_size,
    )
    return sessionmaker(bind=engine, expire_on_commit=False)


def build_engine_for(
    config: EngineConfig,
    session_factory: sessionmaker[Session],
    clock: Clock | None = None,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        session_factory,
        clock=clock,
        settings=build_reconciliation_settings(config),
    )


def build_reporting_period(
    config: EngineConfig,
    start_date: date,
    end_date: date,
) -> ReportingPeriod:
    return ReportingPeriod(start_date, end_date, config.reporting_timezone)
