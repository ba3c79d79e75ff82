#!/usr/bin/env python3
"""
Revenue report for a reporting window, printed as JSON.

Dates are inclusive calendar days in the configured reporting timezone.

Usage:
    python3 scripts/revenue_report.py --start 2024-01-01 --end 2024-01-31
    python3 scripts/revenue_report.py --start 2024-02-01 --end 2024-02-29 --compare
    python3 scripts/revenue_report.py --start 2024-01-01 --end 2024-01-01 \\
        --database-url sqlite:///revenue.db
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from revenue_config import get_active_config  # noqa: E402
from revenue_config.bridges import build_reporting_period, build_session_factory  # noqa: E402
from revenue_kernel.db.engine import create_tables, session_scope  # noqa: E402
from revenue_kernel.logging_config import configure_logging  # noqa: E402
from revenue_kernel.selectors.period_aggregator import PeriodAggregator  # noqa: E402


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value!r}") from None


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print the revenue report for a window.")
    parser.add_argument("--start", type=_parse_date, required=True, help="First day (YYYY-MM-DD)")
    parser.add_argument("--end", type=_parse_date, default=None, help="Last day, inclusive")
    parser.add_argument("--config", type=Path, default=None, help="Engine config YAML")
    parser.add_argument("--database-url", type=str, default=None)
    parser.add_argument("--timezone", type=str, default=None, help="Override reporting timezone")
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Print growth against the equally long preceding window instead",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    overrides = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.timezone:
        overrides["reporting_timezone"] = args.timezone
    try:
        config = get_active_config(args.config, overrides=overrides or None)
        period = build_reporting_period(config, args.start, args.end or args.start)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    session_factory = build_session_factory(config)
    create_tables(session_factory.kw["bind"])
    with session_scope(session_factory) as session:
        aggregator = PeriodAggregator(session, decimal_places=config.currency_decimal_places)
        if args.compare:
            result = aggregator.compare(period)
        else:
            result = aggregator.summarize(period)
        payload = result.to_dict()

    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
