#!/usr/bin/env python3
"""
Balance invariant audit.

Recomputes every customer's expected balance (open invoice dues minus
advance credit) and compares it with the recorded balance.  Exits 1 when
any customer has drifted, 0 otherwise, so it can run from cron or CI.

Usage:
    python3 scripts/check_balances.py
    python3 scripts/check_balances.py --database-url postgresql://.../revenue
    python3 scripts/check_balances.py --config prod.yaml --json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from revenue_config import get_active_config  # noqa: E402
from revenue_config.bridges import build_session_factory  # noqa: E402
from revenue_kernel.db.engine import create_tables, session_scope  # noqa: E402
from revenue_kernel.logging_config import configure_logging, get_logger  # noqa: E402
from revenue_kernel.selectors.customer_selector import CustomerSelector  # noqa: E402

logger = get_logger("scripts.check_balances")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit customer balances against the ledger.")
    parser.add_argument("--config", type=Path, default=None, help="Engine config YAML")
    parser.add_argument("--database-url", type=str, default=None)
    parser.add_argument("--json", action="store_true", help="Print drift as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.verbose else logging.WARNING)

    overrides = {"database_url": args.database_url} if args.database_url else None
    config = get_active_config(args.config, overrides=overrides)
    session_factory = build_session_factory(config)
    create_tables(session_factory.kw["bind"])

    with session_scope(session_factory) as session:
        selector = CustomerSelector(session)
        checked = len(selector.list_balances())
        drift = selector.audit_balances()

    for entry in drift:
        logger.error(
            "balance_drift_detected",
            extra={
                "customer_id": entry.customer_id,
                "recorded_balance": str(entry.recorded_balance),
                "expected_balance": str(entry.expected_balance),
            },
        )

    if args.json:
        payload = {
            "checked": checked,
            "drift": [
                {
                    "customerId": entry.customer_id,
                    "recordedBalance": str(entry.recorded_balance),
                    "expectedBalance": str(entry.expected_balance),
                    "difference": str(entry.difference),
                }
                for entry in drift
            ],
        }
        print(json.dumps(payload, indent=2))
    else:
        print(f"Checked {checked} customer balances")
        for entry in drift:
            print(
                f"  DRIFT {entry.customer_id}: recorded {entry.recorded_balance} "
                f"expected {entry.expected_balance} ({entry.difference:+})"
            )
        print("OK" if not drift else f"FAILED: {len(drift)} customer(s) drifted")

    return 1 if drift else 0


if __name__ == "__main__":
    sys.exit(main())
