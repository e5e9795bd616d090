#!/usr/bin/env python3
"""
Run the monthly royalty billing sweep for one calendar month.

Bills every active unit of every active franchise, optionally catches
recurring obligations up to the end of the month, commits, publishes the
created events and prints the sweep report as JSON.

Usage:
    python3 scripts/run_monthly_billing.py --year 2024 --month 3 [options]

Examples:
    # Bill March 2024 against the configured database
    DATABASE_URL=postgresql://billing@localhost/billing \
        python3 scripts/run_monthly_billing.py --year 2024 --month 3

    # Bill last month with a policy file and recurring catch-up
    python3 scripts/run_monthly_billing.py --config billing.yaml --with-recurring

Exit status is 0 when every scope was billed or skipped, 2 when at least
one scope failed and 1 on a setup error.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = "sqlite:///franchise_billing.db"


def _previous_month(today: date) -> tuple[int, int]:
    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate monthly royalty obligations for all active franchise units.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--year", type=int, default=None, help="Billing year (default: last month's).")
    parser.add_argument("--month", type=int, default=None, help="Billing month 1-12 (default: last month).")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL", DB_URL),
        help=f"Database URL (default: DATABASE_URL env or {DB_URL!r}).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Billing policy YAML (default: FRANCHISE_BILLING_CONFIG env or built-in defaults).",
    )
    parser.add_argument("--actor-id", default=None, help="Actor UUID recorded as generator.")
    parser.add_argument(
        "--with-recurring",
        action="store_true",
        help="Also generate recurring obligations due by the end of the month.",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running (local databases).",
    )
    args = parser.parse_args(argv)
    if (args.year is None) != (args.month is None):
        parser.error("--year and --month must be given together")
    if args.month is not None and not 1 <= args.month <= 12:
        parser.error("--month must be between 1 and 12")
    return args


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    import yaml

    from franchise_config import get_billing_policy
    from franchise_engines.periods import last_day_of_month
    from franchise_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from franchise_kernel.domain.clock import SystemClock
    from franchise_kernel.exceptions import FranchiseKernelError
    from franchise_kernel.logging_config import LogContext, get_logger
    from franchise_services import MonthlyBillingSweep, RecurrenceService

    logger = get_logger("scripts.run_monthly_billing")
    clock = SystemClock()
    year, month = (args.year, args.month) if args.year else _previous_month(clock.today())
    actor_id = UUID(args.actor_id) if args.actor_id else None

    try:
        policy = get_billing_policy(args.config)
    except (OSError, yaml.YAMLError, FranchiseKernelError) as e:
        print(f"ERROR: Failed to load billing policy: {e}", file=sys.stderr)
        return 1

    init_engine_from_url(args.database_url)
    if args.create_tables:
        create_tables()

    with LogContext.bind(correlation_id=f"monthly-billing-{year:04d}-{month:02d}"):
        with session_scope() as session:
            sweep = MonthlyBillingSweep(session, clock=clock, policy=policy)
            report = sweep.generate_monthly_obligations(year, month, actor_id=actor_id)
        sweep.publish_created(report)

        output = report.to_dict()
        if args.with_recurring:
            with session_scope() as session:
                recurring = RecurrenceService(session, clock=clock, policy=policy).generate_due(
                    as_of=last_day_of_month(year, month), actor_id=actor_id
                )
            output["recurring_created"] = [o.obligation_number for o in recurring]

    logger.info(
        "monthly_billing_script_finished",
        extra={"year": year, "month": month, "failed": len(report.failures)},
    )
    print(json.dumps(output, indent=2))
    return 2 if report.failures else 0


if __name__ == "__main__":
    sys.exit(main())
