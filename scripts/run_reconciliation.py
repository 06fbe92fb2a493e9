#!/usr/bin/env python3
"""
Run Reconciliation Sweeps Once

For deployments that schedule sweeps with OS cron instead of the in-process
scheduler. Exits non-zero when a sweep aborts or has item failures.

Usage:
    python scripts/run_reconciliation.py --job all
    python scripts/run_reconciliation.py --job iap
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from app.db.session import close_engines
from app.observability import setup_logging
from app.worker import JOB_NAMES, build_jobs, run_jobs

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run entitlement reconciliation sweeps")
    parser.add_argument(
        "--job",
        choices=[*JOB_NAMES, "all"],
        default="all",
        help="Sweep to run (default: all, in order iap then membership)",
    )
    return parser.parse_args(argv)


async def run(job: str) -> bool:
    """Run the requested sweeps and report whether all succeeded."""
    names = list(JOB_NAMES) if job == "all" else [job]
    try:
        reports = await run_jobs(build_jobs(), names)
    finally:
        await close_engines()

    for report in reports:
        logger.info(
            "reconciliation_cli_report",
            job=report.job,
            succeeded=report.succeeded,
            examined=report.examined,
            expired=report.expired,
            renewed=report.renewed,
            failed=report.failed,
        )
    return all(report.succeeded for report in reports)


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_logging()
    succeeded = asyncio.run(run(args.job))
    sys.exit(0 if succeeded else 1)


if __name__ == "__main__":
    main()
