"""
Reconciliation Worker - Wires jobs from settings and runs them.

Used three ways: the API lifespan starts the daily scheduler when
SCHEDULER_ENABLED is set, `python -m app.worker` runs the scheduler as a
standalone process, and scripts/run_reconciliation.py runs sweeps once for
OS cron.
"""

import asyncio
import signal
from collections.abc import Iterable
from datetime import time

from structlog import get_logger

from app.config import Settings, settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.jobs.base import ReconciliationJob
from app.jobs.iap_reconciliation import IAPReconciliationJob
from app.jobs.membership_reconciliation import MembershipReconciliationJob
from app.jobs.scheduler import AsyncioDailyScheduler
from app.models.domain import ProductReward, SweepReport
from app.services.receipt_validator import build_receipt_validator

logger = get_logger(__name__)

# Sweeps run in this order when several are requested together
JOB_NAMES = ("iap", "membership")


def build_jobs(config: Settings = settings) -> dict[str, ReconciliationJob]:
    """Create one instance of each reconciliation job."""
    defaults = ProductReward(point=config.default_point, ai_point=config.default_ai_point)
    return {
        "iap": IAPReconciliationJob(build_receipt_validator(config), default_rewards=defaults),
        "membership": MembershipReconciliationJob(default_rewards=defaults),
    }


def build_scheduler(
    jobs: dict[str, ReconciliationJob], config: Settings = settings
) -> AsyncioDailyScheduler:
    """Register every job at the configured local time."""
    scheduler = AsyncioDailyScheduler()
    at = time(config.reconciliation_hour, config.reconciliation_minute)
    for name in JOB_NAMES:
        scheduler.schedule_daily(name, jobs[name], at, config.timezone)
    return scheduler


async def run_jobs(jobs: dict[str, ReconciliationJob], names: Iterable[str]) -> list[SweepReport]:
    """
    Run the named sweeps one after another.

    Raises:
        KeyError: If a name is not a known job
    """
    selected = list(names)
    unknown = [name for name in selected if name not in jobs]
    if unknown:
        raise KeyError(f"Unknown job(s): {', '.join(unknown)}")

    reports = []
    for name in selected:
        reports.append(await jobs[name].run())
    return reports


async def serve() -> None:
    """Run the scheduler until SIGINT or SIGTERM."""
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    jobs = build_jobs()
    scheduler = build_scheduler(jobs)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    scheduler.start()
    logger.info(
        "worker_started",
        timezone=settings.reconciliation_timezone,
        hour=settings.reconciliation_hour,
        minute=settings.reconciliation_minute,
    )
    try:
        await stop.wait()
    finally:
        await scheduler.shutdown()
        await close_engines()
        logger.info("worker_stopped")


def main() -> None:
    from app.observability import setup_logging, setup_tracing

    setup_logging()
    setup_tracing()
    asyncio.run(serve())


if __name__ == "__main__":
    main()
