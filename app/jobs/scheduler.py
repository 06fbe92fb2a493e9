"""
Job Scheduler - Fires reconciliation jobs once a day at a wall-clock time.

The in-process scheduler is a set of asyncio tasks, one per job. Deployments
that prefer OS cron run scripts/run_reconciliation.py instead and leave the
scheduler disabled.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta, tzinfo
from typing import Any, Protocol

from structlog import get_logger

logger = get_logger(__name__)

ScheduledJob = Callable[[], Awaitable[Any]]


def next_run_after(now: datetime, at: time, tz: tzinfo) -> datetime:
    """
    Next occurrence of wall-clock time `at` in `tz`, strictly after `now`.

    Args:
        now: Timezone-aware reference time
        at: Local time of day to fire
        tz: Zone the time of day is expressed in

    Returns:
        Timezone-aware datetime in `tz`
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), at, tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


class JobScheduler(Protocol):
    """Registers daily jobs and controls their timers."""

    def schedule_daily(self, name: str, job: ScheduledJob, at: time, timezone: tzinfo) -> None: ...

    def start(self) -> None: ...

    async def shutdown(self) -> None: ...


class AsyncioDailyScheduler:
    """
    Daily timers on the running event loop.

    A failing job is logged and the timer carries on with the next day.
    """

    def __init__(
        self,
        clock: Callable[[tzinfo], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self._entries: list[tuple[str, ScheduledJob, time, tzinfo]] = []
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def job_names(self) -> list[str]:
        return [name for name, _, _, _ in self._entries]

    def schedule_daily(self, name: str, job: ScheduledJob, at: time, timezone: tzinfo) -> None:
        """Register a job; takes effect on the next start()."""
        if name in self.job_names:
            raise ValueError(f"Job already scheduled: {name}")
        self._entries.append((name, job, at, timezone))
        logger.info("job_scheduled", job=name, at=at.isoformat(), timezone=str(timezone))

    def start(self) -> None:
        """Start one timer task per registered job. Requires a running loop."""
        for name, job, at, tz in self._entries:
            if name not in self._tasks:
                self._tasks[name] = asyncio.create_task(self._loop(name, job, at, tz), name=f"scheduler:{name}")
        logger.info("scheduler_started", jobs=self.job_names)

    async def shutdown(self) -> None:
        """Cancel all timers and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler_stopped")

    async def run_once(self, name: str, job: ScheduledJob) -> None:
        """Await a job, logging instead of raising on failure."""
        logger.info("scheduled_job_started", job=name)
        try:
            await job()
        except Exception as exc:
            logger.error(
                "scheduled_job_failed",
                job=name,
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )

    async def _loop(self, name: str, job: ScheduledJob, at: time, tz: tzinfo) -> None:
        while True:
            now = self.clock(tz)
            fire_at = next_run_after(now, at, tz)
            delay = (fire_at.astimezone(UTC) - now.astimezone(UTC)).total_seconds()
            logger.info("scheduled_job_waiting", job=name, next_run=fire_at.isoformat())
            await self.sleep(delay)
            await self.run_once(name, job)
