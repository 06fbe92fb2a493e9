"""
Tests for job wiring and on-demand runs.
"""

from datetime import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import Settings
from app.jobs.iap_reconciliation import IAPReconciliationJob
from app.jobs.membership_reconciliation import MembershipReconciliationJob
from app.models.domain import ProductReward, SweepReport
from app.worker import JOB_NAMES, build_jobs, build_scheduler, run_jobs
from conftest import utc


def fake_job(name: str, calls: list[str]) -> MagicMock:
    async def run() -> SweepReport:
        calls.append(name)
        return SweepReport(job=name, started_at=utc(2023, 2, 1), finished_at=utc(2023, 2, 1))

    return MagicMock(run=AsyncMock(side_effect=run))


class TestBuildJobs:
    """Jobs from settings."""

    def test_builds_both_jobs(self):
        config = Settings(default_point=7, default_ai_point=2)

        jobs = build_jobs(config)

        assert set(jobs) == set(JOB_NAMES)
        assert isinstance(jobs["iap"], IAPReconciliationJob)
        assert isinstance(jobs["membership"], MembershipReconciliationJob)
        assert jobs["membership"].default_rewards == ProductReward(point=7, ai_point=2)
        assert jobs["iap"].default_rewards == ProductReward(point=7, ai_point=2)

    def test_scheduler_registers_jobs_at_configured_time(self):
        config = Settings(reconciliation_timezone="Asia/Seoul", reconciliation_hour=4, reconciliation_minute=30)
        jobs = {"iap": AsyncMock(), "membership": AsyncMock()}

        scheduler = build_scheduler(jobs, config)

        assert scheduler.job_names == ["iap", "membership"]
        assert all(entry[2] == time(4, 30) for entry in scheduler._entries)
        assert not scheduler.running


class TestRunJobs:
    """Sequential on-demand sweeps."""

    async def test_runs_in_requested_order(self):
        calls: list[str] = []
        jobs = {name: fake_job(name, calls) for name in JOB_NAMES}

        reports = await run_jobs(jobs, ["iap", "membership"])

        assert calls == ["iap", "membership"]
        assert [report.job for report in reports] == ["iap", "membership"]

    async def test_runs_single_job(self):
        calls: list[str] = []
        jobs = {name: fake_job(name, calls) for name in JOB_NAMES}

        await run_jobs(jobs, ["membership"])

        assert calls == ["membership"]

    async def test_unknown_job_runs_nothing(self):
        calls: list[str] = []
        jobs = {name: fake_job(name, calls) for name in JOB_NAMES}

        with pytest.raises(KeyError, match="refunds"):
            await run_jobs(jobs, ["iap", "refunds"])

        assert calls == []
