"""
Reconciliation jobs and their scheduler.
"""

from app.jobs.base import ReconciliationJob
from app.jobs.iap_reconciliation import IAPReconciliationJob
from app.jobs.membership_reconciliation import MembershipReconciliationJob
from app.jobs.scheduler import AsyncioDailyScheduler, JobScheduler, next_run_after

__all__ = [
    "ReconciliationJob",
    "IAPReconciliationJob",
    "MembershipReconciliationJob",
    "AsyncioDailyScheduler",
    "JobScheduler",
    "next_run_after",
]
