"""
Reconciliation Job Base - Shared sweep lifecycle.

A sweep opens one session, processes items one at a time with a commit or
rollback per item, and always ends with a completion event carrying its
SweepReport, whether it finished, had failures, or aborted.
"""

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import utc_now
from app.db.session import get_write_session
from app.models.domain import ItemOutcome, SweepReport
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.observability.tracing import add_span_attributes, trace_operation
from app.services.entitlement_store import EntitlementStore

logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class ReconciliationJob:
    """
    Base class for daily sweeps.

    Subclasses implement `sweep`. Instances are plain async callables so the
    scheduler, the CLI and tests can all await them directly.
    """

    name: str = "reconciliation"
    item_key: str = "item_id"

    def __init__(
        self,
        session_factory: SessionFactory = get_write_session,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock

    async def __call__(self) -> SweepReport:
        return await self.run()

    async def sweep(self, session: AsyncSession, report: SweepReport) -> None:
        raise NotImplementedError

    async def run(self) -> SweepReport:
        """
        Run one sweep to completion.

        Never raises: a failure before or between items marks the report
        aborted and is logged with the completion event.
        """
        report = SweepReport(job=self.name, started_at=self.clock())

        with log_context(job=self.name), trace_operation(f"{self.name}_reconciliation", job=self.name) as span:
            try:
                async with self.session_factory() as session:
                    await self.sweep(session, report)
            except Exception as exc:
                report.aborted = True
                metrics.record_error(type(exc).__name__, self.name)
                logger.error(
                    f"{self.name}_reconciliation_aborted",
                    error_type=type(exc).__name__,
                    error=str(exc),
                    exc_info=True,
                )
            finally:
                report.finished_at = self.clock()
                add_span_attributes(
                    span,
                    examined=report.examined,
                    expired=report.expired,
                    renewed=report.renewed,
                    failed=report.failed,
                    aborted=report.aborted,
                )

            metrics.record_sweep(
                self.name,
                report.succeeded,
                report.duration_seconds,
                report.finished_at.timestamp(),
            )
            logger.info(
                f"{self.name}_reconciliation_ran",
                examined=report.examined,
                skipped=report.skipped,
                expired=report.expired,
                renewed=report.renewed,
                unchanged=report.unchanged,
                failed=report.failed,
                failed_ids=report.failed_ids,
                aborted=report.aborted,
                duration_seconds=report.duration_seconds,
            )

        return report

    async def process_item(
        self,
        store: EntitlementStore,
        report: SweepReport,
        item_id: Any,
        handler: Callable[[], Awaitable[ItemOutcome]],
    ) -> None:
        """
        Run one item's handler in isolation.

        A failure rolls back whatever the handler staged, is counted and
        logged, and never propagates to the rest of the sweep.
        """
        report.examined += 1
        try:
            outcome = await handler()
        except Exception as exc:
            await self._safe_rollback(store, item_id)
            report.record_failure(str(item_id))
            metrics.record_item(self.name, ItemOutcome.FAILED.value)
            metrics.record_error(type(exc).__name__, self.name)
            logger.error(
                f"{self.name}_reconciliation_item_failed",
                **{self.item_key: str(item_id)},
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            return

        report.record(outcome)
        metrics.record_item(self.name, outcome.value)

    async def _safe_rollback(self, store: EntitlementStore, item_id: Any) -> None:
        try:
            await store.rollback()
        except SQLAlchemyError as exc:
            logger.error(
                f"{self.name}_reconciliation_rollback_failed",
                **{self.item_key: str(item_id)},
                error=str(exc),
            )
