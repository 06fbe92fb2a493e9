"""
Membership Reconciliation Job - Ends lapsed memberships and grants renewals.

Two passes over the same reference time. The expiration pass runs first and
resets every member whose window closed; the renewal pass only sees windows
still open, so a user expired here is never renewed in the same sweep.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import utc_now
from app.db.session import get_write_session
from app.exceptions import CatalogError
from app.jobs.base import ReconciliationJob, SessionFactory
from app.models.domain import ItemOutcome, ProductReward, SweepReport
from app.observability.metrics import metrics
from app.services.entitlement_store import EntitlementStore
from app.services.product_catalog import ProductCatalogService
from app.services.subscription_manager import (
    apply_membership_renewal,
    reset_membership,
    should_renew_membership,
)

logger = get_logger(__name__)


class MembershipReconciliationJob(ReconciliationJob):
    """Daily sweep over users holding a membership window."""

    name = "membership"
    item_key = "user_id"

    def __init__(
        self,
        session_factory: SessionFactory = get_write_session,
        clock: Callable[[], datetime] = utc_now,
        default_rewards: ProductReward | None = None,
    ) -> None:
        super().__init__(session_factory=session_factory, clock=clock)
        self.default_rewards = default_rewards or ProductReward(
            point=settings.default_point,
            ai_point=settings.default_ai_point,
        )

    async def sweep(self, session: AsyncSession, report: SweepReport) -> None:
        store = EntitlementStore(session)
        catalog = ProductCatalogService(session)
        now = self.clock()

        lapsed_ids = await store.list_lapsed_membership_user_ids(now)
        logger.info("membership_expiration_pass_started", users=len(lapsed_ids))
        for user_id in lapsed_ids:
            await self.process_item(
                store,
                report,
                user_id,
                lambda user_id=user_id: self.expire_membership(store, user_id, now),
            )

        active_ids = await store.list_active_membership_user_ids(now)
        logger.info("membership_renewal_pass_started", users=len(active_ids))
        for user_id in active_ids:
            await self.process_item(
                store,
                report,
                user_id,
                lambda user_id=user_id: self.renew_membership(store, catalog, user_id, now),
            )

    async def expire_membership(self, store: EntitlementStore, user_id: UUID, now: datetime) -> ItemOutcome:
        """Reset a member whose window closed before `now`."""
        user = await store.get_user(user_id)
        if user is None or user.membership_expires_at is None or user.membership_expires_at >= now:
            return ItemOutcome.UNCHANGED

        product_id = user.current_membership_product_id
        reset_membership(user, self.default_rewards)
        await store.commit()

        logger.info("membership_expired", user_id=str(user_id), product_id=product_id)
        return ItemOutcome.EXPIRED

    async def renew_membership(
        self,
        store: EntitlementStore,
        catalog: ProductCatalogService,
        user_id: UUID,
        now: datetime,
    ) -> ItemOutcome:
        """Grant the periodic reward to a member when it is due."""
        user = await store.get_user(user_id)
        if user is None:
            return ItemOutcome.UNCHANGED

        try:
            _, rewards = await catalog.require_membership_product(user.current_membership_product_id)
        except CatalogError as exc:
            metrics.record_error(type(exc).__name__, self.name)
            logger.error(
                "membership_renewal_product_unusable",
                user_id=str(user_id),
                product_id=exc.product_id,
                reason=exc.reason,
            )
            return ItemOutcome.SKIPPED

        if not should_renew_membership(user, rewards, now):
            logger.info(
                "membership_renewal_not_due",
                user_id=str(user_id),
                last_membership_at=user.last_membership_at.isoformat() if user.last_membership_at else None,
            )
            return ItemOutcome.UNCHANGED

        apply_membership_renewal(user, rewards, now)
        await store.commit()

        logger.info(
            "membership_renewed",
            user_id=str(user_id),
            product_id=rewards.product_id,
            point=rewards.point,
            ai_point=rewards.ai_point,
        )
        return ItemOutcome.RENEWED
