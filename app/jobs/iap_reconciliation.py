"""
IAP Reconciliation Job - Expires purchases the stores report as ended.

Walks every purchase not yet marked expired, re-verifies its receipt, and
expires the ones whose store answer is `expired`. Admin-granted purchases are
never sent to a store. An `invalid` answer means "could not determine" and
leaves the purchase alone; it is logged at error level.
"""

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import utc_now
from app.db.session import get_write_session
from app.jobs.base import ReconciliationJob, SessionFactory
from app.models.domain import ItemOutcome, ProductReward, SweepReport, ValidationStatus
from app.services.entitlement_store import EntitlementStore
from app.services.receipt_validator import ReceiptValidatorService
from app.services.subscription_manager import SubscriptionManager

logger = get_logger(__name__)


class IAPReconciliationJob(ReconciliationJob):
    """Daily sweep over unexpired purchases."""

    name = "iap"
    item_key = "purchase_id"

    def __init__(
        self,
        validator: ReceiptValidatorService,
        session_factory: SessionFactory = get_write_session,
        clock: Callable[[], datetime] = utc_now,
        default_rewards: ProductReward | None = None,
    ) -> None:
        """
        Initialize IAP reconciliation job.

        Args:
            validator: Receipt validator with the configured platform verifiers
            session_factory: Opens the sweep's database session
            clock: Source of the current time
            default_rewards: Balances restored when a membership ends
        """
        super().__init__(session_factory=session_factory, clock=clock)
        self.validator = validator
        self.default_rewards = default_rewards

    async def sweep(self, session: AsyncSession, report: SweepReport) -> None:
        store = EntitlementStore(session)
        manager = SubscriptionManager(session, self.default_rewards, self.clock)

        purchase_ids = await store.list_unexpired_purchase_ids()
        logger.info("iap_reconciliation_started", purchases=len(purchase_ids))

        for purchase_id in purchase_ids:
            await self.process_item(
                store,
                report,
                purchase_id,
                lambda purchase_id=purchase_id: self.reconcile_purchase(store, manager, purchase_id),
            )

    async def reconcile_purchase(
        self,
        store: EntitlementStore,
        manager: SubscriptionManager,
        purchase_id: UUID,
    ) -> ItemOutcome:
        """
        Re-verify one purchase and expire it if its store says so.

        The read transaction ends before the store call; the purchase is
        reloaded before it is expired.
        """
        purchase = await store.get_purchase(purchase_id)
        if purchase is None or purchase.is_expired:
            return ItemOutcome.UNCHANGED

        if purchase.created_by_admin:
            return ItemOutcome.SKIPPED

        user_id = purchase.user_id
        receipt = purchase.receipt
        snapshot = purchase.product_snapshot
        await store.rollback()

        result = await self.validator.verify(receipt, snapshot, self.clock())

        if result.status is ValidationStatus.EXPIRED:
            purchase = await store.get_purchase(purchase_id)
            if purchase is None or purchase.is_expired:
                return ItemOutcome.UNCHANGED
            await manager.expire_subscription(purchase)
            return ItemOutcome.EXPIRED

        if result.status is ValidationStatus.INVALID:
            logger.error(
                "iap_receipt_unverifiable",
                purchase_id=str(purchase_id),
                user_id=str(user_id),
                reason=result.reason,
            )

        return ItemOutcome.UNCHANGED
