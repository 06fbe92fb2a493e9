"""
Subscription Manager - Expires purchases and grants memberships.

NO DICTIONARIES - Rewards and statuses are strongly typed dataclasses.

Every operation that touches both a purchase and its owner commits them in a
single transaction through the entitlement store.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, tzinfo
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import Product, Purchase, User, utc_now
from app.exceptions import SubscriptionAlreadyActiveError
from app.models.domain import MembershipRewards, MembershipStatus, ProductReward
from app.services.entitlement_store import EntitlementStore
from app.services.product_catalog import get_membership_rewards

logger = get_logger(__name__)


# ----------------------------------------------------------------------
# Membership state transitions
# ----------------------------------------------------------------------


def has_active_membership(user: User, now: datetime) -> bool:
    """True while the user's membership window is open."""
    return (
        user.membership_at is not None
        and user.membership_expires_at is not None
        and user.membership_expires_at > now
    )


def reset_membership(user: User, defaults: ProductReward) -> None:
    """Return the user to the non-member state with default balances."""
    user.point = defaults.point
    user.ai_point = defaults.ai_point
    user.membership_at = None
    user.membership_expires_at = None
    user.last_membership_at = None
    user.current_membership_product_id = None
    user.event_id = None


def apply_initial_membership(user: User, rewards: MembershipRewards, now: datetime) -> None:
    """Open a membership window and replace balances with the product grant."""
    user.point = rewards.point
    user.ai_point = rewards.ai_point
    user.membership_at = now
    user.last_membership_at = now
    user.membership_expires_at = now + timedelta(days=rewards.period_days)
    user.current_membership_product_id = rewards.product_id


def should_renew_membership(user: User, rewards: MembershipRewards, now: datetime) -> bool:
    """
    Decide whether a periodic grant is due.

    Never true for a lapsed window: those belong to the expiration pass.
    """
    if not has_active_membership(user, now):
        return False

    if user.last_membership_at is None:
        return True

    return now - user.last_membership_at >= timedelta(days=rewards.renewal_period_days)


def apply_membership_renewal(user: User, rewards: MembershipRewards, now: datetime) -> None:
    """Replace balances with the product grant; the window itself is unchanged."""
    user.point = rewards.point
    user.ai_point = rewards.ai_point
    user.last_membership_at = now


def get_membership_status(user: User, now: datetime, tz: tzinfo | None = None) -> MembershipStatus:
    """
    Summarize a user's membership in whole calendar days.

    Days are counted between local midnights in `tz` (UTC when omitted), so a
    window ending later today reports zero days left and is inactive.
    """
    if user.membership_at is None or user.membership_expires_at is None:
        return MembershipStatus(is_active=False, left_days=0, membership_at=None, expires_at=None)

    if tz is not None:
        today = now.astimezone(tz).date()
        expires_day = user.membership_expires_at.astimezone(tz).date()
    else:
        today = now.date()
        expires_day = user.membership_expires_at.date()

    left_days = (expires_day - today).days
    if left_days > 0:
        return MembershipStatus(
            is_active=True,
            left_days=left_days,
            membership_at=user.membership_at,
            expires_at=user.membership_expires_at,
        )

    return MembershipStatus(
        is_active=False,
        left_days=0,
        membership_at=user.membership_at,
        expires_at=user.membership_expires_at,
    )


class SubscriptionManager:
    """Service for subscription state changes."""

    def __init__(
        self,
        session: AsyncSession,
        default_rewards: ProductReward | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize subscription manager.

        Args:
            session: Database session shared with the calling job or request
            default_rewards: Balances restored when a membership ends
            clock: Source of the current time
        """
        self.session = session
        self.store = EntitlementStore(session)
        self.default_rewards = default_rewards or ProductReward(
            point=settings.default_point,
            ai_point=settings.default_ai_point,
        )
        self.clock = clock

    async def expire_subscription(self, purchase: Purchase) -> bool:
        """
        Mark a purchase expired and end the owner's membership if it is for this product.

        Idempotent: an already expired purchase is left untouched.

        Args:
            purchase: Purchase to expire

        Returns:
            True if anything changed

        Raises:
            StoreError: If the write fails (nothing is persisted)
        """
        if purchase.is_expired:
            logger.info("purchase_already_expired", purchase_id=str(purchase.id))
            return False

        product_id = purchase.product_snapshot.product_id
        purchase.is_expired = True

        membership_reset = False
        user = await self.store.get_user(purchase.user_id)
        if user is None:
            logger.warning(
                "purchase_owner_missing",
                purchase_id=str(purchase.id),
                user_id=str(purchase.user_id),
            )
        elif user.current_membership_product_id == product_id:
            reset_membership(user, self.default_rewards)
            membership_reset = True

        await self.store.commit()

        logger.info(
            "subscription_expired",
            purchase_id=str(purchase.id),
            user_id=str(purchase.user_id),
            product_id=product_id,
            membership_reset=membership_reset,
        )
        return True

    async def create_subscription_without_validation(
        self,
        user: User,
        product: Product,
        txn_ref: str | None = None,
        receipt: Any | None = None,
    ) -> Purchase:
        """
        Grant a membership without a store receipt (admin path).

        Args:
            user: Recipient
            product: Subscription product to grant
            txn_ref: Transaction reference to record (generated when omitted)
            receipt: Optional receipt payload to keep with the purchase

        Returns:
            The created purchase

        Raises:
            CatalogError: If the product is not a usable subscription
            SubscriptionAlreadyActiveError: If the user already holds a membership
            StoreError: If the write fails
        """
        rewards = get_membership_rewards(product)
        now = self.clock()

        if has_active_membership(user, now):
            raise SubscriptionAlreadyActiveError(user.id)

        purchase = Purchase(
            id=uuid4(),
            user_id=user.id,
            product=product.snapshot().to_document(),
            receipt=receipt,
            transaction_id=txn_ref or f"admin_{int(now.timestamp() * 1000)}",
            original_transaction_id=None,
            verified_by="admin",
            is_expired=False,
            created_by_admin=True,
        )

        apply_initial_membership(user, rewards, now)
        user.event_id = product.event_id
        self.store.add(purchase)
        await self.store.commit()

        logger.info(
            "admin_subscription_created",
            user_id=str(user.id),
            product_id=product.product_id,
            transaction_id=purchase.transaction_id,
            expires_at=user.membership_expires_at.isoformat() if user.membership_expires_at else None,
        )
        return purchase
