"""
Entitlement Store - Data access for users' balances, membership windows and purchases.

Each mutation is committed in a single transaction so a purchase flag and the
matching user balance change land together or not at all.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import Purchase, User
from app.exceptions import StoreError

logger = get_logger(__name__)


class EntitlementStore:
    """Queries and unit-of-work boundary over users and purchases."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize entitlement store with database session."""
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user(self, user_id: UUID) -> User | None:
        """Load a user by primary key."""
        return await self.session.get(User, user_id)

    async def get_purchase(self, purchase_id: UUID) -> Purchase | None:
        """Load a purchase by primary key."""
        return await self.session.get(Purchase, purchase_id)

    async def list_unexpired_purchase_ids(self) -> list[UUID]:
        """IDs of every purchase not yet marked expired, oldest first."""
        stmt = (
            select(Purchase.id)
            .where(Purchase.is_expired.is_(False))
            .order_by(Purchase.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_lapsed_membership_user_ids(self, now: datetime) -> list[UUID]:
        """IDs of members whose window ended before `now`."""
        stmt = (
            select(User.id)
            .where(
                User.membership_at.isnot(None),
                User.membership_expires_at < now,
            )
            .order_by(User.membership_expires_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_active_membership_user_ids(self, now: datetime) -> list[UUID]:
        """IDs of members whose window is still open at `now`."""
        stmt = (
            select(User.id)
            .where(
                User.membership_at.isnot(None),
                User.membership_expires_at > now,
            )
            .order_by(User.last_membership_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def add(self, instance: User | Purchase) -> None:
        """Stage a new row for the next commit."""
        self.session.add(instance)

    async def commit(self) -> None:
        """
        Commit staged changes as one transaction.

        Raises:
            StoreError: If the database rejects the write
        """
        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.error("entitlement_store_commit_failed", error=str(exc))
            await self.session.rollback()
            raise StoreError(str(exc)) from exc

    async def rollback(self) -> None:
        """Discard staged changes."""
        await self.session.rollback()
