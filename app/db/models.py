"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations. The two JSONB
columns (receipt, product snapshot) hold opaque platform payloads.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.domain import Platform, ProductSnapshot, ProductType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Product(Base):
    """
    ORM model for products table.

    Catalog of purchasable and subscribable offerings. Read-only for the
    reconciliation jobs.
    """

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    type: Mapped[int] = mapped_column(Integer, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Reward grant
    point: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_point: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Membership window (days)
    period_days: Mapped[int | None] = mapped_column(Integer, nullable=True, default=30)
    renewal_period_days: Mapped[int | None] = mapped_column(Integer, nullable=True, default=30)

    # Event membership number (null for regular products)
    event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("type IN (0, 1)", name="ck_product_type"),
        CheckConstraint("point >= 0", name="ck_product_point_non_negative"),
        CheckConstraint("ai_point >= 0", name="ck_product_ai_point_non_negative"),
        Index("idx_products_platform_type", "platform", "type"),
    )

    @property
    def is_subscription(self) -> bool:
        return self.type == ProductType.SUBSCRIPTION

    def snapshot(self) -> ProductSnapshot:
        """Copy of this product to embed in a purchase."""
        return ProductSnapshot(
            product_id=self.product_id,
            type=ProductType(self.type),
            display_name=self.display_name,
            platform=Platform(self.platform) if self.platform else None,
            point=self.point,
            ai_point=self.ai_point,
        )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Product(product_id={self.product_id}, type={self.type})>"


class User(Base):
    """
    ORM model for users table (entitlement columns only).

    The four membership columns are either all null or all set.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Balances
    point: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    ai_point: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Membership window
    membership_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    membership_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_membership_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_membership_product_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    event_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("point >= 0", name="ck_user_point_non_negative"),
        CheckConstraint("ai_point >= 0", name="ck_user_ai_point_non_negative"),
        CheckConstraint(
            "(membership_at IS NULL AND membership_expires_at IS NULL "
            "AND last_membership_at IS NULL AND current_membership_product_id IS NULL) "
            "OR (membership_at IS NOT NULL AND membership_expires_at IS NOT NULL "
            "AND last_membership_at IS NOT NULL AND current_membership_product_id IS NOT NULL)",
            name="ck_user_membership_all_or_none",
        ),
        Index(
            "idx_users_membership_expires_at",
            "membership_expires_at",
            postgresql_where=(membership_at.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<User(id={self.id}, point={self.point}, ai_point={self.ai_point}, "
            f"membership_product={self.current_membership_product_id})>"
        )


class Purchase(Base):
    """
    ORM model for purchases table.

    One payment event (or admin grant). `is_expired` only ever moves from
    false to true; rows are never deleted by reconciliation.
    """

    __tablename__ = "purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Denormalized product at purchase time
    product: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    # iOS: base64 receipt string. Android: purchase object. Admin grants: null.
    receipt: Mapped[Any | None] = mapped_column(JSONB, nullable=True)

    transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    original_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    verified_by: Mapped[str] = mapped_column(String(20), nullable=False)

    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "verified_by IN ('iap', 'google-api', 'admin')", name="ck_purchase_verified_by"
        ),
        Index("idx_purchases_user_id", "user_id"),
        Index(
            "idx_purchases_unexpired",
            "created_at",
            postgresql_where=(is_expired.is_(False)),
        ),
    )

    @property
    def product_snapshot(self) -> ProductSnapshot:
        return ProductSnapshot.from_document(self.product)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Purchase(id={self.id}, user_id={self.user_id}, "
            f"is_expired={self.is_expired}, created_by_admin={self.created_by_admin})>"
        )
