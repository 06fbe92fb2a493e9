"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any


class ProductType(IntEnum):
    """Catalog product kind (stored as an integer)."""

    PURCHASE = 0
    SUBSCRIPTION = 1


class Platform(str, Enum):
    """Store platform a product is sold on."""

    IOS = "ios"
    ANDROID = "android"


class ValidationStatus(str, Enum):
    """Tri-state receipt verification outcome."""

    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


class ItemOutcome(str, Enum):
    """What a sweep did with one purchase or user."""

    SKIPPED = "skipped"
    EXPIRED = "expired"
    RENEWED = "renewed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class ProductReward:
    """Point grant attached to a product."""

    point: int
    ai_point: int

    def __post_init__(self) -> None:
        """Validate reward amounts."""
        if self.point < 0 or self.ai_point < 0:
            raise ValueError(f"Rewards cannot be negative: {self.point}/{self.ai_point}")


@dataclass(frozen=True)
class MembershipRewards(ProductReward):
    """Reward grant plus the membership window of a subscription product."""

    product_id: str = ""
    period_days: int = 30
    renewal_period_days: int = 30

    def __post_init__(self) -> None:
        """Validate membership window."""
        super().__post_init__()
        if not self.product_id:
            raise ValueError("Product ID required")
        if self.period_days <= 0:
            raise ValueError(f"Period must be positive: {self.period_days}")
        if self.renewal_period_days <= 0:
            raise ValueError(f"Renewal period must be positive: {self.renewal_period_days}")


@dataclass(frozen=True)
class ProductSnapshot:
    """Copy of a product taken when a purchase is recorded.

    Later catalog edits never change rewards already issued for a purchase.
    """

    product_id: str
    type: ProductType
    display_name: str
    platform: Platform | None
    point: int
    ai_point: int

    def to_document(self) -> dict[str, Any]:
        """Serialize for the purchases.product JSONB column."""
        return {
            "product_id": self.product_id,
            "type": int(self.type),
            "display_name": self.display_name,
            "platform": self.platform.value if self.platform else None,
            "point": self.point,
            "ai_point": self.ai_point,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ProductSnapshot":
        """Rebuild from the stored JSONB document."""
        platform = document.get("platform")
        return cls(
            product_id=str(document["product_id"]),
            type=ProductType(int(document.get("type", ProductType.SUBSCRIPTION))),
            display_name=str(document.get("display_name", "")),
            platform=Platform(platform) if platform else None,
            point=int(document.get("point", 0)),
            ai_point=int(document.get("ai_point", 0)),
        )


@dataclass(frozen=True)
class VerifiedPurchase:
    """Platform-neutral view of a purchase confirmed by a store."""

    platform: Platform
    product_id: str
    transaction_id: str
    original_transaction_id: str | None
    purchase_date: datetime | None
    expiration_date: datetime | None
    is_trial: bool
    verified_by: str  # "iap" or "google-api"


@dataclass(frozen=True)
class ReceiptValidationResult:
    """Outcome of verifying one receipt against its store."""

    status: ValidationStatus
    purchase: VerifiedPurchase | None = None
    reason: str | None = None

    @classmethod
    def valid(cls, purchase: VerifiedPurchase) -> "ReceiptValidationResult":
        return cls(status=ValidationStatus.VALID, purchase=purchase)

    @classmethod
    def expired(cls, reason: str | None = None) -> "ReceiptValidationResult":
        return cls(status=ValidationStatus.EXPIRED, reason=reason)

    @classmethod
    def invalid(cls, reason: str) -> "ReceiptValidationResult":
        return cls(status=ValidationStatus.INVALID, reason=reason)


@dataclass(frozen=True)
class MembershipStatus:
    """Read-only summary of a user's membership window."""

    is_active: bool
    left_days: int
    membership_at: datetime | None
    expires_at: datetime | None


@dataclass
class SweepReport:
    """Counters collected during one reconciliation sweep."""

    job: str
    started_at: datetime
    finished_at: datetime | None = None
    examined: int = 0
    skipped: int = 0
    expired: int = 0
    renewed: int = 0
    unchanged: int = 0
    failed: int = 0
    failed_ids: list[str] = field(default_factory=list)
    aborted: bool = False

    def record(self, outcome: ItemOutcome) -> None:
        """Count a successfully processed item."""
        if outcome is ItemOutcome.SKIPPED:
            self.skipped += 1
        elif outcome is ItemOutcome.EXPIRED:
            self.expired += 1
        elif outcome is ItemOutcome.RENEWED:
            self.renewed += 1
        elif outcome is ItemOutcome.UNCHANGED:
            self.unchanged += 1
        else:
            raise ValueError(f"Use record_failure for {outcome.value} items")

    def record_failure(self, item_id: str) -> None:
        """Count a per-item failure."""
        self.failed += 1
        self.failed_ids.append(item_id)

    @property
    def succeeded(self) -> bool:
        """True when the sweep ran to completion without item failures."""
        return not self.aborted and self.failed == 0

    @property
    def duration_seconds(self) -> float:
        """Wall time of the sweep (zero until finished)."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
