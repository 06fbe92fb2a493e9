"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.domain import MembershipStatus, Platform, SweepReport


class JobName(str, Enum):
    """Reconciliation sweeps that can be triggered on demand."""

    IAP = "iap"
    MEMBERSHIP = "membership"


# ============================================================================
# Admin Subscription Models
# ============================================================================


class GrantSubscriptionRequest(BaseModel):
    """POST /v1/admin/subscriptions request body."""

    user_id: UUID
    product_id: str = Field(..., min_length=1, max_length=255)
    transaction_id: str | None = Field(
        None,
        min_length=1,
        max_length=255,
        description="Reference to record; admin_<epoch-ms> is generated when omitted",
    )
    receipt: str | dict[str, Any] | None = Field(
        None, description="Optional store receipt kept with the purchase for reference"
    )

    @field_validator("product_id")
    @classmethod
    def validate_product_id(cls, v: str) -> str:
        """Reject blank product IDs."""
        if not v.strip():
            raise ValueError("product_id cannot be blank")
        return v.strip()


class GrantSubscriptionResponse(BaseModel):
    """POST /v1/admin/subscriptions response."""

    purchase_id: UUID
    user_id: UUID
    product_id: str
    transaction_id: str
    point: int
    ai_point: int
    membership_at: str  # ISO 8601 timestamp
    membership_expires_at: str  # ISO 8601 timestamp


class MembershipStatusResponse(BaseModel):
    """GET /v1/admin/users/{user_id}/subscription response."""

    user_id: UUID
    is_active: bool
    left_days: int
    membership_at: str | None
    expires_at: str | None
    current_membership_product_id: str | None
    point: int
    ai_point: int

    @classmethod
    def from_status(
        cls,
        user_id: UUID,
        status: MembershipStatus,
        product_id: str | None,
        point: int,
        ai_point: int,
    ) -> "MembershipStatusResponse":
        return cls(
            user_id=user_id,
            is_active=status.is_active,
            left_days=status.left_days,
            membership_at=status.membership_at.isoformat() if status.membership_at else None,
            expires_at=status.expires_at.isoformat() if status.expires_at else None,
            current_membership_product_id=product_id,
            point=point,
            ai_point=ai_point,
        )


# ============================================================================
# Catalog Models
# ============================================================================


class SubscriptionProductItem(BaseModel):
    """Single subscription product in the catalog listing."""

    product_id: str
    display_name: str
    platform: Platform
    point: int
    ai_point: int
    period_days: int | None
    renewal_period_days: int | None


class SubscriptionProductListResponse(BaseModel):
    """GET /v1/admin/products response."""

    platform: Platform
    products: list[SubscriptionProductItem]


# ============================================================================
# Reconciliation Models
# ============================================================================


class SweepReportResponse(BaseModel):
    """POST /v1/admin/reconciliation/{job} response."""

    job: str
    started_at: str
    finished_at: str | None
    succeeded: bool
    aborted: bool
    examined: int
    skipped: int
    expired: int
    renewed: int
    unchanged: int
    failed: int
    failed_ids: list[str]

    @classmethod
    def from_report(cls, report: SweepReport) -> "SweepReportResponse":
        return cls(
            job=report.job,
            started_at=report.started_at.isoformat(),
            finished_at=report.finished_at.isoformat() if report.finished_at else None,
            succeeded=report.succeeded,
            aborted=report.aborted,
            examined=report.examined,
            skipped=report.skipped,
            expired=report.expired,
            renewed=report.renewed,
            unchanged=report.unchanged,
            failed=report.failed,
            failed_ids=list(report.failed_ids),
        )


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
    scheduler: Literal["running", "disabled"]
