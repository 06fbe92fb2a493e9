"""
API Routes - Operator endpoints for subscriptions and reconciliation.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import get_reconciliation_jobs, require_admin_key
from app.config import settings
from app.db.models import utc_now
from app.db.session import get_write_db
from app.exceptions import (
    CatalogError,
    StoreError,
    SubscriptionAlreadyActiveError,
    UserNotFoundError,
)
from app.jobs.base import ReconciliationJob
from app.models.api import (
    GrantSubscriptionRequest,
    GrantSubscriptionResponse,
    HealthResponse,
    JobName,
    MembershipStatusResponse,
    SubscriptionProductItem,
    SubscriptionProductListResponse,
    SweepReportResponse,
)
from app.models.domain import Platform
from app.services.entitlement_store import EntitlementStore
from app.services.product_catalog import ProductCatalogService
from app.services.subscription_manager import SubscriptionManager, get_membership_status

logger = get_logger(__name__)

router = APIRouter()
admin_router = APIRouter(prefix="/v1/admin", dependencies=[Depends(require_admin_key)])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_write_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    scheduler_state = "running" if scheduler is not None and scheduler.running else "disabled"

    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
            scheduler=scheduler_state,
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc


@admin_router.get("/products", response_model=SubscriptionProductListResponse)
async def list_subscription_products(
    platform: Platform = Query(..., description="Store platform"),
    db: AsyncSession = Depends(get_write_db),
) -> SubscriptionProductListResponse:
    """List subscription products sold on a platform."""
    products = await ProductCatalogService(db).list_subscription_products(platform)

    return SubscriptionProductListResponse(
        platform=platform,
        products=[
            SubscriptionProductItem(
                product_id=product.product_id,
                display_name=product.display_name,
                platform=platform,
                point=product.point,
                ai_point=product.ai_point,
                period_days=product.period_days,
                renewal_period_days=product.renewal_period_days,
            )
            for product in products
        ],
    )


@admin_router.post(
    "/subscriptions",
    response_model=GrantSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_subscription(
    request: GrantSubscriptionRequest,
    db: AsyncSession = Depends(get_write_db),
) -> GrantSubscriptionResponse:
    """
    Grant a membership without store validation.

    The created purchase is flagged as admin-granted and is never sent to a
    store by the IAP sweep.
    """
    store = EntitlementStore(db)
    catalog = ProductCatalogService(db)

    try:
        user = await store.get_user(request.user_id)
        if user is None:
            raise UserNotFoundError(request.user_id)

        product = await catalog.get_product(request.product_id)
        if product is None:
            raise CatalogError(request.product_id, "product does not exist")

        purchase = await SubscriptionManager(db).create_subscription_without_validation(
            user,
            product,
            txn_ref=request.transaction_id,
            receipt=request.receipt,
        )

    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    except CatalogError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Subscription product unavailable: {exc.reason}",
        ) from exc

    except SubscriptionAlreadyActiveError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already has an active membership",
        ) from exc

    except StoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database write failed",
        ) from exc

    return GrantSubscriptionResponse(
        purchase_id=purchase.id,
        user_id=user.id,
        product_id=product.product_id,
        transaction_id=purchase.transaction_id,
        point=user.point,
        ai_point=user.ai_point,
        membership_at=user.membership_at.isoformat(),
        membership_expires_at=user.membership_expires_at.isoformat(),
    )


@admin_router.get("/users/{user_id}/subscription", response_model=MembershipStatusResponse)
async def get_subscription_status(
    user_id: UUID,
    db: AsyncSession = Depends(get_write_db),
) -> MembershipStatusResponse:
    """Membership status of a user, counted in whole days in the reconciliation zone."""
    user = await EntitlementStore(db).get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    membership = get_membership_status(user, utc_now(), settings.timezone)
    return MembershipStatusResponse.from_status(
        user.id,
        membership,
        user.current_membership_product_id,
        user.point,
        user.ai_point,
    )


@admin_router.post("/reconciliation/{job}", response_model=SweepReportResponse)
async def run_reconciliation(
    job: JobName,
    jobs: dict[str, ReconciliationJob] = Depends(get_reconciliation_jobs),
) -> SweepReportResponse:
    """
    Run one sweep now and return its report.

    The sweep runs in its own session, exactly as the daily schedule runs it.
    """
    logger.info("reconciliation_triggered", job=job.value)
    report = await jobs[job.value].run()
    return SweepReportResponse.from_report(report)
