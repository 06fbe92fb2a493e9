"""
FastAPI Dependencies - Operator authentication and shared services.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets

from fastapi import Header, HTTPException, Request, status
from structlog import get_logger

from app.config import settings
from app.exceptions import AuthenticationError
from app.jobs.base import ReconciliationJob

logger = get_logger(__name__)


def verify_admin_key(provided: str | None, expected: str) -> None:
    """
    Check an operator key in constant time.

    Raises:
        AuthenticationError: If the key is missing, wrong, or admin access is not configured
    """
    if not expected:
        raise AuthenticationError("admin API key is not configured")
    if not provided:
        raise AuthenticationError("missing X-Admin-Key header")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise AuthenticationError("invalid admin API key")


async def require_admin_key(
    x_admin_key: str | None = Header(None, description="Operator API key"),
) -> None:
    """
    FastAPI dependency guarding /v1/admin routes.

    Usage:
        @router.post("/v1/admin/subscriptions", dependencies=[Depends(require_admin_key)])

    Raises:
        HTTPException 401 if the key is missing or invalid
    """
    try:
        verify_admin_key(x_admin_key, settings.admin_api_key)
    except AuthenticationError as exc:
        logger.warning("admin_auth_failed", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


async def get_reconciliation_jobs(request: Request) -> dict[str, ReconciliationJob]:
    """Jobs built at startup (see app.main lifespan)."""
    jobs: dict[str, ReconciliationJob] = request.app.state.jobs
    return jobs
