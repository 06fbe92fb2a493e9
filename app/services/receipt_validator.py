"""
Receipt Validator Service - Normalizes store answers into valid / expired / invalid.

One verifier per platform implements the same `verify` contract; the service
picks the verifier from the product platform (or, for snapshots without one,
from the receipt shape) and turns every failure into an `invalid` result.
Nothing here writes.
"""

import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from structlog import get_logger

from app.config import Settings
from app.exceptions import ReceiptValidationError
from app.models.apple_receipt import AppleReceiptConfig, AppleReceiptInfo
from app.models.domain import (
    Platform,
    ProductSnapshot,
    ReceiptValidationResult,
    ValidationStatus,
    VerifiedPurchase,
)
from app.models.google_play import ENTITLED_STATES, TERMINAL_STATES, AndroidReceipt
from app.observability.metrics import metrics
from app.services.apple_receipt_provider import AppleReceiptProvider
from app.services.google_play_subscription_provider import (
    GooglePlaySubscriptionProvider,
    build_android_publisher,
)

logger = get_logger(__name__)

_ENTITLED_STATE_VALUES = frozenset(state.value for state in ENTITLED_STATES)
_TERMINAL_STATE_VALUES = frozenset(state.value for state in TERMINAL_STATES)


class PlatformReceiptVerifier(Protocol):
    """Verification strategy for one store platform."""

    platform: Platform

    async def verify(
        self, receipt: Any, product: ProductSnapshot, now: datetime
    ) -> ReceiptValidationResult:
        """
        Check a receipt against the store.

        Raises:
            PaymentProviderError: If the store cannot be reached
            ReceiptValidationError: If the receipt or answer is unusable
        """
        ...


class AppleReceiptVerifier:
    """iOS strategy over the verifyReceipt endpoint."""

    platform = Platform.IOS

    def __init__(self, provider: AppleReceiptProvider) -> None:
        self.provider = provider

    @staticmethod
    def select_entry(entries: list[AppleReceiptInfo], product_id: str) -> AppleReceiptInfo | None:
        """Latest entry for the product, by expiration time then purchase time."""
        candidates = [entry for entry in entries if entry.product_id == product_id]
        if not candidates:
            return None
        return max(candidates, key=lambda entry: entry.sort_time_ms)

    async def verify(
        self, receipt: Any, product: ProductSnapshot, now: datetime
    ) -> ReceiptValidationResult:
        if not isinstance(receipt, str) or not receipt:
            raise ReceiptValidationError("iOS receipt must be a non-empty string")

        entries = await self.provider.get_latest_receipt_info(receipt)
        target = self.select_entry(entries, product.product_id)

        if target is None:
            return ReceiptValidationResult.expired("no active subscription found for product")

        if target.is_cancelled():
            return ReceiptValidationResult.expired("transaction cancelled")

        now_ms = int(now.timestamp() * 1000)
        if target.is_expired_at(now_ms):
            return ReceiptValidationResult.expired("subscription expired")

        return ReceiptValidationResult.valid(
            VerifiedPurchase(
                platform=Platform.IOS,
                product_id=target.product_id,
                transaction_id=target.transaction_id,
                original_transaction_id=target.original_transaction_id,
                purchase_date=AppleReceiptInfo.to_datetime(target.purchase_date_ms),
                expiration_date=AppleReceiptInfo.to_datetime(target.expires_date_ms),
                is_trial=target.is_trial_period,
                verified_by="iap",
            )
        )


class GooglePlaySubscriptionVerifier:
    """Android strategy over purchases.subscriptionsv2."""

    platform = Platform.ANDROID

    def __init__(self, provider: GooglePlaySubscriptionProvider, default_package_name: str = "") -> None:
        self.provider = provider
        self.default_package_name = default_package_name

    async def verify(
        self, receipt: Any, product: ProductSnapshot, now: datetime
    ) -> ReceiptValidationResult:
        if not isinstance(receipt, Mapping):
            raise ReceiptValidationError("Android receipt must be a purchase object")

        try:
            android_receipt = AndroidReceipt.from_payload(dict(receipt), self.default_package_name)
        except (KeyError, TypeError, ValueError) as exc:
            raise ReceiptValidationError(f"Invalid Android receipt: {exc}") from exc

        subscription = await self.provider.get_subscription(android_receipt)

        item = subscription.first_line_item
        if item is None:
            return ReceiptValidationResult.expired("subscription has no line items")

        if item.expiry_time is not None and now >= item.expiry_time:
            return ReceiptValidationResult.expired("subscription expired")

        if subscription.state in _TERMINAL_STATE_VALUES:
            return ReceiptValidationResult.expired(f"subscription state {subscription.state}")

        if subscription.revoked:
            return ReceiptValidationResult.expired("subscription revoked")

        if subscription.state not in _ENTITLED_STATE_VALUES:
            logger.warning("google_play_unknown_subscription_state", state=subscription.state)

        return ReceiptValidationResult.valid(
            VerifiedPurchase(
                platform=Platform.ANDROID,
                product_id=item.product_id or product.product_id,
                transaction_id=subscription.latest_order_id or "",
                original_transaction_id=None,
                purchase_date=subscription.start_time,
                expiration_date=item.expiry_time,
                is_trial=False,
                verified_by="google-api",
            )
        )


class ReceiptValidatorService:
    """
    Dispatches receipts to platform verifiers.

    `verify` never raises: any verifier failure becomes an `invalid` result,
    which callers treat as "could not determine, do not act".
    """

    def __init__(self, verifiers: Mapping[Platform, PlatformReceiptVerifier]) -> None:
        """Initialize with one verifier per supported platform."""
        self.verifiers = dict(verifiers)

    @staticmethod
    def resolve_platform(receipt: Any, product: ProductSnapshot) -> Platform | None:
        """Platform of the product, else inferred from the receipt shape."""
        if product.platform is not None:
            return product.platform
        if isinstance(receipt, str):
            return Platform.IOS
        if isinstance(receipt, Mapping):
            return Platform.ANDROID
        return None

    async def verify(
        self,
        receipt: Any,
        product: ProductSnapshot,
        now: datetime | None = None,
    ) -> ReceiptValidationResult:
        """
        Verify a stored receipt for the product it claims to be for.

        Args:
            receipt: Opaque receipt (string for iOS, purchase object for Android)
            product: Product snapshot recorded with the purchase
            now: Reference time (defaults to the current UTC time)

        Returns:
            valid / expired / invalid result
        """
        now = now or datetime.now(UTC)
        platform = self.resolve_platform(receipt, product)
        if platform is None:
            return ReceiptValidationResult.invalid("cannot determine receipt platform")

        verifier = self.verifiers.get(platform)
        if verifier is None:
            return ReceiptValidationResult.invalid(f"no verifier configured for {platform.value}")

        start_time = time.monotonic()
        try:
            result = await verifier.verify(receipt, product, now)
        except Exception as exc:
            logger.error(
                "receipt_validation_failed",
                platform=platform.value,
                product_id=product.product_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            result = ReceiptValidationResult.invalid(str(exc))

        metrics.record_validation(platform.value, result.status.value, time.monotonic() - start_time)

        if result.status is not ValidationStatus.INVALID:
            logger.info(
                "receipt_validated",
                platform=platform.value,
                product_id=product.product_id,
                status=result.status.value,
                reason=result.reason,
            )
        return result


def build_receipt_validator(settings: Settings) -> ReceiptValidatorService:
    """
    Build the validator from settings, wiring only the platforms that are configured.

    A platform without credentials yields `invalid` results for its receipts.
    """
    verifiers: dict[Platform, PlatformReceiptVerifier] = {}

    if settings.apple_shared_secret:
        apple_config = AppleReceiptConfig(
            shared_secret=settings.apple_shared_secret,
            environment=settings.apple_environment,
            exclude_old_transactions=settings.apple_exclude_old_transactions,
        )
        verifiers[Platform.IOS] = AppleReceiptVerifier(
            AppleReceiptProvider(
                apple_config,
                timeout=settings.provider_timeout_seconds,
                max_attempts=settings.provider_max_attempts,
            )
        )
    else:
        logger.warning("apple_receipt_verifier_not_configured")

    if settings.google_service_account_json:
        verifiers[Platform.ANDROID] = GooglePlaySubscriptionVerifier(
            GooglePlaySubscriptionProvider(
                build_android_publisher(
                    settings.google_service_account_json,
                    timeout=settings.provider_timeout_seconds,
                ),
                timeout=settings.provider_timeout_seconds,
                max_attempts=settings.provider_max_attempts,
            ),
            default_package_name=settings.android_package_name,
        )
    else:
        logger.warning("google_play_verifier_not_configured")

    return ReceiptValidatorService(verifiers)
