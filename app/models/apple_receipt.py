"""
Apple receipt domain models - Immutable dataclasses for receipt verification.

NO DICTIONARIES - All data uses strongly typed models.

The App Store verifyReceipt endpoint answers with a `latest_receipt_info` list;
every entry is one transaction (initial purchase or renewal). Timestamps are
epoch milliseconds sent as strings.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

# verifyReceipt status codes we act on
APPLE_STATUS_OK = 0
APPLE_STATUS_SANDBOX_RECEIPT = 21007


def _ms(value: Any) -> int | None:
    """Parse an optional epoch-millisecond value."""
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class AppleReceiptInfo:
    """One entry of `latest_receipt_info`."""

    product_id: str
    transaction_id: str
    original_transaction_id: str | None
    purchase_date_ms: int | None
    expires_date_ms: int | None = None
    cancellation_date_ms: int | None = None
    cancellation_date: str | None = None
    grace_period_expires_date_ms: int | None = None
    is_trial_period: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "AppleReceiptInfo":
        """Parse a raw receipt-info record."""
        return cls(
            product_id=str(data["product_id"]),
            transaction_id=str(data.get("transaction_id", "")),
            original_transaction_id=data.get("original_transaction_id"),
            purchase_date_ms=_ms(data.get("purchase_date_ms")),
            expires_date_ms=_ms(data.get("expires_date_ms")),
            cancellation_date_ms=_ms(data.get("cancellation_date_ms")),
            cancellation_date=data.get("cancellation_date") or None,
            grace_period_expires_date_ms=_ms(data.get("grace_period_expires_date_ms")),
            is_trial_period=str(data.get("is_trial_period", "false")).lower() == "true",
        )

    @property
    def sort_time_ms(self) -> int:
        """Ordering key: expiration time, falling back to purchase time."""
        if self.expires_date_ms is not None:
            return self.expires_date_ms
        return self.purchase_date_ms or 0

    def is_cancelled(self) -> bool:
        """Check if the transaction was refunded or cancelled by Apple support."""
        return bool(self.cancellation_date_ms) or bool(self.cancellation_date)

    def is_expired_at(self, now_ms: int) -> bool:
        """Check expiration, honouring a grace period that is still running."""
        if not self.expires_date_ms or self.expires_date_ms >= now_ms:
            return False
        grace = self.grace_period_expires_date_ms
        return grace is None or grace < now_ms

    @staticmethod
    def to_datetime(ms: int | None) -> datetime | None:
        if ms is None:
            return None
        return datetime.fromtimestamp(ms / 1000, tz=UTC)


@dataclass(frozen=True)
class AppleReceiptConfig:
    """Configuration for the App Store verifyReceipt endpoint."""

    shared_secret: str  # App-specific shared secret from App Store Connect
    environment: str  # "production" or "sandbox"
    exclude_old_transactions: bool = True

    PRODUCTION_URL = "https://buy.itunes.apple.com/verifyReceipt"
    SANDBOX_URL = "https://sandbox.itunes.apple.com/verifyReceipt"

    @property
    def verify_url(self) -> str:
        """Get the verifyReceipt URL for the configured environment."""
        if self.environment.lower() == "sandbox":
            return self.SANDBOX_URL
        return self.PRODUCTION_URL

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.shared_secret:
            raise ValueError("Apple shared secret is required")
        if self.environment.lower() not in ("production", "sandbox"):
            raise ValueError("Environment must be 'production' or 'sandbox'")
