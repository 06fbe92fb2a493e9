"""
Google Play domain models - Immutable dataclasses for subscription verification.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class GooglePlaySubscriptionState(str, Enum):
    """`subscriptionState` values of purchases.subscriptionsv2."""

    UNSPECIFIED = "SUBSCRIPTION_STATE_UNSPECIFIED"
    PENDING = "SUBSCRIPTION_STATE_PENDING"
    ACTIVE = "SUBSCRIPTION_STATE_ACTIVE"
    PAUSED = "SUBSCRIPTION_STATE_PAUSED"
    IN_GRACE_PERIOD = "SUBSCRIPTION_STATE_IN_GRACE_PERIOD"
    ON_HOLD = "SUBSCRIPTION_STATE_ON_HOLD"
    CANCELED = "SUBSCRIPTION_STATE_CANCELED"
    EXPIRED = "SUBSCRIPTION_STATE_EXPIRED"
    PENDING_PURCHASE_CANCELED = "SUBSCRIPTION_STATE_PENDING_PURCHASE_CANCELED"


# States that still entitle the user (grace period included)
ENTITLED_STATES = frozenset(
    {GooglePlaySubscriptionState.ACTIVE, GooglePlaySubscriptionState.IN_GRACE_PERIOD}
)

# States that end the entitlement
TERMINAL_STATES = frozenset(
    {
        GooglePlaySubscriptionState.ON_HOLD,
        GooglePlaySubscriptionState.PAUSED,
        GooglePlaySubscriptionState.EXPIRED,
        GooglePlaySubscriptionState.PENDING,
        GooglePlaySubscriptionState.PENDING_PURCHASE_CANCELED,
        GooglePlaySubscriptionState.UNSPECIFIED,
        GooglePlaySubscriptionState.CANCELED,
    }
)


def _parse_rfc3339(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class AndroidReceipt:
    """Purchase payload the Android client stores as the receipt."""

    package_name: str
    purchase_token: str
    product_id: str
    order_id: str | None = None
    purchase_time: int | None = None  # epoch ms

    def __post_init__(self) -> None:
        """Validate receipt fields."""
        if not self.purchase_token or len(self.purchase_token) < 10:
            raise ValueError("Invalid purchase token")
        if not self.package_name:
            raise ValueError("Package name required")

    @classmethod
    def from_payload(cls, data: dict[str, Any], default_package: str = "") -> "AndroidReceipt":
        """Parse the receipt document stored with a purchase."""
        return cls(
            package_name=str(data.get("packageName") or default_package),
            purchase_token=str(data.get("purchaseToken", "")),
            product_id=str(data.get("productId", "")),
            order_id=data.get("orderId"),
            purchase_time=int(data["purchaseTime"]) if data.get("purchaseTime") else None,
        )


@dataclass(frozen=True)
class GooglePlayLineItem:
    """One line item of a subscription purchase."""

    product_id: str
    expiry_time: datetime | None


@dataclass(frozen=True)
class GooglePlaySubscription:
    """Parsed purchases.subscriptionsv2 resource."""

    state: str
    line_items: tuple[GooglePlayLineItem, ...]
    latest_order_id: str | None
    start_time: datetime | None
    revoked: bool

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GooglePlaySubscription":
        """Parse the raw API response."""
        items = tuple(
            GooglePlayLineItem(
                product_id=str(item.get("productId", "")),
                expiry_time=_parse_rfc3339(item.get("expiryTime")),
            )
            for item in data.get("lineItems") or []
        )
        canceled_ctx = data.get("canceledStateContext") or {}
        return cls(
            state=str(data.get("subscriptionState", GooglePlaySubscriptionState.UNSPECIFIED.value)),
            line_items=items,
            latest_order_id=data.get("latestOrderId"),
            start_time=_parse_rfc3339(data.get("startTime")),
            revoked=bool(canceled_ctx.get("subscriptionRevoked")),
        )

    @property
    def first_line_item(self) -> GooglePlayLineItem | None:
        return self.line_items[0] if self.line_items else None
