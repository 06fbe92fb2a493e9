"""
Tests for the Google Play subscriptionsv2 client.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from google.oauth2 import service_account
from googleapiclient.errors import HttpError
from tenacity import wait_none

from app.exceptions import PaymentProviderError
from app.models.google_play import AndroidReceipt, GooglePlaySubscription
from app.services.google_play_subscription_provider import (
    ANDROID_PUBLISHER_SCOPE,
    GooglePlaySubscriptionProvider,
    build_android_publisher,
)

SUBSCRIPTION_RESOURCE = {
    "kind": "androidpublisher#subscriptionPurchaseV2",
    "startTime": "2023-01-02T03:00:00.123Z",
    "subscriptionState": "SUBSCRIPTION_STATE_ACTIVE",
    "latestOrderId": "GPA.1234-5678-9012-34567",
    "lineItems": [
        {"productId": "membership_monthly", "expiryTime": "2023-02-02T03:00:00.123Z"},
    ],
}


def make_service(result=None, error: Exception | None = None) -> MagicMock:
    """Android Publisher client double: purchases().subscriptionsv2().get().execute()."""
    service = MagicMock()
    request = service.purchases.return_value.subscriptionsv2.return_value.get.return_value
    if error is not None:
        request.execute.side_effect = error
    else:
        request.execute.return_value = result
    return service


def http_error(status: int, content: bytes = b'{"error": {"message": "gone"}}') -> HttpError:
    resp = MagicMock()
    resp.status = status
    resp.reason = "error"
    return HttpError(resp, content)


@pytest.fixture
def receipt() -> AndroidReceipt:
    return AndroidReceipt(
        package_name="com.example.shopping",
        purchase_token="opaque-purchase-token-123",
        product_id="membership_monthly",
    )


def build_provider(service: MagicMock) -> GooglePlaySubscriptionProvider:
    return GooglePlaySubscriptionProvider(service, timeout=5.0, max_attempts=2, retry_wait=wait_none())


class TestGooglePlaySubscriptionModels:
    """Parsing of receipts and subscription resources."""

    def test_receipt_from_payload(self):
        receipt = AndroidReceipt.from_payload(
            {
                "packageName": "com.example.shopping",
                "productId": "membership_monthly",
                "purchaseToken": "opaque-purchase-token-123",
                "purchaseTime": 1672628400000,
            }
        )

        assert receipt.package_name == "com.example.shopping"
        assert receipt.purchase_time == 1672628400000

    @pytest.mark.parametrize("token", ["", "short"])
    def test_receipt_rejects_bad_token(self, token):
        with pytest.raises(ValueError, match="purchase token"):
            AndroidReceipt(package_name="com.example.shopping", purchase_token=token, product_id="p")

    def test_receipt_requires_package(self):
        with pytest.raises(ValueError, match="Package name"):
            AndroidReceipt.from_payload({"purchaseToken": "opaque-purchase-token-123"})

    def test_subscription_from_payload(self):
        subscription = GooglePlaySubscription.from_payload(SUBSCRIPTION_RESOURCE)

        assert subscription.state == "SUBSCRIPTION_STATE_ACTIVE"
        assert subscription.first_line_item.expiry_time == datetime(2023, 2, 2, 3, 0, 0, 123000, tzinfo=UTC)
        assert subscription.start_time.tzinfo is not None
        assert subscription.revoked is False

    def test_revocation_is_read_from_canceled_context(self):
        payload = dict(
            SUBSCRIPTION_RESOURCE,
            subscriptionState="SUBSCRIPTION_STATE_CANCELED",
            canceledStateContext={"subscriptionRevoked": True},
        )

        assert GooglePlaySubscription.from_payload(payload).revoked is True

    def test_missing_state_defaults_to_unspecified(self):
        subscription = GooglePlaySubscription.from_payload({"lineItems": []})

        assert subscription.state == "SUBSCRIPTION_STATE_UNSPECIFIED"
        assert subscription.first_line_item is None


class TestGetSubscription:
    """purchases.subscriptionsv2.get calls."""

    async def test_fetches_subscription(self, receipt):
        service = make_service(SUBSCRIPTION_RESOURCE)

        subscription = await build_provider(service).get_subscription(receipt)

        assert subscription.latest_order_id == "GPA.1234-5678-9012-34567"
        service.purchases.return_value.subscriptionsv2.return_value.get.assert_called_with(
            packageName="com.example.shopping",
            token="opaque-purchase-token-123",
        )

    @pytest.mark.parametrize(
        "status,message",
        [(404, "not found"), (410, "no longer available"), (500, "Google Play API error")],
    )
    async def test_http_errors_raise_provider_error(self, receipt, status, message):
        service = make_service(error=http_error(status))

        with pytest.raises(PaymentProviderError, match=message):
            await build_provider(service).get_subscription(receipt)

    async def test_connection_errors_are_retried(self, receipt):
        service = make_service()
        request = service.purchases.return_value.subscriptionsv2.return_value.get.return_value
        request.execute.side_effect = [ConnectionError("reset"), SUBSCRIPTION_RESOURCE]

        subscription = await build_provider(service).get_subscription(receipt)

        assert subscription.state == "SUBSCRIPTION_STATE_ACTIVE"
        assert request.execute.call_count == 2

    async def test_persistent_connection_error_raises_provider_error(self, receipt):
        service = make_service(error=ConnectionError("reset"))

        with pytest.raises(PaymentProviderError, match="unreachable"):
            await build_provider(service).get_subscription(receipt)

        request = service.purchases.return_value.subscriptionsv2.return_value.get.return_value
        assert request.execute.call_count == 2


class TestBuildAndroidPublisher:
    """Client construction from service account keys."""

    def test_transport_has_socket_timeout(self):
        credentials = MagicMock()

        with (
            patch.object(
                service_account.Credentials,
                "from_service_account_info",
                return_value=credentials,
            ) as from_info,
            patch("app.services.google_play_subscription_provider.build") as mock_build,
        ):
            build_android_publisher('{"client_email": "reconciler@example.iam.gserviceaccount.com"}', timeout=5.0)

        from_info.assert_called_once_with(
            {"client_email": "reconciler@example.iam.gserviceaccount.com"},
            scopes=[ANDROID_PUBLISHER_SCOPE],
        )
        http = mock_build.call_args.kwargs["http"]
        assert http.credentials is credentials
        assert http.http.timeout == 5.0
        assert "credentials" not in mock_build.call_args.kwargs

    def test_key_file_path_is_loaded_from_disk(self):
        with (
            patch.object(
                service_account.Credentials,
                "from_service_account_file",
                return_value=MagicMock(),
            ) as from_file,
            patch("app.services.google_play_subscription_provider.build"),
        ):
            build_android_publisher("/etc/reconciler/service-account.json")

        assert from_file.call_args.args[0] == "/etc/reconciler/service-account.json"
