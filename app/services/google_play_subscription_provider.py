"""
Google Play Subscription Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.

Reads subscription state from purchases.subscriptionsv2 of the Android
Publisher API using a service account.
"""

import asyncio
import json
from typing import Any

import httplib2
from google.oauth2 import service_account
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from app.exceptions import PaymentProviderError, ReceiptValidationError
from app.models.google_play import AndroidReceipt, GooglePlaySubscription

logger = get_logger(__name__)

ANDROID_PUBLISHER_SCOPE = "https://www.googleapis.com/auth/androidpublisher"


def build_android_publisher(service_account_json: str | dict[str, str], timeout: float = 30.0) -> Any:
    """
    Build an Android Publisher API client from service account credentials.

    The HTTP transport has a socket timeout, so a blocking execute() ends
    on its own after the caller stops waiting.

    Args:
        service_account_json: Path to a key file, raw JSON text, or parsed key
        timeout: Socket timeout in seconds
    """
    if isinstance(service_account_json, str) and service_account_json.lstrip().startswith("{"):
        service_account_json = json.loads(service_account_json)

    if isinstance(service_account_json, str):
        credentials = service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
            service_account_json,
            scopes=[ANDROID_PUBLISHER_SCOPE],
        )
    else:
        credentials = service_account.Credentials.from_service_account_info(  # type: ignore[no-untyped-call]
            service_account_json,
            scopes=[ANDROID_PUBLISHER_SCOPE],
        )

    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("androidpublisher", "v3", http=http, cache_discovery=False)


class GooglePlaySubscriptionProvider:
    """
    Google Play subscription status client.

    The googleapiclient is blocking; calls run in a worker thread with a
    bounded wait.
    """

    def __init__(
        self,
        service: Any,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        """
        Initialize Google Play provider.

        Args:
            service: Android Publisher API client (see build_android_publisher)
            timeout: Per-call timeout in seconds
            max_attempts: Attempts per call on timeouts and connection errors
            retry_wait: Backoff between attempts
        """
        self.service = service
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

        logger.info("google_play_subscription_provider_initialized")

    def _execute_get(self, receipt: AndroidReceipt) -> dict[str, Any]:
        result: dict[str, Any] = (
            self.service.purchases()
            .subscriptionsv2()
            .get(packageName=receipt.package_name, token=receipt.purchase_token)
            .execute()
        )
        return result

    async def get_subscription(self, receipt: AndroidReceipt) -> GooglePlaySubscription:
        """
        Fetch the current state of a subscription purchase.

        Args:
            receipt: Android purchase with package name and token

        Returns:
            Parsed subscription resource

        Raises:
            PaymentProviderError: If the API call fails or times out
            ReceiptValidationError: If the response cannot be parsed
        """
        logger.info("getting_google_play_subscription", product_id=receipt.product_id)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type((asyncio.TimeoutError, ConnectionError)),
                reraise=True,
            ):
                with attempt:
                    result = await asyncio.wait_for(
                        asyncio.to_thread(self._execute_get, receipt),
                        timeout=self.timeout,
                    )

        except HttpError as exc:
            error_content = exc.content.decode("utf-8") if exc.content else str(exc)
            logger.error(
                "google_play_subscription_lookup_failed",
                status=exc.resp.status,
                error=error_content,
            )

            if exc.resp.status == 404:
                raise PaymentProviderError("Subscription not found or invalid token") from exc
            elif exc.resp.status == 410:
                raise PaymentProviderError("Purchase token no longer available") from exc
            else:
                raise PaymentProviderError(f"Google Play API error: {error_content}") from exc

        except (asyncio.TimeoutError, ConnectionError) as exc:
            raise PaymentProviderError(f"Google Play API unreachable: {exc!r}") from exc

        try:
            return GooglePlaySubscription.from_payload(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise ReceiptValidationError(f"Malformed subscription resource: {exc}") from exc
