"""
Apple Receipt Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.

Calls the App Store verifyReceipt endpoint with the app-specific shared secret.
https://developer.apple.com/documentation/appstorereceipts/verifyreceipt
"""

import httpx
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from app.exceptions import PaymentProviderError, ReceiptValidationError
from app.models.apple_receipt import (
    APPLE_STATUS_OK,
    APPLE_STATUS_SANDBOX_RECEIPT,
    AppleReceiptConfig,
    AppleReceiptInfo,
)

logger = get_logger(__name__)


class AppleReceiptProvider:
    """
    App Store receipt verification client.

    Returns the `latest_receipt_info` entries of a receipt.
    """

    def __init__(
        self,
        config: AppleReceiptConfig,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_wait: wait_base | None = None,
    ) -> None:
        """
        Initialize Apple receipt provider.

        Args:
            config: Shared secret and environment
            http_client: Client to reuse; a short-lived client is opened per call when omitted
            timeout: Per-request timeout in seconds
            max_attempts: Attempts per call on transport errors
            retry_wait: Backoff between attempts
        """
        self.config = config
        self.http_client = http_client
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

        logger.info("apple_receipt_provider_initialized", environment=config.environment)

    async def _post(self, client: httpx.AsyncClient, url: str, receipt: str) -> dict[str, object]:
        """POST one verifyReceipt request, retrying transport failures."""
        body = {
            "receipt-data": receipt,
            "password": self.config.shared_secret,
            "exclude-old-transactions": self.config.exclude_old_transactions,
        }

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                response = await client.post(url, json=body, timeout=self.timeout)

        if response.status_code >= 400:
            logger.error("apple_receipt_api_error", status=response.status_code)
            raise PaymentProviderError(f"verifyReceipt HTTP {response.status_code}")

        result: dict[str, object] = response.json()
        return result

    async def _verify(self, client: httpx.AsyncClient, receipt: str) -> dict[str, object]:
        result = await self._post(client, self.config.verify_url, receipt)

        # Sandbox receipts sent to production are answered with 21007
        if result.get("status") == APPLE_STATUS_SANDBOX_RECEIPT:
            logger.info("apple_receipt_sandbox_retry")
            result = await self._post(client, AppleReceiptConfig.SANDBOX_URL, receipt)

        return result

    async def get_latest_receipt_info(self, receipt: str) -> list[AppleReceiptInfo]:
        """
        Verify a receipt and return its transaction entries.

        Args:
            receipt: Base64 encoded App Store receipt

        Returns:
            Parsed `latest_receipt_info` entries (possibly empty)

        Raises:
            PaymentProviderError: If the request fails
            ReceiptValidationError: If Apple rejects the receipt or the body is malformed
        """
        try:
            if self.http_client is not None:
                result = await self._verify(self.http_client, receipt)
            else:
                async with httpx.AsyncClient() as client:
                    result = await self._verify(client, receipt)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"verifyReceipt request failed: {exc}") from exc
        except ValueError as exc:
            raise ReceiptValidationError(f"verifyReceipt returned invalid JSON: {exc}") from exc

        status = result.get("status")
        if status != APPLE_STATUS_OK:
            raise ReceiptValidationError(f"verifyReceipt status {status}")

        entries = result.get("latest_receipt_info") or []
        if not isinstance(entries, list):
            raise ReceiptValidationError("latest_receipt_info is not a list")

        try:
            return [AppleReceiptInfo.from_payload(entry) for entry in entries]
        except (KeyError, TypeError, ValueError) as exc:
            raise ReceiptValidationError(f"Malformed receipt info: {exc}") from exc
