"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class ReconciliationError(Exception):
    """Base exception for all entitlement reconciliation errors."""

    pass


class PaymentProviderError(ReconciliationError):
    """Raised when a payment platform call fails (transport, auth, HTTP status)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class ReceiptValidationError(ReconciliationError):
    """Raised when a platform response cannot be interpreted."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Receipt validation error: {message}")


class CatalogError(ReconciliationError):
    """Raised when a referenced product is missing or unusable for membership."""

    def __init__(self, product_id: str | None, reason: str) -> None:
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Catalog error for product {product_id}: {reason}")


class StoreError(ReconciliationError):
    """Raised when a write to the entitlement store fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Entitlement store error: {message}")


class UserNotFoundError(ReconciliationError):
    """Raised when a user doesn't exist."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class SubscriptionAlreadyActiveError(ReconciliationError):
    """Raised when granting a membership to a user who already holds one."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} already has an active membership")


class AuthenticationError(ReconciliationError):
    """Raised when the admin API key is missing or wrong."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
