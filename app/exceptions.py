"""
Exception Classes - Strongly typed exception hierarchy.

Unknown event types and events without a resolvable user are outcomes,
not exceptions; they never reach this module.
"""


class EntitlementSyncError(Exception):
    """Base exception for all entitlement sync errors."""

    pass


class WebhookVerificationError(EntitlementSyncError):
    """Raised when a webhook signature or bearer token does not authenticate."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"Webhook verification error ({provider}): {message}")


class PayloadError(EntitlementSyncError):
    """Raised when an authenticated webhook body cannot be interpreted."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"Invalid {provider} payload: {message}")


class UpstreamFetchError(EntitlementSyncError):
    """Raised when re-fetching an object from the provider API fails."""

    def __init__(self, provider: str, resource_id: str, message: str) -> None:
        self.provider = provider
        self.resource_id = resource_id
        self.message = message
        super().__init__(f"Failed to fetch {resource_id} from {provider}: {message}")


class StoreError(EntitlementSyncError):
    """Raised when an entitlement store write fails."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Store error during {operation}: {message}")
