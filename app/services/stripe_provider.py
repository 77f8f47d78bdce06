"""
Stripe Provider - webhook verification and subscription re-fetch.
"""

import json
from typing import Any

import stripe
from structlog import get_logger

from app.exceptions import PayloadError, UpstreamFetchError, WebhookVerificationError
from app.models.domain import StripeEvent
from app.observability.metrics import metrics
from app.services.signatures import verify_stripe_signature

logger = get_logger(__name__)


class StripeProvider:
    """
    Thin wrapper over the Stripe SDK.

    The API key is passed per call so that no global SDK state is mutated.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            tolerance: Maximum accepted signature age in seconds
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    async def verify_webhook(self, payload: bytes, signature: str | None) -> StripeEvent:
        """
        Verify and parse a Stripe webhook event.

        The signature is checked against the raw bytes before they are parsed.

        Raises:
            WebhookVerificationError: If signature verification fails
            PayloadError: If the verified body is not a Stripe event
        """
        logger.info("verifying_stripe_webhook", signature_present=bool(signature))

        if not verify_stripe_signature(payload, signature, self.webhook_secret, self.tolerance):
            raise WebhookVerificationError("stripe", "Invalid Stripe webhook signature")

        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise PayloadError("stripe", f"body is not valid JSON: {exc}") from exc

        event = StripeEvent.from_payload(data)
        logger.info(
            "stripe_webhook_verified",
            event_id=event.event_id,
            event_type=event.event_type,
        )
        return event

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """
        Fetch the live subscription rather than trusting the event snapshot.

        Raises:
            UpstreamFetchError: If the Stripe API call fails
        """
        try:
            logger.info("fetching_stripe_subscription", subscription_id=subscription_id)

            subscription = await stripe.Subscription.retrieve_async(
                subscription_id, api_key=self.api_key
            )
            # StripeObject is not a dict; normalizers work on plain nested dicts
            data = subscription.to_dict()

            logger.info(
                "stripe_subscription_fetched",
                subscription_id=subscription_id,
                status=data.get("status"),
            )
            metrics.record_upstream_fetch("stripe", success=True)

            return data

        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_fetch_failed",
                subscription_id=subscription_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            metrics.record_upstream_fetch("stripe", success=False)
            raise UpstreamFetchError("stripe", subscription_id, str(exc)) from exc
