"""
Webhook Dispatcher - per-provider entry points.

Each request runs: verify -> parse -> classify -> normalize -> store write,
and always ends in a fixed-shape WebhookResult:

    rejected      400/401  signature or token did not authenticate
    bad_payload   400      authenticated body could not be interpreted
    ignored       200      event type not handled
    no_op         200      handled type, nothing to write (e.g. no user id)
    applied       200      store write committed
    error         500      provider re-fetch or store write failed
    not_configured 503     handler disabled at startup

Nothing is written unless the request authenticated first.
"""

import json
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from structlog import get_logger

from app.config import WebhookConfig
from app.exceptions import PayloadError, WebhookVerificationError
from app.models.domain import (
    EntitlementUpdate,
    PaystackEvent,
    Platform,
    RevenueCatEvent,
    WebhookOutcome,
    WebhookResult,
)
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.observability.tracing import get_tracer, record_webhook_result, webhook_span
from app.services import paystack_events, revenuecat_events, stripe_events
from app.services.entitlement_store import EntitlementStore, apply_entitlement_update
from app.services.signatures import (
    verify_paystack_signature,
    verify_revenuecat_authorization,
)
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)
tracer = get_tracer(__name__)

OK_BODY = "ok"
IGNORED_BODY = "ignored"
INVALID_SIGNATURE_BODY = "Invalid signature"
BAD_PAYLOAD_BODY = "bad payload"
INTERNAL_ERROR_BODY = "internal error"
NOT_CONFIGURED_BODY = "Provider not configured"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _parse_json(provider: Platform, body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise PayloadError(provider.value, f"body is not valid JSON: {exc}") from exc


class WebhookDispatcher:
    """Wires verifier -> normalizer -> store adapter for each provider."""

    def __init__(
        self,
        config: WebhookConfig,
        store: EntitlementStore,
        stripe_provider: StripeProvider | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            config: Secrets and enabled handlers, validated at startup
            store: Entitlement store adapter
            stripe_provider: Stripe client (built from config when omitted)
            clock: Source of ``updated_at`` for subscription state writes
        """
        self.config = config
        self.store = store
        self.stripe_provider = stripe_provider or StripeProvider(
            api_key=config.stripe_api_key,
            webhook_secret=config.stripe_webhook_secret,
            tolerance=config.stripe_signature_tolerance,
        )
        self.clock = clock

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _finish(
        provider: Platform,
        outcome: WebhookOutcome,
        status_code: int,
        body: str | dict[str, Any],
        event_type: str | None = None,
        user_id: str | None = None,
    ) -> WebhookResult:
        metrics.record_webhook(provider.value, outcome.value)
        logger.info(
            "webhook_finished",
            provider=provider.value,
            outcome=outcome.value,
            status_code=status_code,
            event_type=event_type,
            user_id=user_id,
        )
        return WebhookResult(
            provider=provider,
            outcome=outcome,
            status_code=status_code,
            body=body,
            event_type=event_type,
            user_id=user_id,
        )

    def _rejected(self, provider: Platform, status_code: int, body: str) -> WebhookResult:
        logger.warning("webhook_signature_rejected", provider=provider.value)
        return self._finish(provider, WebhookOutcome.REJECTED, status_code, body)

    def _bad_payload(
        self, provider: Platform, exc: PayloadError, event_type: str | None = None
    ) -> WebhookResult:
        logger.warning(
            "webhook_payload_invalid",
            provider=provider.value,
            event_type=event_type,
            error=exc.message,
        )
        return self._finish(
            provider, WebhookOutcome.BAD_PAYLOAD, 400, BAD_PAYLOAD_BODY, event_type=event_type
        )

    def _failed(
        self,
        provider: Platform,
        exc: Exception,
        body: str | dict[str, Any],
        event_type: str | None,
        user_id: str | None = None,
    ) -> WebhookResult:
        logger.error(
            "webhook_processing_failed",
            provider=provider.value,
            event_type=event_type,
            user_id=user_id,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        metrics.record_error(type(exc).__name__, f"{provider.value}_webhook")
        return self._finish(
            provider, WebhookOutcome.ERROR, 500, body, event_type=event_type, user_id=user_id
        )

    def _not_configured(self, provider: Platform) -> WebhookResult:
        logger.error("webhook_provider_not_configured", provider=provider.value)
        return self._finish(provider, WebhookOutcome.NOT_CONFIGURED, 503, NOT_CONFIGURED_BODY)

    async def _apply(
        self, provider: Platform, event_type: str, entitlement_update: EntitlementUpdate
    ) -> WebhookResult:
        """Write an entitlement update with the affected user bound to every log line."""
        with log_context(user_id=entitlement_update.user_id):
            try:
                await apply_entitlement_update(self.store, entitlement_update)
            except Exception as exc:
                return self._failed(
                    provider, exc, INTERNAL_ERROR_BODY, event_type, entitlement_update.user_id
                )

            return self._finish(
                provider,
                WebhookOutcome.APPLIED,
                200,
                OK_BODY,
                event_type,
                entitlement_update.user_id,
            )

    async def _traced(
        self, provider: Platform, handler: Callable[[], Awaitable[WebhookResult]]
    ) -> WebhookResult:
        with webhook_span(tracer, provider.value) as span:
            result = await handler()
            record_webhook_result(span, result)
            return result

    # ------------------------------------------------------------------
    # Stripe
    # ------------------------------------------------------------------

    async def handle_stripe(self, body: bytes, signature: str | None) -> WebhookResult:
        """Handle a Stripe delivery (``stripe-signature`` header)."""
        if not self.config.is_enabled(Platform.STRIPE.value):
            return self._not_configured(Platform.STRIPE)
        return await self._traced(Platform.STRIPE, lambda: self._stripe(body, signature))

    async def _stripe(self, body: bytes, signature: str | None) -> WebhookResult:
        provider = Platform.STRIPE
        try:
            event = await self.stripe_provider.verify_webhook(body, signature)
        except WebhookVerificationError:
            return self._rejected(provider, 400, INVALID_SIGNATURE_BODY)
        except PayloadError as exc:
            return self._bad_payload(provider, exc)

        with log_context(provider=provider.value, event_type=event.event_type):
            if event.event_type not in stripe_events.HANDLED_EVENT_TYPES:
                return self._finish(
                    provider, WebhookOutcome.IGNORED, 200, IGNORED_BODY, event.event_type
                )

            try:
                subscription_id = stripe_events.subscription_to_fetch(event)
                subscription = None
                if subscription_id:
                    subscription = await self.stripe_provider.retrieve_subscription(
                        subscription_id
                    )
                entitlement_update = stripe_events.normalize_stripe_event(event, subscription)
            except PayloadError as exc:
                return self._bad_payload(provider, exc, event.event_type)
            except Exception as exc:
                return self._failed(provider, exc, INTERNAL_ERROR_BODY, event.event_type)

            if entitlement_update is None:
                return self._finish(provider, WebhookOutcome.NO_OP, 200, OK_BODY, event.event_type)

            return await self._apply(provider, event.event_type, entitlement_update)

    # ------------------------------------------------------------------
    # Paystack
    # ------------------------------------------------------------------

    async def handle_paystack(self, body: bytes, signature: str | None) -> WebhookResult:
        """Handle a Paystack delivery (``x-paystack-signature`` header)."""
        if not self.config.is_enabled(Platform.PAYSTACK.value):
            return self._not_configured(Platform.PAYSTACK)
        return await self._traced(Platform.PAYSTACK, lambda: self._paystack(body, signature))

    async def _paystack(self, body: bytes, signature: str | None) -> WebhookResult:
        provider = Platform.PAYSTACK
        if not verify_paystack_signature(body, signature, self.config.paystack_secret):
            return self._rejected(provider, 400, INVALID_SIGNATURE_BODY)

        try:
            event = PaystackEvent.from_payload(_parse_json(provider, body))
        except PayloadError as exc:
            return self._bad_payload(provider, exc)

        with log_context(provider=provider.value, event_type=event.event_type):
            logger.info("paystack_event_received")
            if event.event_type not in paystack_events.HANDLED_EVENT_TYPES:
                return self._finish(
                    provider, WebhookOutcome.IGNORED, 200, IGNORED_BODY, event.event_type
                )

            try:
                entitlement_update = paystack_events.normalize_paystack_event(event)
            except PayloadError as exc:
                return self._bad_payload(provider, exc, event.event_type)

            if entitlement_update is None:
                return self._finish(provider, WebhookOutcome.NO_OP, 200, OK_BODY, event.event_type)

            return await self._apply(provider, event.event_type, entitlement_update)

    # ------------------------------------------------------------------
    # RevenueCat
    # ------------------------------------------------------------------

    async def handle_revenuecat(self, body: bytes, authorization: str | None) -> WebhookResult:
        """Handle a RevenueCat delivery (``Authorization: Bearer <secret>``)."""
        if not self.config.is_enabled(Platform.REVENUECAT.value):
            return self._not_configured(Platform.REVENUECAT)
        return await self._traced(
            Platform.REVENUECAT, lambda: self._revenuecat(body, authorization)
        )

    async def _revenuecat(self, body: bytes, authorization: str | None) -> WebhookResult:
        provider = Platform.REVENUECAT
        if not verify_revenuecat_authorization(
            authorization, self.config.revenuecat_webhook_secret
        ):
            return self._rejected(provider, 401, "Unauthorized")

        try:
            event = RevenueCatEvent.from_payload(_parse_json(provider, body))
        except PayloadError as exc:
            return self._bad_payload(provider, exc)

        with log_context(
            provider=provider.value, event_type=event.event_type, user_id=event.app_user_id
        ):
            logger.info("revenuecat_event_received", event_id=event.event_id)
            if event.event_type not in revenuecat_events.HANDLED_EVENT_TYPES:
                return self._finish(
                    provider, WebhookOutcome.IGNORED, 200, "Event ignored", event.event_type
                )

            success_body = {
                "success": True,
                "event_type": event.event_type,
                "user_id": event.app_user_id,
            }

            try:
                state_update = revenuecat_events.normalize_revenuecat_event(event, self.clock())
            except PayloadError as exc:
                return self._bad_payload(provider, exc, event.event_type)

            if state_update is None:
                return self._finish(
                    provider, WebhookOutcome.NO_OP, 200, success_body, event.event_type
                )

            try:
                await self.store.update_subscription_state(state_update)
            except Exception as exc:
                return self._failed(
                    provider,
                    exc,
                    {"error": "Webhook processing failed"},
                    event.event_type,
                    state_update.user_id,
                )

            return self._finish(
                provider,
                WebhookOutcome.APPLIED,
                200,
                success_body,
                event.event_type,
                state_update.user_id,
            )
