"""
Webhook Routes - one POST endpoint per payment provider.

Routes only read the raw body and the provider header; all decisions are
made by the WebhookDispatcher.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from app.api.dependencies import get_dispatcher
from app.models.domain import WebhookResult
from app.services.signatures import (
    PAYSTACK_SIGNATURE_HEADER,
    REVENUECAT_AUTH_HEADER,
    STRIPE_SIGNATURE_HEADER,
)
from app.services.webhook_dispatcher import WebhookDispatcher

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


def render_result(result: WebhookResult) -> Response:
    """Render a WebhookResult as plaintext or JSON."""
    if isinstance(result.body, dict):
        return JSONResponse(status_code=result.status_code, content=result.body)
    return PlainTextResponse(status_code=result.status_code, content=result.body)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """
    Handle Stripe webhook events.

    Verified against the ``stripe-signature`` header using the raw body.
    """
    body = await request.body()
    result = await dispatcher.handle_stripe(body, request.headers.get(STRIPE_SIGNATURE_HEADER))
    return render_result(result)


@router.post("/paystack")
async def paystack_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """Handle Paystack webhook events (``x-paystack-signature``, HMAC-SHA512)."""
    body = await request.body()
    result = await dispatcher.handle_paystack(
        body, request.headers.get(PAYSTACK_SIGNATURE_HEADER)
    )
    return render_result(result)


@router.post("/revenuecat")
async def revenuecat_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> Response:
    """Handle RevenueCat webhook events (``Authorization: Bearer <secret>``)."""
    body = await request.body()
    result = await dispatcher.handle_revenuecat(
        body, request.headers.get(REVENUECAT_AUTH_HEADER)
    )
    return render_result(result)
