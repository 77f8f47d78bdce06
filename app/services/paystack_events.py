"""
Paystack event normalization.
"""

from structlog import get_logger

from app.exceptions import PayloadError
from app.models.domain import (
    EntitlementAction,
    EntitlementUpdate,
    PaystackEvent,
    Platform,
    as_text,
)
from app.services.timestamps import parse_iso_timestamp

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"
SUBSCRIPTION_UPSERT_EVENTS = frozenset(
    {"subscription.create", "subscription.update", "subscription.activate"}
)
SUBSCRIPTION_DEACTIVATE_EVENTS = frozenset(
    {"subscription.disable", "subscription.terminate", CHARGE_FAILED}
)
INVOICE_PAYMENT_SUCCESS = "invoice.payment_success"
INVOICE_EVENTS = frozenset({INVOICE_PAYMENT_SUCCESS, "invoice.payment_failed", "invoice.create"})

HANDLED_EVENT_TYPES = (
    frozenset({CHARGE_SUCCESS})
    | SUBSCRIPTION_UPSERT_EVENTS
    | SUBSCRIPTION_DEACTIVATE_EVENTS
    | INVOICE_EVENTS
)

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "incomplete"})

DEFAULT_ONE_TIME_PRODUCT = "paystack_one_time"
DEFAULT_SUBSCRIPTION_PRODUCT = "paystack_subscription"


def _plan_product_id(event: PaystackEvent) -> str | None:
    plan = event.plan
    return as_text(plan.get("id")) or as_text(plan.get("plan_code"))


def charge_product_id(event: PaystackEvent) -> str:
    """Explicit metadata, then plan id/code, then the one-time default."""
    metadata = event.metadata
    return (
        as_text(metadata.get("product_id"))
        or as_text(metadata.get("product"))
        or _plan_product_id(event)
        or DEFAULT_ONE_TIME_PRODUCT
    )


def subscription_product_id(event: PaystackEvent, include_name: bool = False) -> str:
    product_id = _plan_product_id(event)
    if not product_id and include_name:
        product_id = as_text(event.plan.get("name"))
    return product_id or DEFAULT_SUBSCRIPTION_PRODUCT


def _purchase_token(event: PaystackEvent, *keys: str) -> str | None:
    for key in keys:
        token = as_text(event.data.get(key))
        if token:
            return token
    return None


def _next_payment_date(event: PaystackEvent):
    try:
        return parse_iso_timestamp(event.data.get("next_payment_date"))
    except ValueError as exc:
        raise PayloadError("paystack", f"invalid next_payment_date: {exc}") from exc


def _deactivate(event: PaystackEvent, user_id: str) -> EntitlementUpdate:
    return EntitlementUpdate(
        user_id=user_id,
        product_id=subscription_product_id(event),
        platform=Platform.PAYSTACK,
        purchase_token=_purchase_token(event, "subscription_code", "reference", "id"),
        expires_at=None,
        is_active=False,
        raw_response=event.data,
        action=EntitlementAction.DEACTIVATE,
    )


def normalize_paystack_event(event: PaystackEvent) -> EntitlementUpdate | None:
    """
    Map a handled Paystack event to an entitlement write.

    Returns None for unhandled types and for events with no resolvable user id.
    """
    if event.event_type not in HANDLED_EVENT_TYPES:
        return None

    user_id = event.user_id
    if not user_id:
        logger.warning("paystack_missing_user_id", event_type=event.event_type)
        return None

    if event.event_type == CHARGE_SUCCESS:
        return EntitlementUpdate(
            user_id=user_id,
            product_id=charge_product_id(event),
            platform=Platform.PAYSTACK,
            purchase_token=_purchase_token(event, "reference", "id"),
            expires_at=None,
            is_active=True,
            raw_response=event.data,
            action=EntitlementAction.UPSERT,
        )

    if event.event_type in SUBSCRIPTION_UPSERT_EVENTS:
        status = event.data.get("status")
        return EntitlementUpdate(
            user_id=user_id,
            product_id=subscription_product_id(event, include_name=True),
            platform=Platform.PAYSTACK,
            purchase_token=_purchase_token(event, "subscription_code", "id"),
            expires_at=_next_payment_date(event),
            is_active=status in ACTIVE_SUBSCRIPTION_STATUSES if status else True,
            raw_response=event.data,
            action=EntitlementAction.UPSERT,
        )

    if event.event_type in SUBSCRIPTION_DEACTIVATE_EVENTS:
        return _deactivate(event, user_id)

    # Invoice events: only a successful payment grants access.
    if event.event_type == INVOICE_PAYMENT_SUCCESS:
        return EntitlementUpdate(
            user_id=user_id,
            product_id=subscription_product_id(event),
            platform=Platform.PAYSTACK,
            purchase_token=_purchase_token(event, "subscription_code", "id"),
            expires_at=_next_payment_date(event),
            is_active=True,
            raw_response=event.data,
            action=EntitlementAction.UPSERT,
        )
    return _deactivate(event, user_id)
