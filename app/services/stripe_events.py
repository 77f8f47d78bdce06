"""
Stripe event normalization.

Two phases: ``subscription_to_fetch`` names the subscription the dispatcher
must re-fetch (the payload snapshot may be stale), then
``normalize_stripe_event`` maps the event plus that subscription to an
EntitlementUpdate. Both are pure.
"""

from datetime import UTC, datetime
from typing import Any

from structlog import get_logger

from app.exceptions import PayloadError
from app.models.domain import (
    EntitlementAction,
    EntitlementUpdate,
    Platform,
    StripeEvent,
    as_mapping,
    as_text,
)

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

HANDLED_EVENT_TYPES = frozenset(
    {
        CHECKOUT_COMPLETED,
        INVOICE_PAYMENT_SUCCEEDED,
        INVOICE_PAYMENT_FAILED,
        SUBSCRIPTION_DELETED,
    }
)

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})

DEFAULT_ONE_TIME_PRODUCT = "stripe_checkout_product"
DEFAULT_SUBSCRIPTION_PRODUCT = "stripe_subscription"


def _expandable_id(value: Any) -> str | None:
    """Stripe fields are either an id or the expanded object."""
    if isinstance(value, dict):
        return as_text(value.get("id"))
    return as_text(value)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = as_mapping(subscription.get("items")).get("data") or []
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription id on an invoice (top-level on older API versions, under parent on newer)."""
    subscription_id = _expandable_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = as_mapping(as_mapping(invoice.get("parent")).get("subscription_details"))
    return _expandable_id(details.get("subscription"))


def _invoice_metadata_user_id(invoice: dict[str, Any]) -> str | None:
    for details in (
        as_mapping(invoice.get("subscription_details")),
        as_mapping(as_mapping(invoice.get("parent")).get("subscription_details")),
    ):
        user_id = as_text(as_mapping(details.get("metadata")).get("user_id"))
        if user_id:
            return user_id
    return None


def subscription_user_id(subscription: dict[str, Any]) -> str | None:
    return as_text(as_mapping(subscription.get("metadata")).get("user_id"))


def subscription_product_id(subscription: dict[str, Any]) -> str:
    """
    Product of the first subscription item.

    Renewal and cancellation events only carry the subscription, so the plan
    comes first to keep the (user_id, product_id) key stable across events.
    """
    item = _first_item(subscription)
    plan = as_mapping(item.get("plan"))
    price = as_mapping(item.get("price"))
    for candidate in (plan.get("product"), plan.get("id"), price.get("product"), price.get("id")):
        product_id = _expandable_id(candidate)
        if product_id:
            return product_id
    metadata_product = as_text(as_mapping(subscription.get("metadata")).get("product_id"))
    return metadata_product or DEFAULT_SUBSCRIPTION_PRODUCT


def subscription_period_end(subscription: dict[str, Any]) -> datetime | None:
    period_end = subscription.get("current_period_end") or _first_item(subscription).get(
        "current_period_end"
    )
    if isinstance(period_end, bool) or not isinstance(period_end, (int, float)) or not period_end:
        return None
    try:
        return datetime.fromtimestamp(period_end, UTC)
    except (ValueError, OverflowError, OSError) as exc:
        raise PayloadError("stripe", f"invalid current_period_end: {period_end}") from exc


def subscription_is_active(subscription: dict[str, Any]) -> bool:
    return subscription.get("status") in ACTIVE_SUBSCRIPTION_STATUSES


def subscription_to_fetch(event: StripeEvent) -> str | None:
    """Id of the subscription that must be re-fetched before normalizing, if any."""
    obj = event.data_object
    if event.event_type == CHECKOUT_COMPLETED:
        return _expandable_id(obj.get("subscription"))
    if event.event_type in (INVOICE_PAYMENT_SUCCEEDED, INVOICE_PAYMENT_FAILED):
        return invoice_subscription_id(obj)
    return None


def _subscription_upsert(user_id: str, subscription: dict[str, Any]) -> EntitlementUpdate:
    return EntitlementUpdate(
        user_id=user_id,
        product_id=subscription_product_id(subscription),
        platform=Platform.STRIPE,
        purchase_token=as_text(subscription.get("id")),
        expires_at=subscription_period_end(subscription),
        is_active=subscription_is_active(subscription),
        raw_response=subscription,
        action=EntitlementAction.UPSERT,
    )


def _normalize_checkout(
    session: dict[str, Any], subscription: dict[str, Any] | None
) -> EntitlementUpdate | None:
    metadata = as_mapping(session.get("metadata"))
    user_id = as_text(metadata.get("user_id"))

    if _expandable_id(session.get("subscription")):
        if subscription is None:
            raise ValueError("checkout subscription must be fetched before normalizing")
        user_id = user_id or subscription_user_id(subscription)
        if not user_id:
            logger.warning("stripe_checkout_missing_user_id", session_id=session.get("id"))
            return None
        return _subscription_upsert(user_id, subscription)

    if session.get("payment_status") != "paid":
        logger.info(
            "stripe_checkout_not_paid",
            session_id=session.get("id"),
            payment_status=session.get("payment_status"),
        )
        return None

    if not user_id:
        logger.warning("stripe_checkout_missing_user_id", session_id=session.get("id"))
        return None

    # One-time purchases are recorded with a plain insert; a redelivered
    # event adds a second row for the same (user_id, product_id).
    return EntitlementUpdate(
        user_id=user_id,
        product_id=as_text(metadata.get("product_id")) or DEFAULT_ONE_TIME_PRODUCT,
        platform=Platform.STRIPE,
        purchase_token=as_text(session.get("id")),
        expires_at=None,
        is_active=True,
        raw_response=session,
        action=EntitlementAction.INSERT,
    )


def normalize_stripe_event(
    event: StripeEvent, subscription: dict[str, Any] | None = None
) -> EntitlementUpdate | None:
    """
    Map a handled Stripe event to an entitlement write.

    Args:
        event: Verified Stripe event
        subscription: Live subscription named by ``subscription_to_fetch``

    Returns:
        The update to apply, or None when there is nothing to write
        (no user id, unpaid checkout, invoice without a subscription)
    """
    obj = event.data_object

    if event.event_type == CHECKOUT_COMPLETED:
        return _normalize_checkout(obj, subscription)

    if event.event_type == INVOICE_PAYMENT_SUCCEEDED:
        if subscription is None:
            logger.info("stripe_invoice_without_subscription", invoice_id=obj.get("id"))
            return None
        user_id = subscription_user_id(subscription) or _invoice_metadata_user_id(obj)
        if not user_id:
            logger.warning(
                "stripe_invoice_missing_user_id",
                invoice_id=obj.get("id"),
                subscription_id=subscription.get("id"),
            )
            return None
        return _subscription_upsert(user_id, subscription)

    if event.event_type in (SUBSCRIPTION_DELETED, INVOICE_PAYMENT_FAILED):
        if event.event_type == SUBSCRIPTION_DELETED:
            subscription = obj
        if subscription is None:
            logger.info("stripe_invoice_without_subscription", invoice_id=obj.get("id"))
            return None
        user_id = subscription_user_id(subscription)
        if event.event_type == INVOICE_PAYMENT_FAILED:
            user_id = user_id or _invoice_metadata_user_id(obj)
        if not user_id:
            logger.warning(
                "stripe_deactivation_missing_user_id",
                event_type=event.event_type,
                subscription_id=subscription.get("id"),
            )
            return None
        return EntitlementUpdate(
            user_id=user_id,
            product_id=subscription_product_id(subscription),
            platform=Platform.STRIPE,
            purchase_token=as_text(subscription.get("id")),
            expires_at=None,
            is_active=False,
            raw_response=subscription,
            action=EntitlementAction.DEACTIVATE,
        )

    return None
