"""
RevenueCat event normalization.

RevenueCat feeds the single per-user subscription row, not per-product
entitlements, so it projects into SubscriptionStateUpdate.
"""

from datetime import datetime

from structlog import get_logger

from app.exceptions import PayloadError
from app.models.domain import RevenueCatEvent, SubscriptionStateUpdate
from app.services.timestamps import from_epoch_millis

logger = get_logger(__name__)

PURCHASE_EVENTS = frozenset({"INITIAL_PURCHASE", "RENEWAL", "NON_RENEWING_PURCHASE"})
CANCELLATION = "CANCELLATION"
LAPSE_EVENTS = frozenset({"EXPIRATION", "BILLING_ISSUE"})
PRODUCT_CHANGE = "PRODUCT_CHANGE"

HANDLED_EVENT_TYPES = PURCHASE_EVENTS | LAPSE_EVENTS | {CANCELLATION, PRODUCT_CHANGE}

TIER_PREMIUM = "premium"
TIER_FREE = "free"


def billing_cycle_for(product_id: str | None) -> str:
    """Products are named per cycle, e.g. ``premium_yearly``."""
    if product_id and "yearly" in product_id:
        return "yearly"
    return "monthly"


def _transaction_id(event: RevenueCatEvent) -> str | None:
    return event.transaction_id or event.original_transaction_id


def _expires_at(event: RevenueCatEvent) -> datetime | None:
    try:
        return from_epoch_millis(event.expiration_at_ms)
    except ValueError as exc:
        raise PayloadError("revenuecat", str(exc)) from exc


def normalize_revenuecat_event(
    event: RevenueCatEvent, now: datetime
) -> SubscriptionStateUpdate | None:
    """
    Map a handled RevenueCat event to a subscription state write.

    Args:
        event: Authorized RevenueCat event
        now: Timestamp stamped into ``updated_at``

    Returns:
        The update, or None for unhandled types or a missing app_user_id

    Raises:
        PayloadError: If expiration_at_ms is outside the representable range
    """
    if event.event_type not in HANDLED_EVENT_TYPES:
        return None

    if not event.app_user_id:
        logger.warning("revenuecat_missing_app_user_id", event_type=event.event_type)
        return None

    if event.event_type in PURCHASE_EVENTS:
        return SubscriptionStateUpdate(
            user_id=event.app_user_id,
            tier=TIER_PREMIUM,
            status="trial" if event.is_trial_conversion is False else "active",
            expires_at=_expires_at(event),
            billing_cycle=billing_cycle_for(event.product_id),
            transaction_id=_transaction_id(event),
            updated_at=now,
        )

    if event.event_type == CANCELLATION:
        # Access continues until the natural expiry; tier and expiry stay as they are.
        return SubscriptionStateUpdate(
            user_id=event.app_user_id,
            status="cancelled",
            updated_at=now,
        )

    if event.event_type in LAPSE_EVENTS:
        return SubscriptionStateUpdate(
            user_id=event.app_user_id,
            tier=TIER_FREE,
            status="expired",
            updated_at=now,
        )

    return SubscriptionStateUpdate(
        user_id=event.app_user_id,
        tier=TIER_PREMIUM,
        status="active",
        billing_cycle=billing_cycle_for(event.product_id),
        transaction_id=_transaction_id(event),
        updated_at=now,
    )
