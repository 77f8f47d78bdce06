"""
Domain Models - Internal business logic models using dataclasses.

Each provider's payload is its own tagged variant; every provider path
projects into either an EntitlementUpdate (per-product rows) or a
SubscriptionStateUpdate (single per-user row).
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.exceptions import PayloadError


class Platform(str, Enum):
    """Provenance tag written on every entitlement row."""

    STRIPE = "stripe"
    PAYSTACK = "paystack"
    REVENUECAT = "revenuecat"


class EntitlementAction(str, Enum):
    """Which store write applies an EntitlementUpdate."""

    UPSERT = "upsert"
    INSERT = "insert"  # Stripe one-time checkout only, never deduplicated
    DEACTIVATE = "deactivate"


class WebhookOutcome(str, Enum):
    """Terminal states of a webhook request."""

    REJECTED = "rejected"
    BAD_PAYLOAD = "bad_payload"
    IGNORED = "ignored"
    NO_OP = "no_op"
    APPLIED = "applied"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"


def as_mapping(value: Any) -> dict[str, Any]:
    """Return value if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def as_text(value: Any) -> str | None:
    """Stringify scalar identifiers; Paystack sends numeric ids."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value)
    return text or None


def decode_metadata(value: Any) -> dict[str, Any]:
    """
    Paystack metadata is usually an object but may arrive JSON-encoded.

    Anything that does not decode to an object is treated as absent.
    """
    if isinstance(value, str) and value:
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return as_mapping(value)


@dataclass(frozen=True)
class EntitlementUpdate:
    """Normalized per-product entitlement write (Stripe and Paystack paths)."""

    user_id: str
    product_id: str
    platform: Platform
    purchase_token: str | None
    expires_at: datetime | None
    is_active: bool
    raw_response: dict[str, Any]
    action: EntitlementAction = EntitlementAction.UPSERT

    def __post_init__(self) -> None:
        """Validate the composite key."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.product_id:
            raise ValueError("product_id cannot be empty")
        if self.action == EntitlementAction.DEACTIVATE and self.is_active:
            raise ValueError("deactivate updates must have is_active=False")


@dataclass(frozen=True)
class SubscriptionStateUpdate:
    """
    Normalized per-user subscription state (RevenueCat path).

    Optional fields left as None are not written.
    """

    user_id: str
    status: str
    updated_at: datetime
    tier: str | None = None
    expires_at: datetime | None = None
    billing_cycle: str | None = None
    transaction_id: str | None = None
    payment_provider: str = Platform.REVENUECAT.value

    def __post_init__(self) -> None:
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.status:
            raise ValueError("status cannot be empty")

    def changes(self) -> dict[str, Any]:
        """Columns to write, omitting untouched fields."""
        values: dict[str, Any] = {
            "status": self.status,
            "payment_provider": self.payment_provider,
            "updated_at": self.updated_at,
        }
        optional = {
            "tier": self.tier,
            "expires_at": self.expires_at,
            "billing_cycle": self.billing_cycle,
            "transaction_id": self.transaction_id,
        }
        values.update({k: v for k, v in optional.items() if v is not None})
        return values


@dataclass(frozen=True)
class StripeEvent:
    """Verified Stripe event envelope."""

    event_id: str
    event_type: str
    data_object: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Any) -> "StripeEvent":
        if not isinstance(payload, dict):
            raise PayloadError("stripe", "event body is not a JSON object")
        event_type = payload.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise PayloadError("stripe", "event has no type")
        data_object = as_mapping(payload.get("data")).get("object")
        if not isinstance(data_object, dict):
            raise PayloadError("stripe", "event has no data.object")
        return cls(
            event_id=str(payload.get("id") or ""),
            event_type=event_type,
            data_object=data_object,
        )


@dataclass(frozen=True)
class PaystackEvent:
    """Verified Paystack event envelope."""

    event_type: str
    data: dict[str, Any]

    @classmethod
    def from_payload(cls, payload: Any) -> "PaystackEvent":
        if not isinstance(payload, dict):
            raise PayloadError("paystack", "event body is not a JSON object")
        event_type = payload.get("event") or payload.get("event_type") or payload.get("type") or ""
        data = payload.get("data") or payload.get("payload") or {}
        if not isinstance(event_type, str):
            raise PayloadError("paystack", "event type is not a string")
        if not isinstance(data, dict):
            raise PayloadError("paystack", "event data is not a JSON object")
        return cls(event_type=event_type, data=data)

    @property
    def metadata(self) -> dict[str, Any]:
        return decode_metadata(self.data.get("metadata"))

    @property
    def plan(self) -> dict[str, Any]:
        return as_mapping(self.data.get("plan"))

    @property
    def user_id(self) -> str | None:
        """Explicit metadata first, then the customer's own metadata."""
        metadata = self.metadata
        user_id = as_text(metadata.get("user_id")) or as_text(metadata.get("userId"))
        if user_id:
            return user_id
        customer = as_mapping(self.data.get("customer"))
        return as_text(decode_metadata(customer.get("metadata")).get("user_id"))


@dataclass(frozen=True)
class RevenueCatEvent:
    """Authorized RevenueCat event (the inner ``event`` object)."""

    event_type: str
    app_user_id: str | None
    event_id: str | None = None
    product_id: str | None = None
    expiration_at_ms: int | None = None
    transaction_id: str | None = None
    original_transaction_id: str | None = None
    is_trial_conversion: bool | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "RevenueCatEvent":
        if not isinstance(payload, dict):
            raise PayloadError("revenuecat", "webhook body is not a JSON object")
        event = payload.get("event")
        if not isinstance(event, dict):
            raise PayloadError("revenuecat", "webhook body has no event object")

        expiration = event.get("expiration_at_ms")
        if expiration is not None and (
            isinstance(expiration, bool)
            or not isinstance(expiration, (int, float))
            or (isinstance(expiration, float) and not math.isfinite(expiration))
        ):
            raise PayloadError("revenuecat", "expiration_at_ms is not a number")

        trial_conversion = event.get("is_trial_conversion")
        return cls(
            event_type=event.get("type") if isinstance(event.get("type"), str) else "",
            app_user_id=as_text(event.get("app_user_id")),
            event_id=as_text(event.get("id")),
            product_id=as_text(event.get("product_id")),
            expiration_at_ms=int(expiration) if expiration is not None else None,
            transaction_id=as_text(event.get("transaction_id")),
            original_transaction_id=as_text(event.get("original_transaction_id")),
            is_trial_conversion=trial_conversion if isinstance(trial_conversion, bool) else None,
            raw=event,
        )


@dataclass(frozen=True)
class WebhookResult:
    """Fixed-shape response of one webhook request."""

    provider: Platform
    outcome: WebhookOutcome
    status_code: int
    body: str | dict[str, Any]
    event_type: str | None = None
    user_id: str | None = None
