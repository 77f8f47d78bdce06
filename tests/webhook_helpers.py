"""
Shared test helpers: secrets, signing, payload builders and a recording store.

Payloads are signed for real; the verifiers under test are never mocked.
"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.models.domain import EntitlementUpdate, SubscriptionStateUpdate

STRIPE_API_KEY = "sk_test_fake_key"
STRIPE_WEBHOOK_SECRET = "whsec_test_fake_secret"
PAYSTACK_SECRET = "sk_test_paystack_secret"
REVENUECAT_SECRET = "rc_test_webhook_secret"

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


# ============================================================================
# Signing Helpers
# ============================================================================


def encode_payload(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


def stripe_signature_header(
    payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int | None = None
) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def paystack_signature(payload: bytes, secret: str = PAYSTACK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def revenuecat_authorization(secret: str = REVENUECAT_SECRET) -> str:
    return f"Bearer {secret}"


# ============================================================================
# Payload Builders
# ============================================================================


def stripe_subscription(
    subscription_id: str = "sub_123",
    user_id: str | None = "user_1",
    status: str = "active",
    product: str = "prod_premium",
    current_period_end: int | None = 1_767_225_600,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "metadata": {"user_id": user_id} if user_id else {},
        "current_period_end": current_period_end,
        "items": {
            "object": "list",
            "data": [{"id": "si_1", "plan": {"id": "price_monthly", "product": product}}],
        },
    }


def stripe_event(
    event_type: str, data_object: dict[str, Any], event_id: str = "evt_1"
) -> dict[str, Any]:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


def paystack_event(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": event_type, "data": data}


def revenuecat_event(
    event_type: str, app_user_id: str | None = "u2", **fields: Any
) -> dict[str, Any]:
    event: dict[str, Any] = {"id": "rc_evt_1", "type": event_type, **fields}
    if app_user_id is not None:
        event["app_user_id"] = app_user_id
    return {"api_version": "1.0", "event": event}


# ============================================================================
# Recording Store
# ============================================================================


@dataclass
class RecordingStore:
    """
    In-memory EntitlementStore.

    Mirrors the SQL adapter's semantics so replay and idempotence can be
    asserted on final state, and records every write call.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    subscriptions: dict[str, dict[str, Any]] = field(default_factory=dict)
    writes: list[tuple[str, Any]] = field(default_factory=list)
    fail_with: Exception | None = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    @staticmethod
    def _row(update: EntitlementUpdate) -> dict[str, Any]:
        return {
            "user_id": update.user_id,
            "product_id": update.product_id,
            "platform": update.platform.value,
            "purchase_token": update.purchase_token,
            "expires_at": update.expires_at,
            "is_active": update.is_active,
            "raw_response": update.raw_response,
        }

    def _matching(self, update: EntitlementUpdate) -> list[dict[str, Any]]:
        return [
            row
            for row in self.rows
            if row["user_id"] == update.user_id and row["product_id"] == update.product_id
        ]

    async def upsert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        self._check()
        self.writes.append(("upsert", entitlement_update))
        matching = self._matching(entitlement_update)
        if matching:
            for row in matching:
                row.update(self._row(entitlement_update))
        else:
            self.rows.append(self._row(entitlement_update))

    async def insert_entitlement(self, entitlement_update: EntitlementUpdate) -> None:
        self._check()
        self.writes.append(("insert", entitlement_update))
        self.rows.append(self._row(entitlement_update))

    async def deactivate_entitlement(self, entitlement_update: EntitlementUpdate) -> int:
        self._check()
        self.writes.append(("deactivate", entitlement_update))
        matching = self._matching(entitlement_update)
        for row in matching:
            row["is_active"] = False
            row["raw_response"] = entitlement_update.raw_response
        return len(matching)

    async def update_subscription_state(self, state_update: SubscriptionStateUpdate) -> int:
        self._check()
        self.writes.append(("subscription_state", state_update))
        row = self.subscriptions.get(state_update.user_id)
        if row is None:
            return 0
        row.update(state_update.changes())
        return 1
