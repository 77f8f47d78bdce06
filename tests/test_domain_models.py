"""
Tests for Domain Models.

Tests dataclass validation, payload envelopes and field helpers.
"""

from datetime import UTC, datetime

import pytest

from app.exceptions import PayloadError
from app.models.domain import (
    EntitlementAction,
    EntitlementUpdate,
    PaystackEvent,
    Platform,
    RevenueCatEvent,
    StripeEvent,
    SubscriptionStateUpdate,
    as_text,
    decode_metadata,
)

NOW = datetime(2026, 3, 1, tzinfo=UTC)


class TestFieldHelpers:
    """Tests for as_text and decode_metadata."""

    @pytest.mark.parametrize(
        "value,expected",
        [("abc", "abc"), (123, "123"), ("", None), (None, None), (True, None), ({}, None)],
    )
    def test_as_text(self, value, expected):
        """Scalars are stringified, containers and booleans are not identifiers."""
        assert as_text(value) == expected

    def test_decode_metadata_object(self):
        assert decode_metadata({"user_id": "u1"}) == {"user_id": "u1"}

    def test_decode_metadata_json_string(self):
        """Metadata sent as a JSON-encoded string is decoded."""
        assert decode_metadata('{"user_id": "u1"}') == {"user_id": "u1"}

    @pytest.mark.parametrize("value", ["not json", "[1, 2]", 42, None, ""])
    def test_decode_metadata_invalid_is_empty(self, value):
        assert decode_metadata(value) == {}


class TestEntitlementUpdate:
    """Tests for EntitlementUpdate validation."""

    def _update(self, **overrides):
        fields = {
            "user_id": "u1",
            "product_id": "prod_1",
            "platform": Platform.PAYSTACK,
            "purchase_token": "ref_1",
            "expires_at": None,
            "is_active": True,
            "raw_response": {},
        }
        fields.update(overrides)
        return EntitlementUpdate(**fields)

    def test_defaults_to_upsert(self):
        assert self._update().action == EntitlementAction.UPSERT

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValueError, match="user_id"):
            self._update(user_id="")

    def test_empty_product_id_rejected(self):
        with pytest.raises(ValueError, match="product_id"):
            self._update(product_id="")

    def test_active_deactivation_rejected(self):
        """A deactivation can never carry is_active=True."""
        with pytest.raises(ValueError, match="is_active"):
            self._update(action=EntitlementAction.DEACTIVATE, is_active=True)

    def test_frozen(self):
        update = self._update()
        with pytest.raises(AttributeError):
            update.is_active = False  # type: ignore[misc]


class TestSubscriptionStateUpdate:
    """Tests for SubscriptionStateUpdate.changes()."""

    def test_changes_omit_unset_fields(self):
        """Only status, provider and timestamp are written when nothing else is set."""
        update = SubscriptionStateUpdate(user_id="u2", status="cancelled", updated_at=NOW)
        assert update.changes() == {
            "status": "cancelled",
            "payment_provider": "revenuecat",
            "updated_at": NOW,
        }

    def test_changes_include_set_fields(self):
        expires = datetime(2026, 4, 1, tzinfo=UTC)
        update = SubscriptionStateUpdate(
            user_id="u2",
            status="active",
            updated_at=NOW,
            tier="premium",
            expires_at=expires,
            billing_cycle="yearly",
            transaction_id="tx_1",
        )
        changes = update.changes()
        assert changes["tier"] == "premium"
        assert changes["expires_at"] == expires
        assert changes["billing_cycle"] == "yearly"
        assert changes["transaction_id"] == "tx_1"

    def test_empty_user_id_rejected(self):
        with pytest.raises(ValueError):
            SubscriptionStateUpdate(user_id="", status="active", updated_at=NOW)


class TestStripeEvent:
    """Tests for StripeEvent.from_payload."""

    def test_parses_envelope(self):
        event = StripeEvent.from_payload(
            {"id": "evt_1", "type": "invoice.payment_failed", "data": {"object": {"id": "in_1"}}}
        )
        assert event.event_id == "evt_1"
        assert event.event_type == "invoice.payment_failed"
        assert event.data_object == {"id": "in_1"}

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"id": "evt_1", "data": {"object": {}}},
            {"id": "evt_1", "type": "x"},
            {"id": "evt_1", "type": "x", "data": {"object": "in_1"}},
        ],
    )
    def test_malformed_envelope_rejected(self, payload):
        with pytest.raises(PayloadError):
            StripeEvent.from_payload(payload)


class TestPaystackEvent:
    """Tests for PaystackEvent parsing and user id resolution."""

    def test_alternate_envelope_keys(self):
        """event_type/payload are accepted in place of event/data."""
        event = PaystackEvent.from_payload(
            {"event_type": "charge.success", "payload": {"reference": "r1"}}
        )
        assert event.event_type == "charge.success"
        assert event.data == {"reference": "r1"}

    def test_missing_fields_default_to_empty(self):
        event = PaystackEvent.from_payload({})
        assert event.event_type == ""
        assert event.data == {}

    def test_non_object_data_rejected(self):
        with pytest.raises(PayloadError):
            PaystackEvent.from_payload({"event": "charge.success", "data": ["x"]})

    def test_user_id_from_metadata(self):
        event = PaystackEvent("charge.success", {"metadata": {"user_id": "u1"}})
        assert event.user_id == "u1"

    def test_user_id_camel_case(self):
        event = PaystackEvent("charge.success", {"metadata": {"userId": 42}})
        assert event.user_id == "42"

    def test_user_id_from_customer_metadata(self):
        event = PaystackEvent(
            "subscription.disable",
            {"customer": {"metadata": '{"user_id": "u3"}'}},
        )
        assert event.user_id == "u3"

    def test_no_user_id(self):
        assert PaystackEvent("charge.success", {"metadata": "garbage"}).user_id is None


class TestRevenueCatEvent:
    """Tests for RevenueCatEvent.from_payload."""

    def test_parses_event(self):
        event = RevenueCatEvent.from_payload(
            {
                "event": {
                    "id": "rc_1",
                    "type": "RENEWAL",
                    "app_user_id": "u2",
                    "product_id": "premium_yearly",
                    "expiration_at_ms": 1_767_225_600_000,
                    "transaction_id": "tx_1",
                    "is_trial_conversion": True,
                }
            }
        )
        assert event.event_type == "RENEWAL"
        assert event.app_user_id == "u2"
        assert event.expiration_at_ms == 1_767_225_600_000
        assert event.is_trial_conversion is True

    @pytest.mark.parametrize("payload", [[], {}, {"event": "RENEWAL"}])
    def test_missing_event_rejected(self, payload):
        with pytest.raises(PayloadError):
            RevenueCatEvent.from_payload(payload)

    @pytest.mark.parametrize("expiration", ["soon", True, {"ms": 1}, float("inf"), float("nan")])
    def test_non_numeric_expiration_rejected(self, expiration):
        with pytest.raises(PayloadError, match="expiration_at_ms"):
            RevenueCatEvent.from_payload({"event": {"type": "RENEWAL", "expiration_at_ms": expiration}})

    def test_missing_type_is_empty(self):
        event = RevenueCatEvent.from_payload({"event": {"app_user_id": "u2"}})
        assert event.event_type == ""
        assert event.is_trial_conversion is None
