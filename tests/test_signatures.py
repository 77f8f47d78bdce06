"""
Tests for webhook authenticity checks.

All headers are produced with the real algorithms; nothing here is mocked.
"""

import time

import pytest

from app.services.signatures import (
    compute_paystack_signature,
    verify_paystack_signature,
    verify_revenuecat_authorization,
    verify_stripe_signature,
)
from webhook_helpers import (
    PAYSTACK_SECRET,
    REVENUECAT_SECRET,
    STRIPE_WEBHOOK_SECRET,
    encode_payload,
    paystack_signature,
    stripe_signature_header,
)

BODY = encode_payload({"id": "evt_1", "type": "invoice.payment_succeeded"})


class TestVerifyStripeSignature:
    """Tests for verify_stripe_signature."""

    def test_valid_signature_accepted(self):
        """Header signed with the configured secret verifies."""
        header = stripe_signature_header(BODY)
        assert verify_stripe_signature(BODY, header, STRIPE_WEBHOOK_SECRET, 300) is True

    def test_wrong_secret_rejected(self):
        """Header signed with another secret is rejected."""
        header = stripe_signature_header(BODY, secret="whsec_other")
        assert verify_stripe_signature(BODY, header, STRIPE_WEBHOOK_SECRET, 300) is False

    def test_modified_body_rejected(self):
        """A single changed byte invalidates the signature."""
        header = stripe_signature_header(BODY)
        tampered = BODY.replace(b"evt_1", b"evt_2")
        assert verify_stripe_signature(tampered, header, STRIPE_WEBHOOK_SECRET, 300) is False

    def test_stale_timestamp_rejected(self):
        """Signatures older than the tolerance are rejected."""
        header = stripe_signature_header(BODY, timestamp=int(time.time()) - 3600)
        assert verify_stripe_signature(BODY, header, STRIPE_WEBHOOK_SECRET, 300) is False

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header):
        """Missing header fails closed."""
        assert verify_stripe_signature(BODY, header, STRIPE_WEBHOOK_SECRET, 300) is False

    def test_empty_secret_rejected(self):
        """An empty configured secret never verifies."""
        header = stripe_signature_header(BODY, secret="")
        assert verify_stripe_signature(BODY, header, "", 300) is False

    def test_malformed_header_rejected(self):
        """Header without a v1 signature is rejected."""
        assert verify_stripe_signature(BODY, "garbage", STRIPE_WEBHOOK_SECRET, 300) is False

    def test_non_utf8_body_rejected(self):
        """Bodies that are not UTF-8 cannot be Stripe events."""
        header = stripe_signature_header(BODY)
        assert verify_stripe_signature(b"\xff\xfe", header, STRIPE_WEBHOOK_SECRET, 300) is False


class TestPaystackSignature:
    """Tests for Paystack HMAC-SHA512 verification."""

    def test_compute_matches_reference(self):
        """Digest is lowercase hex HMAC-SHA512 of the raw body."""
        digest = compute_paystack_signature(BODY, PAYSTACK_SECRET)
        assert digest == paystack_signature(BODY)
        assert len(digest) == 128

    def test_valid_signature_accepted(self):
        assert verify_paystack_signature(BODY, paystack_signature(BODY), PAYSTACK_SECRET)

    def test_wrong_secret_rejected(self):
        header = paystack_signature(BODY, secret="sk_other")
        assert not verify_paystack_signature(BODY, header, PAYSTACK_SECRET)

    def test_reformatted_body_rejected(self):
        """Verification runs on the exact bytes, so re-serialized JSON fails."""
        header = paystack_signature(BODY)
        reformatted = BODY.replace(b": ", b":")
        assert not verify_paystack_signature(reformatted, header, PAYSTACK_SECRET)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header):
        assert not verify_paystack_signature(BODY, header, PAYSTACK_SECRET)

    def test_empty_secret_rejected(self):
        """Empty secret fails closed even when the header matches an empty-key digest."""
        header = paystack_signature(BODY, secret="")
        assert not verify_paystack_signature(BODY, header, "")

    def test_non_ascii_header_rejected(self):
        """Non-ASCII header is a mismatch, not an exception."""
        assert not verify_paystack_signature(BODY, "sïgnature", PAYSTACK_SECRET)


class TestRevenueCatAuthorization:
    """Tests for the RevenueCat bearer token check."""

    def test_exact_bearer_accepted(self):
        assert verify_revenuecat_authorization(f"Bearer {REVENUECAT_SECRET}", REVENUECAT_SECRET)

    @pytest.mark.parametrize(
        "header",
        [
            REVENUECAT_SECRET,
            f"bearer {REVENUECAT_SECRET}",
            f"Bearer  {REVENUECAT_SECRET}",
            f"Bearer {REVENUECAT_SECRET}x",
            "Bearer wrong",
        ],
    )
    def test_inexact_header_rejected(self, header):
        """Only the exact ``Bearer <secret>`` form is accepted."""
        assert not verify_revenuecat_authorization(header, REVENUECAT_SECRET)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, header):
        assert not verify_revenuecat_authorization(header, REVENUECAT_SECRET)

    def test_empty_secret_rejected(self):
        """``Bearer `` must not authenticate against an empty secret."""
        assert not verify_revenuecat_authorization("Bearer ", "")
