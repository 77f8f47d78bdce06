"""
Webhook authenticity checks.

Every check runs on the exact raw request bytes, before any JSON parsing,
and fails closed when either the header or the configured secret is empty.
"""

import hashlib
import hmac

import stripe
from structlog import get_logger

logger = get_logger(__name__)

STRIPE_SIGNATURE_HEADER = "stripe-signature"
PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
REVENUECAT_AUTH_HEADER = "authorization"


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
) -> bool:
    """
    Verify a ``Stripe-Signature`` header (``t=<ts>,v1=<hmac-sha256>``).

    Delegates to the Stripe SDK, which checks HMAC-SHA256 over
    ``"{timestamp}.{body}"`` and rejects timestamps outside ``tolerance``.
    """
    if not header or not secret:
        logger.warning(
            "stripe_signature_missing",
            header_present=bool(header),
            secret_configured=bool(secret),
        )
        return False

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), header, secret, tolerance
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("stripe_signature_mismatch", error=str(exc))
        return False
    except UnicodeDecodeError:
        logger.warning("stripe_signature_body_not_utf8")
        return False

    return True


def compute_paystack_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of the raw body, as Paystack sends it."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def verify_paystack_signature(payload: bytes, header: str | None, secret: str) -> bool:
    """Compare ``x-paystack-signature`` against the expected digest in constant time."""
    if not header or not secret:
        logger.warning(
            "paystack_signature_missing",
            header_present=bool(header),
            secret_configured=bool(secret),
        )
        return False

    expected = compute_paystack_signature(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), header.encode("utf-8"))


def verify_revenuecat_authorization(header: str | None, secret: str) -> bool:
    """
    Check the static ``Authorization: Bearer <secret>`` header.

    This is a shared token, not a body signature.
    """
    if not header or not secret:
        logger.warning(
            "revenuecat_authorization_missing",
            header_present=bool(header),
            secret_configured=bool(secret),
        )
        return False

    expected = f"Bearer {secret}"
    return hmac.compare_digest(expected.encode("utf-8"), header.encode("utf-8"))
