"""
Gateway signature verification.

שתי הבדיקות מחזירות False על כל קלט חסר או ריק ולעולם לא זורקות.
ההשוואה תמיד constant-time.
"""
import hashlib
import hmac


def _hmac_hex(message: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, provided: str) -> bool:
    return hmac.compare_digest(
        expected.encode("utf-8"),
        provided.strip().lower().encode("utf-8"),
    )


def verify_webhook_signature(
    raw_body: bytes | None,
    signature: str | None,
    secret: str | None,
) -> bool:
    """HMAC-SHA256 of the raw request bytes, keyed by the tenant's webhook secret."""
    if raw_body is None or not signature or not signature.strip() or not secret or not secret.strip():
        return False
    try:
        return _matches(_hmac_hex(raw_body, secret), signature)
    except (TypeError, ValueError, UnicodeError):
        return False


def verify_checkout_signature(
    gateway_order_id: str | None,
    gateway_payment_id: str | None,
    signature: str | None,
    key_secret: str | None,
) -> bool:
    """HMAC-SHA256 of ``"<order id>|<payment id>"``, keyed by the tenant's key secret."""
    values = (gateway_order_id, gateway_payment_id, signature, key_secret)
    if any(v is None or not str(v).strip() for v in values):
        return False
    try:
        payload = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
        return _matches(_hmac_hex(payload, key_secret), signature)
    except (TypeError, ValueError, UnicodeError):
        return False


def sign_webhook_payload(raw_body: bytes, secret: str) -> str:
    """Signature the gateway would send for ``raw_body`` (smoke scripts and tests)."""
    return _hmac_hex(raw_body, secret)


def sign_checkout(gateway_order_id: str, gateway_payment_id: str, key_secret: str) -> str:
    """Signature the checkout widget returns after a successful payment."""
    return _hmac_hex(f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8"), key_secret)
