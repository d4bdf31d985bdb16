import hashlib
import hmac

from app.core.exceptions import InvalidSignatureError

SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


def validate_signature(raw_body: bytes, signature: str | None, secret: str) -> None:
    """Reject a webhook whose HMAC-SHA512 signature does not match the raw body."""
    if not signature:
        raise InvalidSignatureError("Missing webhook signature")
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        raise InvalidSignatureError()
