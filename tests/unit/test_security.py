"""Unit tests for webhook signature validation."""

import pytest

from app.core.exceptions import InvalidSignatureError
from app.core.security import compute_signature, validate_signature

SECRET = "sk_test_secret"
BODY = b'{"event":"charge.success","data":{"reference":"ref-1","amount":500000}}'


class TestWebhookSignature:
    def test_matching_signature_is_accepted(self) -> None:
        validate_signature(BODY, compute_signature(BODY, SECRET), SECRET)

    def test_signature_is_case_and_whitespace_tolerant(self) -> None:
        signature = "  " + compute_signature(BODY, SECRET).upper() + "\n"
        validate_signature(BODY, signature, SECRET)

    def test_signature_is_hex_sha512(self) -> None:
        signature = compute_signature(BODY, SECRET)
        assert len(signature) == 128
        int(signature, 16)

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_is_rejected(self, signature) -> None:
        with pytest.raises(InvalidSignatureError) as exc_info:
            validate_signature(BODY, signature, SECRET)
        assert exc_info.value.status_code == 401

    def test_signature_from_other_secret_is_rejected(self) -> None:
        with pytest.raises(InvalidSignatureError):
            validate_signature(BODY, compute_signature(BODY, "sk_other"), SECRET)

    def test_tampered_body_is_rejected(self) -> None:
        signature = compute_signature(BODY, SECRET)
        tampered = BODY.replace(b"500000", b"900000")
        with pytest.raises(InvalidSignatureError):
            validate_signature(tampered, signature, SECRET)
