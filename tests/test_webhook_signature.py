"""
Tests for webhook signature verification.
"""

import base64
import hashlib
import hmac

import pytest

from app.services.exceptions import ConfigurationError
from app.services.webhook_signature import WebhookSignatureVerifier, verify_webhook_signature

from helpers import WEBHOOK_SECRET, sign

BODY = b'{"data": {"id": 123}}'


class TestVerifyWebhookSignature:
    """Tests for verify_webhook_signature."""

    def test_primary_sha512_hex_signature_verifies(self):
        assert verify_webhook_signature(BODY, sign(BODY), WEBHOOK_SECRET) is True

    def test_legacy_sha256_hex_signature_verifies(self):
        signature = hmac.new(WEBHOOK_SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert verify_webhook_signature(BODY, signature, WEBHOOK_SECRET) is True

    def test_legacy_sha512_base64_signature_verifies(self):
        digest = hmac.new(WEBHOOK_SECRET.encode(), BODY, hashlib.sha512).digest()
        signature = base64.b64encode(digest).decode()
        assert verify_webhook_signature(BODY, signature, WEBHOOK_SECRET) is True

    def test_scheme_prefix_is_accepted(self):
        assert verify_webhook_signature(BODY, f"sha512={sign(BODY)}", WEBHOOK_SECRET) is True

    def test_invalid_signature_rejected(self):
        assert verify_webhook_signature(BODY, "bad-signature", WEBHOOK_SECRET) is False

    def test_missing_signature_rejected(self):
        assert verify_webhook_signature(BODY, None, WEBHOOK_SECRET) is False
        assert verify_webhook_signature(BODY, "", WEBHOOK_SECRET) is False

    def test_missing_secret_raises(self):
        with pytest.raises(ConfigurationError, match="Webhook secret not configured"):
            verify_webhook_signature(BODY, "signature", None)
        with pytest.raises(ConfigurationError):
            verify_webhook_signature(BODY, None, "")

    def test_single_character_signature_mutation_rejected(self):
        signature = sign(BODY)
        for index in (0, len(signature) // 2, len(signature) - 1):
            replacement = "0" if signature[index] != "0" else "1"
            mutated = signature[:index] + replacement + signature[index + 1:]
            assert verify_webhook_signature(BODY, mutated, WEBHOOK_SECRET) is False

    def test_single_byte_body_mutation_rejected(self):
        signature = sign(BODY)
        mutated_body = BODY.replace(b"123", b"124")
        assert verify_webhook_signature(mutated_body, signature, WEBHOOK_SECRET) is False

    def test_signature_from_other_secret_rejected(self):
        signature = sign(BODY, secret="another-secret")
        assert verify_webhook_signature(BODY, signature, WEBHOOK_SECRET) is False

    def test_truncated_signature_rejected(self):
        assert verify_webhook_signature(BODY, sign(BODY)[:-2], WEBHOOK_SECRET) is False


class TestWebhookSignatureVerifier:
    """Tests for the secret-bound verifier."""

    def test_constructor_requires_secret(self):
        with pytest.raises(ConfigurationError):
            WebhookSignatureVerifier("")

    def test_verify_uses_bound_secret(self):
        verifier = WebhookSignatureVerifier(WEBHOOK_SECRET)
        assert verifier.verify(BODY, sign(BODY)) is True
        assert verifier.verify(BODY + b" ", sign(BODY)) is False
        assert verifier.verify(BODY, sign(BODY, secret="another-secret")) is False
