"""
Webhook Signature Verification.

A notification is authentic when its signature header matches any of the
candidates computed from the configured secret and the raw request body:

- HMAC-SHA512, hex (current scheme)
- HMAC-SHA256, hex (legacy integrations)
- HMAC-SHA512, base64 (legacy integrations)
"""

import base64
import hashlib
import hmac
import logging
from typing import List, Optional

from app.services.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_SCHEME_PREFIXES = ("sha512=", "sha256=")


def _candidate_signatures(raw_body: bytes, secret: str) -> List[str]:
    key = secret.encode("utf-8")
    sha512 = hmac.new(key, raw_body, hashlib.sha512)
    sha256 = hmac.new(key, raw_body, hashlib.sha256)
    return [
        sha512.hexdigest(),
        sha256.hexdigest(),
        base64.b64encode(sha512.digest()).decode("ascii"),
    ]


def _strip_scheme_prefix(signature: str) -> str:
    lowered = signature.lower()
    for prefix in _SCHEME_PREFIXES:
        if lowered.startswith(prefix):
            return signature[len(prefix):]
    return signature


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    configured_secret: Optional[str],
) -> bool:
    """
    Verify a webhook signature against every supported scheme.

    Raises ConfigurationError when no secret is configured; never
    accepts traffic in that case.
    """
    if not configured_secret:
        raise ConfigurationError("Webhook secret not configured")

    if not signature_header:
        return False

    presented = _strip_scheme_prefix(signature_header.strip()).encode("utf-8")

    matched = False
    for candidate in _candidate_signatures(raw_body, configured_secret):
        expected = candidate.encode("ascii")
        if len(expected) != len(presented):
            continue
        # Evaluate every candidate; no short-circuit across schemes
        if hmac.compare_digest(expected, presented):
            matched = True

    return matched


class WebhookSignatureVerifier:
    """Signature verifier bound to one signing secret."""

    def __init__(self, secret: Optional[str]):
        if not secret:
            raise ConfigurationError("Webhook secret not configured")
        self._secret = secret

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> bool:
        valid = verify_webhook_signature(raw_body, signature_header, self._secret)
        if not valid:
            logger.warning("Webhook signature rejected")
        return valid
