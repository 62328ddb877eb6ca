"""Shared test data and signing helpers."""

import hashlib
import hmac
import json

WEBHOOK_SECRET = "test-webhook-secret"

BOOKING_PAYLOAD = {
    "branch_id": "B1",
    "appointment_date": "2026-11-02T09:00:00+00:00",
    "treatment_type": "Consultation",
    "notes": "First visit",
}


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Primary-scheme (HMAC-SHA512 hex) signature."""
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def encode(notification: dict) -> bytes:
    return json.dumps(notification).encode("utf-8")
