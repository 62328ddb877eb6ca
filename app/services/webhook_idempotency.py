"""
Webhook idempotency helpers.

Pure transformations over a payment's metadata document. The caller
persists the result.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

MAX_PROCESSED_EVENT_IDS = 200

PROCESSED_IDS_KEY = "processed_webhook_event_ids"


def resolve_event_type(notification: Mapping[str, Any]) -> Optional[str]:
    """Event type from `type`, falling back to `event`."""
    for key in ("type", "event"):
        value = notification.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _explicit_event_id(notification: Mapping[str, Any]) -> Optional[str]:
    data = notification.get("data")
    candidates = [notification.get("id"), notification.get("event_id")]
    if isinstance(data, Mapping):
        candidates.append(data.get("event_id"))
    for value in candidates:
        if value is not None and str(value):
            return str(value)
    return None


def _reported_sub_status(notification: Mapping[str, Any]) -> str:
    data = notification.get("data")
    if isinstance(data, Mapping) and data.get("status") is not None:
        return str(data["status"])
    if notification.get("status") is not None:
        return str(notification["status"])
    return "unknown"


def resolve_event_identity(
    provider: str,
    notification: Mapping[str, Any],
    event_type: Optional[str],
    transaction_ref: str,
) -> str:
    """
    Deterministic identity of one provider notification.

    Uses the provider-assigned event id when present; otherwise a
    composite of provider, event type, transaction reference and the
    reported sub-status, so redeliveries collapse to the same string.
    """
    explicit = _explicit_event_id(notification)
    if explicit:
        return f"{provider}:{explicit}"
    status = _reported_sub_status(notification)
    return f"{provider}:{event_type or 'unknown'}:{transaction_ref}:{status}"


def get_processed_event_ids(metadata: Optional[Mapping[str, Any]]) -> List[str]:
    """Processed identities stored in metadata; malformed data reads as empty."""
    if not isinstance(metadata, Mapping):
        return []
    ids = metadata.get(PROCESSED_IDS_KEY)
    if not isinstance(ids, list):
        return []
    return [value for value in ids if isinstance(value, str)]


def is_event_processed(metadata: Optional[Mapping[str, Any]], identity: str) -> bool:
    return identity in get_processed_event_ids(metadata)


def record_processed_event(
    metadata: Optional[Mapping[str, Any]],
    identity: str,
    event_type: Optional[str],
    extra_fields: Optional[Mapping[str, Any]] = None,
    received_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Return a new metadata document with `identity` recorded as processed.

    Unrelated keys are kept, `extra_fields` are merged over them, and the
    processed list stays ordered, unique and capped.
    """
    existing: Dict[str, Any] = dict(metadata) if isinstance(metadata, Mapping) else {}

    processed = get_processed_event_ids(existing)
    # dict preserves first-seen order
    unique_ids = list(dict.fromkeys(processed + [identity]))

    received_at = received_at or datetime.now(timezone.utc)

    return {
        **existing,
        **dict(extra_fields or {}),
        PROCESSED_IDS_KEY: unique_ids[-MAX_PROCESSED_EVENT_IDS:],
        "last_webhook_event_id": identity,
        "last_webhook_event_type": event_type or None,
        "last_webhook_received_at": received_at.isoformat(),
    }
