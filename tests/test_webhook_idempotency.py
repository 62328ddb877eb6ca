"""
Tests for webhook idempotency helpers.
"""

from datetime import datetime, timezone

from app.services.webhook_idempotency import (
    MAX_PROCESSED_EVENT_IDS,
    get_processed_event_ids,
    is_event_processed,
    record_processed_event,
    resolve_event_identity,
    resolve_event_type,
)


class TestProcessedEventIds:
    """Tests for reading the processed-id list."""

    def test_missing_or_malformed_metadata_reads_as_empty(self):
        assert get_processed_event_ids(None) == []
        assert get_processed_event_ids({}) == []
        assert get_processed_event_ids({"processed_webhook_event_ids": "evt-1"}) == []
        assert get_processed_event_ids("not-a-dict") == []

    def test_non_string_ids_are_dropped(self):
        metadata = {"processed_webhook_event_ids": ["evt-1", 2, None, "evt-3"]}
        assert get_processed_event_ids(metadata) == ["evt-1", "evt-3"]

    def test_is_event_processed(self):
        metadata = {"processed_webhook_event_ids": ["flutterwave:evt-1"]}
        assert is_event_processed(metadata, "flutterwave:evt-1") is True
        assert is_event_processed(metadata, "flutterwave:evt-2") is False
        assert is_event_processed(None, "flutterwave:evt-1") is False


class TestRecordProcessedEvent:
    """Tests for building updated metadata."""

    def test_records_event_and_keeps_existing_keys(self):
        received_at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        metadata = record_processed_event(
            {"processed_webhook_event_ids": ["evt-1"], "existing": True},
            "evt-2",
            "charge.completed",
            {"provider_payload": {"ok": True}},
            received_at=received_at,
        )

        assert metadata["existing"] is True
        assert metadata["provider_payload"] == {"ok": True}
        assert metadata["processed_webhook_event_ids"] == ["evt-1", "evt-2"]
        assert metadata["last_webhook_event_id"] == "evt-2"
        assert metadata["last_webhook_event_type"] == "charge.completed"
        assert metadata["last_webhook_received_at"] == received_at.isoformat()

    def test_does_not_mutate_input(self):
        original = {"processed_webhook_event_ids": ["evt-1"]}
        record_processed_event(original, "evt-2", None)
        assert original == {"processed_webhook_event_ids": ["evt-1"]}

    def test_recording_same_event_twice_keeps_one_entry(self):
        metadata = record_processed_event({}, "evt-1", "charge.completed")
        metadata = record_processed_event(metadata, "evt-2", "charge.completed")
        metadata = record_processed_event(metadata, "evt-1", "charge.completed")
        assert metadata["processed_webhook_event_ids"] == ["evt-1", "evt-2"]

    def test_processed_list_is_capped_to_most_recent(self):
        existing = {"processed_webhook_event_ids": [f"evt-{i}" for i in range(MAX_PROCESSED_EVENT_IDS)]}
        metadata = record_processed_event(existing, "evt-new", None)

        ids = metadata["processed_webhook_event_ids"]
        assert len(ids) == MAX_PROCESSED_EVENT_IDS
        assert ids[-1] == "evt-new"
        assert "evt-0" not in ids
        assert metadata["last_webhook_event_type"] is None

    def test_malformed_existing_list_is_replaced(self):
        metadata = record_processed_event({"processed_webhook_event_ids": {"a": 1}}, "evt-1", None)
        assert metadata["processed_webhook_event_ids"] == ["evt-1"]


class TestEventIdentity:
    """Tests for event type and identity resolution."""

    def test_resolves_event_type_from_payload_fields(self):
        assert resolve_event_type({"type": "charge.completed"}) == "charge.completed"
        assert resolve_event_type({"event": "charge.success"}) == "charge.success"
        assert resolve_event_type({}) is None
        assert resolve_event_type({"type": 7}) == "7"

    def test_explicit_event_id_is_used(self):
        identity = resolve_event_identity(
            "flutterwave", {"id": "evt-123"}, "charge.completed", "tx-ref-1"
        )
        assert identity == "flutterwave:evt-123"

    def test_explicit_event_id_fallbacks(self):
        assert resolve_event_identity("paystack", {"event_id": 42}, None, "tx") == "paystack:42"
        assert resolve_event_identity(
            "paystack", {"data": {"event_id": "evt-9"}}, None, "tx"
        ) == "paystack:evt-9"

    def test_composite_identity_without_explicit_id(self):
        identity = resolve_event_identity(
            "paystack", {"data": {"status": "success"}}, "charge.success", "tx-ref-2"
        )
        assert identity == "paystack:charge.success:tx-ref-2:success"

    def test_composite_identity_uses_top_level_status(self):
        identity = resolve_event_identity("custom", {"status": "failed"}, None, "tx-3")
        assert identity == "custom:unknown:tx-3:failed"

    def test_redelivery_collapses_and_distinct_events_differ(self):
        first = {"event": "charge.success", "data": {"status": "pending"}}
        redelivery = {"event": "charge.success", "data": {"status": "pending"}}
        later = {"event": "charge.success", "data": {"status": "success"}}

        identity = resolve_event_identity("paystack", first, "charge.success", "tx-4")
        assert identity == resolve_event_identity("paystack", redelivery, "charge.success", "tx-4")
        assert identity != resolve_event_identity("paystack", later, "charge.success", "tx-4")
