"""Tests for the webhook dispatcher: audit log lifecycle, ordering, retry sweep."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from wabroker.domain.dispatcher import WEBHOOK_EVENT_TYPE, WebhookDispatcher
from wabroker.whatsapp.meta_adapter import InvalidPayloadError

from .helpers import contact, status_item, text_message, webhook_payload


def _only_log(store):
    (log,) = store.webhook_logs.values()
    return log


class TestRecordAndProcess:
    """Tests for record() / process() / ingest()."""

    def test_record_creates_pending_log(self, dispatcher, store):
        payload = webhook_payload(messages=[text_message("wamid.A")])

        log = dispatcher.record(payload)

        assert log.status == "pending"
        assert log.event_type == WEBHOOK_EVENT_TYPE
        assert log.payload == payload
        assert log.retry_count == 0
        assert store.messages == {}

    def test_successful_batch_marks_processed(self, dispatcher, store):
        payload = webhook_payload(
            messages=[text_message("wamid.A")],
            contacts=[contact()],
        )

        dispatcher.ingest(payload)

        log = _only_log(store)
        assert log.status == "processed"
        assert log.processed_at is not None
        assert log.error is None
        assert len(store.messages) == 1

    def test_concrete_first_contact_scenario(self, dispatcher, store):
        """One text from 15551234567 with no prior state."""
        payload = webhook_payload(
            messages=[text_message("wamid.HELLO", sender="15551234567", body="Hello there")],
            contacts=[contact("15551234567", "Ana")],
        )

        dispatcher.ingest(payload)

        user = store.user_by_wa_id("15551234567")
        assert user.name == "Ana"
        (conversation,) = store.conversations_of(user.id)
        assert conversation.status == "active"
        assert conversation.unread_count == 1
        assert conversation.last_message_preview == "Hello there"
        message = store.message_by_wamid("wamid.HELLO")
        assert message.direction == "inbound"
        assert message.status == "delivered"
        assert _only_log(store).status == "processed"

    def test_batch_result_counts(self, dispatcher, store):
        payload = webhook_payload(
            messages=[text_message("wamid.A"), text_message("wamid.A")],
            statuses=[status_item("wamid.UNKNOWN", "read")],
        )
        log = dispatcher.record(payload)

        result = dispatcher.process(log)

        assert result.messages == 2
        assert result.duplicates == 1
        assert result.statuses == 1
        assert result.unknown_statuses == 1

    def test_events_applied_in_payload_order(self, store):
        """Messages of a change before its statuses, in payload order."""
        engine = MagicMock()
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        calls = []
        engine.handle_incoming_message.side_effect = lambda e: calls.append(e.wa_message_id)
        engine.handle_status_update.side_effect = lambda e: calls.append(f"status:{e.wa_message_id}")

        payload = webhook_payload(
            messages=[text_message("wamid.1"), text_message("wamid.2")],
            statuses=[status_item("wamid.1", "delivered")],
        )
        dispatcher.ingest(payload)

        assert calls == ["wamid.1", "wamid.2", "status:wamid.1"]

    def test_status_in_same_batch_after_message_applies(self, dispatcher, store):
        payload = webhook_payload(
            messages=[text_message("wamid.A")],
            statuses=[status_item("wamid.A", "read")],
        )

        dispatcher.ingest(payload)

        assert store.message_by_wamid("wamid.A").status == "read"

    def test_engine_error_marks_failed_and_reraises(self, store):
        engine = MagicMock()
        engine.handle_incoming_message.side_effect = RuntimeError("db down")
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)

        with pytest.raises(RuntimeError, match="db down"):
            dispatcher.ingest(webhook_payload(messages=[text_message("wamid.A")]))

        log = _only_log(store)
        assert log.status == "failed"
        assert "db down" in log.error
        assert log.processed_at is None
        assert log.retry_count == 0

    def test_malformed_item_fails_batch(self, dispatcher, store):
        payload = webhook_payload(messages=[{"id": "wamid.X", "type": "text"}])

        with pytest.raises(InvalidPayloadError):
            dispatcher.ingest(payload)

        assert _only_log(store).status == "failed"

    def test_events_before_failure_stay_applied(self, store, engine):
        """Each event commits on its own; a later failure does not undo earlier ones."""
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        payload = webhook_payload(
            messages=[text_message("wamid.OK"), {"id": "wamid.BAD", "from": "1", "type": "text"}],
        )

        with pytest.raises(InvalidPayloadError):
            dispatcher.ingest(payload)

        assert store.message_by_wamid("wamid.OK") is not None

    def test_unsupported_message_type_is_skipped(self, dispatcher, store):
        payload = webhook_payload(
            messages=[
                {"from": "15551234567", "id": "wamid.U", "timestamp": "1700000000", "type": "unsupported"},
                text_message("wamid.T"),
            ]
        )

        dispatcher.ingest(payload)

        assert _only_log(store).status == "processed"
        assert store.message_by_wamid("wamid.U") is None
        assert store.message_by_wamid("wamid.T") is not None

    def test_reprocessing_processed_batch_is_idempotent(self, dispatcher, store):
        log = dispatcher.ingest(webhook_payload(messages=[text_message("wamid.A")]))

        result = dispatcher.process_by_id(log.id)

        assert result.duplicates == 1
        assert len(store.messages) == 1
        (conversation,) = store.conversations.values()
        assert conversation.unread_count == 1


class TestRetrySweep:
    """Tests for retry_failed()."""

    def _failed_log(self, dispatcher, payload):
        log = dispatcher.record(payload)
        with pytest.raises(Exception):
            dispatcher.process(log)
        return log

    def test_retry_success_marks_processed(self, store, engine):
        flaky = MagicMock(wraps=engine)
        flaky.handle_incoming_message.side_effect = [RuntimeError("transient"), None]
        dispatcher = WebhookDispatcher(store.unit_of_work, flaky)
        log = self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.A")]))

        summary = dispatcher.retry_failed(max_retries=3)

        assert summary.attempted == 1
        assert summary.succeeded == 1
        assert summary.failed == 0
        stored = store.webhook_logs[log.id]
        assert stored.status == "processed"
        assert stored.retry_count == 0

    def test_retry_failure_increments_retry_count(self, store):
        engine = MagicMock()
        engine.handle_incoming_message.side_effect = RuntimeError("still broken")
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        log = self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.A")]))

        summary = dispatcher.retry_failed(max_retries=3)

        assert summary.failed == 1
        stored = store.webhook_logs[log.id]
        assert stored.status == "failed"
        assert stored.retry_count == 1

    def test_exhausted_logs_are_not_retried(self, store):
        engine = MagicMock()
        engine.handle_incoming_message.side_effect = RuntimeError("broken")
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        log = self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.A")]))

        for _ in range(5):
            dispatcher.retry_failed(max_retries=3)

        assert store.webhook_logs[log.id].retry_count == 3
        assert dispatcher.retry_failed(max_retries=3).attempted == 0

    def test_oldest_failed_first_and_limit(self, store):
        engine = MagicMock()
        engine.handle_incoming_message.side_effect = RuntimeError("broken")
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        first = self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.1")]))
        self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.2")]))

        dispatcher.retry_failed(max_retries=3, limit=1)

        assert store.webhook_logs[first.id].retry_count == 1
        retried = [log for log in store.webhook_logs.values() if log.retry_count == 1]
        assert [log.id for log in retried] == [first.id]

    def test_processed_and_pending_logs_are_ignored(self, dispatcher, store):
        dispatcher.ingest(webhook_payload(messages=[text_message("wamid.A")]))
        dispatcher.record(webhook_payload(messages=[text_message("wamid.B")]))

        summary = dispatcher.retry_failed()

        assert summary.attempted == 0

    def test_overlapping_sweep_skips_claimed_logs(self, store):
        """A sweep started while another is processing never re-runs its logs."""
        engine = MagicMock()
        engine.handle_incoming_message.side_effect = RuntimeError("broken")
        dispatcher = WebhookDispatcher(store.unit_of_work, engine)
        log = self._failed_log(dispatcher, webhook_payload(messages=[text_message("wamid.A")]))

        overlapping = []

        def run_second_sweep(_event):
            overlapping.append(dispatcher.retry_failed(max_retries=3))

        engine.handle_incoming_message.side_effect = run_second_sweep

        summary = dispatcher.retry_failed(max_retries=3)

        assert summary.succeeded == 1
        assert overlapping[0].attempted == 0
        stored = store.webhook_logs[log.id]
        assert stored.status == "processed"
        assert stored.retry_count == 0
