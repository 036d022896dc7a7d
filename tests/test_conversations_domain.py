"""Tests for conversation lifecycle operations (in-memory store)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from wabroker.domain.content import TextContent
from wabroker.domain.conversations import ConversationService, normalize_tags
from wabroker.domain.errors import DuplicateError, NotFoundError, ValidationError
from wabroker.whatsapp.models import InboundMessageEvent

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def service(store):
    return ConversationService(store.unit_of_work)


def _receive(engine, wamid: str, sender: str = "15551234567", body: str = "hi", at=T0):
    return engine.handle_incoming_message(
        InboundMessageEvent(
            wa_message_id=wamid,
            from_address=sender,
            content=TextContent(body=body),
            timestamp=at,
        )
    )


class TestStatusTransitions:
    """archive / close / reopen."""

    def test_archive_then_close(self, engine, service):
        message = _receive(engine, "wamid.A")

        archived = service.archive(message.conversation_id)
        closed = service.close(message.conversation_id)

        assert archived.status == "archived"
        assert closed.status == "closed"

    def test_reopen_closed_when_no_other_open(self, engine, service):
        message = _receive(engine, "wamid.A")
        service.close(message.conversation_id)

        reopened = service.reopen(message.conversation_id)

        assert reopened.status == "active"

    def test_reopen_rejected_when_user_has_open_conversation(self, engine, service, store):
        first = _receive(engine, "wamid.A")
        service.close(first.conversation_id)
        second = _receive(engine, "wamid.B")
        assert second.conversation_id != first.conversation_id

        with pytest.raises(DuplicateError):
            service.reopen(first.conversation_id)

        assert store.conversations[first.conversation_id].status == "closed"

    def test_reopen_archived_is_allowed(self, engine, service):
        message = _receive(engine, "wamid.A")
        service.archive(message.conversation_id)

        assert service.reopen(message.conversation_id).status == "active"

    def test_same_status_is_a_no_op(self, engine, service):
        message = _receive(engine, "wamid.A")

        assert service.reopen(message.conversation_id).status == "active"

    def test_unknown_conversation(self, service):
        with pytest.raises(NotFoundError):
            service.archive("00000000-0000-0000-0000-000000000000")


class TestAssignAndTags:
    def test_assign_and_clear(self, engine, service):
        message = _receive(engine, "wamid.A")

        assert service.assign(message.conversation_id, "agent-7").assigned_to == "agent-7"
        assert service.assign(message.conversation_id, None).assigned_to is None

    def test_blank_assignee_rejected(self, engine, service):
        message = _receive(engine, "wamid.A")

        with pytest.raises(ValidationError):
            service.assign(message.conversation_id, "   ")

    def test_tags_have_set_semantics(self, engine, service):
        message = _receive(engine, "wamid.A")
        cid = message.conversation_id

        service.add_tags(cid, ["vip", "billing"])
        conversation = service.add_tags(cid, ["billing", "urgent"])
        assert conversation.tags == ["vip", "billing", "urgent"]

        conversation = service.remove_tags(cid, ["billing", "missing"])
        assert conversation.tags == ["vip", "urgent"]

    def test_normalize_tags(self):
        assert normalize_tags([" vip ", "vip", "", "new"]) == ["vip", "new"]

        with pytest.raises(ValidationError):
            normalize_tags(["", "  "])


class TestUnread:
    def test_mark_as_read_resets_counter(self, engine, service, store):
        message = _receive(engine, "wamid.A")
        _receive(engine, "wamid.B")

        conversation = service.mark_as_read(message.conversation_id)

        assert conversation.unread_count == 0

    def test_unread_total_counts_active_only(self, engine, service):
        first = _receive(engine, "wamid.A")
        _receive(engine, "wamid.B")
        assert service.unread_total("15551234567") == 2

        service.archive(first.conversation_id)

        assert service.unread_total("15551234567") == 0

    def test_unread_total_unknown_user_is_zero(self, service):
        assert service.unread_total("19999999999") == 0


class TestListing:
    def test_inbox_most_recent_first(self, engine, service):
        _receive(engine, "wamid.A", sender="15550000001")
        _receive(engine, "wamid.B", sender="15550000002")

        page = service.list(page=1, limit=10)

        assert page.total == 2
        assert [c.phone_number for c in page.items] == ["15550000002", "15550000001"]

    def test_status_filter_and_validation(self, engine, service):
        message = _receive(engine, "wamid.A")
        service.archive(message.conversation_id)

        assert service.list(status="archived").total == 1
        assert service.list(status="active").total == 0
        with pytest.raises(ValidationError):
            service.list(status="deleted")

    def test_paging_bounds(self, service):
        with pytest.raises(ValidationError):
            service.list(page=0)
        with pytest.raises(ValidationError):
            service.list(limit=101)

    def test_messages_chronological_with_newest_page_first(self, engine, service):
        for i in range(5):
            message = _receive(engine, f"wamid.{i}", body=f"m{i}", at=T0 + timedelta(minutes=i))

        first_page = service.messages(message.conversation_id, page=1, limit=2)
        second_page = service.messages(message.conversation_id, page=2, limit=2)

        assert first_page.total == 5
        assert [m.content.body for m in first_page.items] == ["m3", "m4"]
        assert [m.content.body for m in second_page.items] == ["m1", "m2"]

    def test_messages_of_unknown_conversation(self, service):
        with pytest.raises(NotFoundError):
            service.messages("nope")

    def test_list_for_user(self, engine, service):
        first = _receive(engine, "wamid.A")
        service.close(first.conversation_id)
        _receive(engine, "wamid.B")

        conversations = service.list_for_user("15551234567")

        assert len(conversations) == 2
        assert conversations[0].status == "active"

        with pytest.raises(NotFoundError):
            service.list_for_user("19999999999")
