"""Shared test helpers for wabroker tests.

Not fixtures: plain classes and functions importable from conftest.py and
from individual test modules.

MemoryStore implements the repository contracts of
wabroker.domain.repositories in memory, with the same uniqueness rules as
the Postgres schema (wa_id, wa_message_id, one open conversation per user)
and rollback of a unit of work that raises.
"""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterator

from wabroker.domain.content import MessageContent
from wabroker.domain.errors import DuplicateError, NotFoundError
from wabroker.domain.models import Conversation, Message, Page, User, WebhookLog
from wabroker.domain.repositories import Repositories
from wabroker.infra.time import utc_now
from wabroker.whatsapp.models import SendResult

BUSINESS_PHONE_NUMBER_ID = "106540352242922"


def _new_id() -> str:
    return str(uuid.uuid4())


def _union(current: list[str], tags: list[str]) -> list[str]:
    return current + [t for t in tags if t not in current]


def _difference(current: list[str], tags: list[str]) -> list[str]:
    return [t for t in current if t not in tags]


class MemoryStore:
    """In-memory store; `unit_of_work` is a drop-in for pg_unit_of_work."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, Message] = {}
        self.webhook_logs: dict[str, WebhookLog] = {}
        # Insertion sequence, tie-breaker for "created_at" ordering
        self.seq: dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.RLock()
        self._depth = 0

    def next_seq(self, record_id: str) -> None:
        self.seq[record_id] = next(self._counter)

    def _tables(self) -> tuple:
        return (self.users, self.conversations, self.messages, self.webhook_logs, self.seq)

    @contextmanager
    def unit_of_work(self) -> Iterator[Repositories]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables()) if self._depth == 0 else None
            self._depth += 1
            try:
                yield Repositories(
                    users=MemoryUserRepository(self),
                    conversations=MemoryConversationRepository(self),
                    messages=MemoryMessageRepository(self),
                    webhook_logs=MemoryWebhookLogRepository(self),
                )
            except BaseException:
                if snapshot is not None:
                    (
                        self.users,
                        self.conversations,
                        self.messages,
                        self.webhook_logs,
                        self.seq,
                    ) = snapshot
                raise
            finally:
                self._depth -= 1

    # Convenience lookups for assertions
    def user_by_wa_id(self, wa_id: str) -> User | None:
        return next((u for u in self.users.values() if u.wa_id == wa_id), None)

    def conversations_of(self, user_id: str) -> list[Conversation]:
        return [c for c in self.conversations.values() if c.user_id == user_id]

    def message_by_wamid(self, wa_message_id: str) -> Message | None:
        return next(
            (m for m in self.messages.values() if m.wa_message_id == wa_message_id), None
        )


class MemoryUserRepository:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def _by_wa_id(self, wa_id: str) -> User:
        user = self._store.user_by_wa_id(wa_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_or_create(
        self, *, wa_id: str, phone_number: str, name: str
    ) -> tuple[User, bool]:
        existing = self._store.user_by_wa_id(wa_id)
        if existing is not None:
            return copy.deepcopy(existing), False
        now = utc_now()
        user = User(
            id=_new_id(),
            wa_id=wa_id,
            phone_number=phone_number,
            name=name,
            created_at=now,
            updated_at=now,
        )
        self._store.users[user.id] = user
        self._store.next_seq(user.id)
        return copy.deepcopy(user), True

    def get(self, user_id: str) -> User:
        if user_id not in self._store.users:
            raise NotFoundError("User not found")
        return copy.deepcopy(self._store.users[user_id])

    def find_by_wa_id(self, wa_id: str) -> User | None:
        user = self._store.user_by_wa_id(wa_id)
        return copy.deepcopy(user) if user else None

    def update(self, wa_id: str, fields: dict[str, Any]) -> User:
        user = self._by_wa_id(wa_id)
        updated = replace(user, **copy.deepcopy(fields), updated_at=utc_now())
        self._store.users[user.id] = updated
        return copy.deepcopy(updated)

    def touch_last_message(self, wa_id: str, at: datetime) -> None:
        user = self._store.user_by_wa_id(wa_id)
        if user is not None:
            user.last_message_at = at
            user.updated_at = utc_now()

    def add_tags(self, wa_id: str, tags: list[str]) -> User:
        user = self._by_wa_id(wa_id)
        user.tags = _union(user.tags, tags)
        return copy.deepcopy(user)

    def remove_tags(self, wa_id: str, tags: list[str]) -> User:
        user = self._by_wa_id(wa_id)
        user.tags = _difference(user.tags, tags)
        return copy.deepcopy(user)


class MemoryConversationRepository:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def _get(self, conversation_id: str) -> Conversation:
        conversation = self._store.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def _open_for(self, user_id: str) -> Conversation | None:
        return next(
            (c for c in self._store.conversations_of(user_id) if c.status != "closed"),
            None,
        )

    def get_or_create_open(
        self, *, user_id: str, phone_number: str
    ) -> tuple[Conversation, bool]:
        existing = self._open_for(user_id)
        if existing is not None:
            return copy.deepcopy(existing), False
        now = utc_now()
        conversation = Conversation(
            id=_new_id(),
            user_id=user_id,
            phone_number=phone_number,
            created_at=now,
            updated_at=now,
        )
        self._store.conversations[conversation.id] = conversation
        self._store.next_seq(conversation.id)
        return copy.deepcopy(conversation), True

    def get(self, conversation_id: str) -> Conversation:
        return copy.deepcopy(self._get(conversation_id))

    def find_open_for_user(self, user_id: str) -> Conversation | None:
        conversation = self._open_for(user_id)
        return copy.deepcopy(conversation) if conversation else None

    def list_for_user(self, user_id: str) -> list[Conversation]:
        conversations = sorted(
            self._store.conversations_of(user_id),
            key=lambda c: self._store.seq[c.id],
            reverse=True,
        )
        return copy.deepcopy(conversations)

    def list(
        self,
        *,
        page: int,
        limit: int,
        status: str | None = None,
        assigned_to: str | None = None,
        tags: list[str] | None = None,
    ) -> Page:
        matches = [
            c
            for c in self._store.conversations.values()
            if (status is None or c.status == status)
            and (assigned_to is None or c.assigned_to == assigned_to)
            and (not tags or all(t in c.tags for t in tags))
        ]
        # last_message_at DESC NULLS LAST, then newest first
        matches.sort(key=lambda c: self._store.seq[c.id], reverse=True)
        matches.sort(
            key=lambda c: (c.last_message_at is not None, c.last_message_at or datetime.min),
            reverse=True,
        )
        start = (page - 1) * limit
        return Page(
            items=copy.deepcopy(matches[start:start + limit]),
            total=len(matches),
            page=page,
            limit=limit,
        )

    def update(self, conversation_id: str, fields: dict[str, Any]) -> Conversation:
        conversation = self._get(conversation_id)
        if fields.get("status", conversation.status) != "closed":
            other = self._open_for(conversation.user_id)
            if other is not None and other.id != conversation_id:
                raise DuplicateError("User already has an open conversation")
        updated = replace(conversation, **fields, updated_at=utc_now())
        self._store.conversations[conversation_id] = updated
        return copy.deepcopy(updated)

    def touch_last_message(
        self,
        conversation_id: str,
        *,
        message_id: str,
        preview: str,
        at: datetime,
        increment_unread: bool,
    ) -> None:
        conversation = self._get(conversation_id)
        conversation.last_message_id = message_id
        conversation.last_message_at = at
        conversation.last_message_preview = preview
        if increment_unread:
            conversation.unread_count += 1
        conversation.updated_at = utc_now()

    def reset_unread(self, conversation_id: str) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.unread_count = 0
        return copy.deepcopy(conversation)

    def add_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.tags = _union(conversation.tags, tags)
        return copy.deepcopy(conversation)

    def remove_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        conversation = self._get(conversation_id)
        conversation.tags = _difference(conversation.tags, tags)
        return copy.deepcopy(conversation)

    def unread_total(self, user_id: str) -> int:
        return sum(
            c.unread_count
            for c in self._store.conversations_of(user_id)
            if c.status == "active"
        )


class MemoryMessageRepository:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def create(
        self,
        *,
        conversation_id: str,
        wa_message_id: str,
        from_address: str,
        to_address: str,
        content: MessageContent,
        direction: str,
        status: str,
        timestamp: datetime,
        context_message_id: str | None = None,
    ) -> Message:
        if self._store.message_by_wamid(wa_message_id) is not None:
            raise DuplicateError("Message already exists")
        now = utc_now()
        message = Message(
            id=_new_id(),
            conversation_id=conversation_id,
            wa_message_id=wa_message_id,
            from_address=from_address,
            to_address=to_address,
            content=content,
            direction=direction,
            status=status,
            timestamp=timestamp,
            context_message_id=context_message_id,
            created_at=now,
            updated_at=now,
        )
        self._store.messages[message.id] = message
        self._store.next_seq(message.id)
        return copy.deepcopy(message)

    def get(self, message_id: str) -> Message:
        if message_id not in self._store.messages:
            raise NotFoundError("Message not found")
        return copy.deepcopy(self._store.messages[message_id])

    def find_by_wa_message_id(self, wa_message_id: str) -> Message | None:
        message = self._store.message_by_wamid(wa_message_id)
        return copy.deepcopy(message) if message else None

    def update_status(
        self,
        wa_message_id: str,
        status: str,
        *,
        delivered_at: datetime | None = None,
        read_at: datetime | None = None,
        failed_reason: str | None = None,
    ) -> Message | None:
        message = self._store.message_by_wamid(wa_message_id)
        if message is None:
            return None
        message.status = status
        message.delivered_at = delivered_at or message.delivered_at
        message.read_at = read_at or message.read_at
        message.failed_reason = failed_reason or message.failed_reason
        message.updated_at = utc_now()
        return copy.deepcopy(message)

    def list_for_conversation(
        self, conversation_id: str, *, page: int, limit: int
    ) -> Page:
        matches = [
            m for m in self._store.messages.values() if m.conversation_id == conversation_id
        ]
        matches.sort(key=lambda m: (m.timestamp, self._store.seq[m.id]), reverse=True)
        start = (page - 1) * limit
        items = list(reversed(matches[start:start + limit]))
        return Page(items=copy.deepcopy(items), total=len(matches), page=page, limit=limit)


class MemoryWebhookLogRepository:
    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def _get(self, log_id: str) -> WebhookLog:
        log = self._store.webhook_logs.get(log_id)
        if log is None:
            raise NotFoundError("Webhook log not found")
        return log

    def create(self, *, event_type: str, payload: dict[str, Any]) -> WebhookLog:
        now = utc_now()
        log = WebhookLog(
            id=_new_id(),
            event_type=event_type,
            payload=copy.deepcopy(payload),
            created_at=now,
            updated_at=now,
        )
        self._store.webhook_logs[log.id] = log
        self._store.next_seq(log.id)
        return copy.deepcopy(log)

    def get(self, log_id: str) -> WebhookLog:
        return copy.deepcopy(self._get(log_id))

    def mark_processed(self, log_id: str, at: datetime) -> None:
        log = self._get(log_id)
        log.status = "processed"
        log.processed_at = at
        log.error = None

    def mark_failed(self, log_id: str, error: str) -> None:
        log = self._get(log_id)
        log.status = "failed"
        log.error = error

    def increment_retry_count(self, log_id: str) -> None:
        self._get(log_id).retry_count += 1

    def claim_retryable(self, *, max_retries: int, limit: int) -> list[WebhookLog]:
        logs = [
            log
            for log in self._store.webhook_logs.values()
            if log.status == "failed" and log.retry_count < max_retries
        ]
        logs.sort(key=lambda log: self._store.seq[log.id])
        claimed = logs[:limit]
        for log in claimed:
            log.status = "pending"
        return copy.deepcopy(claimed)


class FakeSender:
    """Records send calls; returns canned SendResults or raises `error`."""

    def __init__(
        self,
        *,
        wa_id: str | None = None,
        message_status: str | None = "accepted",
        error: Exception | None = None,
    ) -> None:
        self.wa_id = wa_id
        self.message_status = message_status
        self.error = error
        self.sent: list[dict[str, Any]] = []
        self.read_receipts: list[str] = []
        self._counter = itertools.count(1)

    def send_message(
        self,
        to: str,
        message_type: str,
        body: Any,
        *,
        reply_to: str | None = None,
    ) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append(
            {"to": to, "type": message_type, "body": body, "reply_to": reply_to}
        )
        return SendResult(
            message_id=f"wamid.OUT{next(self._counter):04d}",
            wa_id=self.wa_id or to,
            message_status=self.message_status,
        )

    def mark_as_read(self, message_id: str) -> None:
        if self.error is not None:
            raise self.error
        self.read_receipts.append(message_id)


# ── Cloud API webhook payload builders ────────────────────────────────────────


def text_message(
    wa_message_id: str,
    sender: str = "15551234567",
    body: str = "Hello there",
    timestamp: str = "1700000000",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "from": sender,
        "id": wa_message_id,
        "timestamp": timestamp,
        "type": "text",
        "text": {"body": body},
        **extra,
    }


def status_item(
    wa_message_id: str,
    status: str = "delivered",
    timestamp: str = "1700000100",
    recipient_id: str = "15551234567",
    **extra: Any,
) -> dict[str, Any]:
    return {
        "id": wa_message_id,
        "status": status,
        "timestamp": timestamp,
        "recipient_id": recipient_id,
        **extra,
    }


def contact(wa_id: str = "15551234567", name: str = "Ana") -> dict[str, Any]:
    return {"profile": {"name": name}, "wa_id": wa_id}


def webhook_payload(
    messages: list[dict[str, Any]] | None = None,
    statuses: list[dict[str, Any]] | None = None,
    contacts: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "metadata": {
            "display_phone_number": "15550001111",
            "phone_number_id": BUSINESS_PHONE_NUMBER_ID,
        },
    }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [{"field": "messages", "value": value}],
            }
        ],
    }
