"""Repository contracts consumed by the domain services.

The engine, dispatcher and coordinator never touch the database directly:
they receive a unit of work (a context manager yielding a `Repositories`
bundle bound to one transaction) through their constructors. Production wires
`wabroker.infra.store.pg_unit_of_work`; tests wire an in-memory store.

Contract shared by every implementation:
- create fails with DuplicateError on a uniqueness violation
- get() / update-style operations raise NotFoundError when nothing matches
- find_*() return None instead of raising
- tag operations have set semantics (union / difference, no duplicates)
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from wabroker.domain.content import MessageContent
from wabroker.domain.models import Conversation, Message, Page, User, WebhookLog


class UserRepository(Protocol):
    def get_or_create(
        self, *, wa_id: str, phone_number: str, name: str
    ) -> tuple[User, bool]:
        """Atomic find-or-create keyed by wa_id. Returns (user, created)."""
        ...

    def get(self, user_id: str) -> User: ...

    def find_by_wa_id(self, wa_id: str) -> User | None: ...

    def update(self, wa_id: str, fields: dict[str, Any]) -> User:
        """Set the given columns (name, profile_picture, is_blocked, custom_fields)."""
        ...

    def touch_last_message(self, wa_id: str, at: datetime) -> None: ...

    def add_tags(self, wa_id: str, tags: list[str]) -> User: ...

    def remove_tags(self, wa_id: str, tags: list[str]) -> User: ...


class ConversationRepository(Protocol):
    def get_or_create_open(
        self, *, user_id: str, phone_number: str
    ) -> tuple[Conversation, bool]:
        """Atomic find-or-create of the user's single non-closed conversation."""
        ...

    def get(self, conversation_id: str) -> Conversation: ...

    def find_open_for_user(self, user_id: str) -> Conversation | None: ...

    def list_for_user(self, user_id: str) -> list[Conversation]: ...

    def list(
        self,
        *,
        page: int,
        limit: int,
        status: str | None = None,
        assigned_to: str | None = None,
        tags: list[str] | None = None,
    ) -> Page: ...

    def update(self, conversation_id: str, fields: dict[str, Any]) -> Conversation:
        """Set the given columns (status, assigned_to, wa_conversation_id, expires_at).

        Raises DuplicateError when the change would give the user a second
        non-closed conversation.
        """
        ...

    def touch_last_message(
        self,
        conversation_id: str,
        *,
        message_id: str,
        preview: str,
        at: datetime,
        increment_unread: bool,
    ) -> None:
        """Set last-message fields (and bump unread) in one update."""
        ...

    def reset_unread(self, conversation_id: str) -> Conversation: ...

    def add_tags(self, conversation_id: str, tags: list[str]) -> Conversation: ...

    def remove_tags(self, conversation_id: str, tags: list[str]) -> Conversation: ...

    def unread_total(self, user_id: str) -> int:
        """Sum of unread counters over the user's active conversations."""
        ...


class MessageRepository(Protocol):
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
    ) -> Message: ...

    def get(self, message_id: str) -> Message: ...

    def find_by_wa_message_id(self, wa_message_id: str) -> Message | None: ...

    def update_status(
        self,
        wa_message_id: str,
        status: str,
        *,
        delivered_at: datetime | None = None,
        read_at: datetime | None = None,
        failed_reason: str | None = None,
    ) -> Message | None:
        """Last write wins per field. Returns None when the message is unknown."""
        ...

    def list_for_conversation(
        self, conversation_id: str, *, page: int, limit: int
    ) -> Page:
        """Newest page first, items in chronological order within the page."""
        ...


class WebhookLogRepository(Protocol):
    def create(self, *, event_type: str, payload: dict[str, Any]) -> WebhookLog: ...

    def get(self, log_id: str) -> WebhookLog: ...

    def mark_processed(self, log_id: str, at: datetime) -> None: ...

    def mark_failed(self, log_id: str, error: str) -> None: ...

    def increment_retry_count(self, log_id: str) -> None: ...

    def claim_retryable(self, *, max_retries: int, limit: int) -> list[WebhookLog]:
        """Failed logs with retry_count < max_retries, oldest first.

        Claimed logs move back to "pending", so an overlapping sweep skips them.
        """
        ...


@dataclass(frozen=True)
class Repositories:
    users: UserRepository
    conversations: ConversationRepository
    messages: MessageRepository
    webhook_logs: WebhookLogRepository


UnitOfWork = Callable[[], AbstractContextManager[Repositories]]
