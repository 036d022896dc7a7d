"""Conversation lifecycle - status transitions, assignment, tags, unread.

Status transitions:
    active   -> archived | closed
    archived -> active (reopen) | closed
    closed   -> active (reopen)

Reopen policy: a user has at most one non-closed conversation. Reopening a
closed conversation while the user already has another open one is
rejected with DuplicateError; conversations are never merged.
"""

from __future__ import annotations

from wabroker.domain.errors import DuplicateError, NotFoundError, ValidationError
from wabroker.domain.models import CONVERSATION_STATUSES, Conversation, Page
from wabroker.domain.repositories import UnitOfWork
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import safe_log_context

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def validate_paging(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")


def normalize_tags(tags: list[str]) -> list[str]:
    """Strip, drop empties and de-duplicate keeping first occurrence order."""
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValidationError("tags must be a list of strings")
    seen: dict[str, None] = {}
    for tag in tags:
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    if not seen:
        raise ValidationError("at least one non-empty tag is required")
    return list(seen)


class ConversationService:
    def __init__(self, unit_of_work: UnitOfWork) -> None:
        self._unit_of_work = unit_of_work

    def get(self, conversation_id: str) -> Conversation:
        with self._unit_of_work() as repos:
            return repos.conversations.get(conversation_id)

    def list(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        status: str | None = None,
        assigned_to: str | None = None,
        tags: list[str] | None = None,
    ) -> Page:
        """Inbox listing, most recent activity first."""
        validate_paging(page, limit)
        if status is not None and status not in CONVERSATION_STATUSES:
            raise ValidationError(f"invalid status: {status}")
        with self._unit_of_work() as repos:
            return repos.conversations.list(
                page=page,
                limit=limit,
                status=status,
                assigned_to=assigned_to,
                tags=tags or None,
            )

    def list_for_user(self, wa_id: str) -> list[Conversation]:
        with self._unit_of_work() as repos:
            user = repos.users.find_by_wa_id(wa_id)
            if user is None:
                raise NotFoundError("User not found")
            return repos.conversations.list_for_user(user.id)

    def messages(self, conversation_id: str, *, page: int = 1, limit: int = 50) -> Page:
        """Message history of one conversation."""
        validate_paging(page, limit)
        with self._unit_of_work() as repos:
            repos.conversations.get(conversation_id)
            return repos.messages.list_for_conversation(
                conversation_id, page=page, limit=limit
            )

    def _set_status(self, conversation_id: str, status: str) -> Conversation:
        with self._unit_of_work() as repos:
            current = repos.conversations.get(conversation_id)
            if current.status == status:
                return current
            conversation = repos.conversations.update(conversation_id, {"status": status})

        logger.info(
            "conversation status changed",
            extra={
                "extra_fields": safe_log_context(
                    conversation_id=conversation_id,
                    from_status=current.status,
                    to_status=status,
                )
            },
        )
        return conversation

    def archive(self, conversation_id: str) -> Conversation:
        return self._set_status(conversation_id, "archived")

    def close(self, conversation_id: str) -> Conversation:
        return self._set_status(conversation_id, "closed")

    def reopen(self, conversation_id: str) -> Conversation:
        """Set status back to active.

        Raises:
            DuplicateError: The user already has another open conversation.
        """
        with self._unit_of_work() as repos:
            current = repos.conversations.get(conversation_id)
            if current.status == "active":
                return current
            if current.status == "closed":
                other = repos.conversations.find_open_for_user(current.user_id)
                if other is not None and other.id != conversation_id:
                    raise DuplicateError(
                        "User already has an open conversation; close it before reopening"
                    )
        # The store re-checks atomically (partial unique index / lock)
        return self._set_status(conversation_id, "active")

    def assign(self, conversation_id: str, assignee: str | None) -> Conversation:
        if assignee is not None and not assignee.strip():
            raise ValidationError("assignee must not be blank")
        with self._unit_of_work() as repos:
            return repos.conversations.update(conversation_id, {"assigned_to": assignee})

    def add_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        tags = normalize_tags(tags)
        with self._unit_of_work() as repos:
            return repos.conversations.add_tags(conversation_id, tags)

    def remove_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        tags = normalize_tags(tags)
        with self._unit_of_work() as repos:
            return repos.conversations.remove_tags(conversation_id, tags)

    def mark_as_read(self, conversation_id: str) -> Conversation:
        """Reset the unread counter."""
        with self._unit_of_work() as repos:
            return repos.conversations.reset_unread(conversation_id)

    def unread_total(self, wa_id: str) -> int:
        with self._unit_of_work() as repos:
            user = repos.users.find_by_wa_id(wa_id)
            if user is None:
                return 0
            return repos.conversations.unread_total(user.id)

