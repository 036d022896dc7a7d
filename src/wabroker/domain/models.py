"""Broker records - users, conversations, messages and webhook logs.

Records are plain dataclasses returned by the repositories. Mutation goes
through repository operations only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from wabroker.domain.content import MessageContent

ConversationStatus = Literal["active", "archived", "closed"]
MessageStatus = Literal["pending", "sent", "delivered", "read", "failed"]
Direction = Literal["inbound", "outbound"]
WebhookLogStatus = Literal["pending", "processed", "failed"]

CONVERSATION_STATUSES: set[str] = {"active", "archived", "closed"}
MESSAGE_STATUSES: set[str] = {"pending", "sent", "delivered", "read", "failed"}

# Statuses the provider reports on outbound messages
PROVIDER_STATUSES: set[str] = {"sent", "delivered", "read", "failed"}

# Custom field values: scalar or nested mapping of the same
CustomFieldValue = Union[str, int, float, bool, dict[str, Any]]


@dataclass
class User:
    id: str
    wa_id: str
    phone_number: str
    name: str
    profile_picture: str | None = None
    is_blocked: bool = False
    tags: list[str] = field(default_factory=list)
    custom_fields: dict[str, CustomFieldValue] = field(default_factory=dict)
    last_message_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Conversation:
    id: str
    user_id: str
    phone_number: str
    status: str = "active"
    wa_conversation_id: str | None = None
    unread_count: int = 0
    last_message_id: str | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    assigned_to: str | None = None
    tags: list[str] = field(default_factory=list)
    expires_at: datetime | None = None
    origin: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status != "closed"


@dataclass
class Message:
    id: str
    conversation_id: str
    wa_message_id: str
    from_address: str
    to_address: str
    content: MessageContent
    direction: str
    status: str
    timestamp: datetime
    context_message_id: str | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    failed_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def type(self) -> str:
        return self.content.message_type


@dataclass
class WebhookLog:
    id: str
    event_type: str
    payload: dict[str, Any]
    status: str = "pending"
    processed_at: datetime | None = None
    error: str | None = None
    retry_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Page:
    """One page of a filtered query."""

    items: list[Any]
    total: int
    page: int
    limit: int
