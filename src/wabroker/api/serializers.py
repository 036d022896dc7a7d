"""Record -> JSON dict conversion for API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from wabroker.domain.content import to_dict
from wabroker.domain.models import Conversation, Message, Page, User


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def user_to_dict(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "wa_id": user.wa_id,
        "phone_number": user.phone_number,
        "name": user.name,
        "profile_picture": user.profile_picture,
        "is_blocked": user.is_blocked,
        "tags": user.tags,
        "custom_fields": user.custom_fields,
        "last_message_at": _iso(user.last_message_at),
        "created_at": _iso(user.created_at),
        "updated_at": _iso(user.updated_at),
    }


def conversation_to_dict(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "user_id": conversation.user_id,
        "phone_number": conversation.phone_number,
        "status": conversation.status,
        "wa_conversation_id": conversation.wa_conversation_id,
        "unread_count": conversation.unread_count,
        "last_message_id": conversation.last_message_id,
        "last_message_at": _iso(conversation.last_message_at),
        "last_message_preview": conversation.last_message_preview,
        "assigned_to": conversation.assigned_to,
        "tags": conversation.tags,
        "expires_at": _iso(conversation.expires_at),
        "origin": conversation.origin,
        "created_at": _iso(conversation.created_at),
        "updated_at": _iso(conversation.updated_at),
    }


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "wa_message_id": message.wa_message_id,
        "from": message.from_address,
        "to": message.to_address,
        "type": message.type,
        "content": to_dict(message.content),
        "direction": message.direction,
        "status": message.status,
        "timestamp": _iso(message.timestamp),
        "context_message_id": message.context_message_id,
        "delivered_at": _iso(message.delivered_at),
        "read_at": _iso(message.read_at),
        "failed_reason": message.failed_reason,
        "created_at": _iso(message.created_at),
    }


def page_to_dict(page: Page, key: str, serialize) -> dict[str, Any]:
    return {
        key: [serialize(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
    }
