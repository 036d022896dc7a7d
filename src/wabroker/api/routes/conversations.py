"""Conversations (inbox) endpoints.

GET    /conversations                      -> paged inbox (filters: status, assigned_to, tag)
GET    /conversations/{id}                 -> one conversation
GET    /conversations/{id}/messages        -> paged message history
POST   /conversations/{id}/archive|close|reopen
POST   /conversations/{id}/read            -> unread_count = 0
POST   /conversations/{id}/assign          -> set / clear assignee
POST   /conversations/{id}/tags            -> add tags
DELETE /conversations/{id}/tags            -> remove tags
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, ConfigDict

from wabroker.api.deps import get_conversation_service
from wabroker.api.errors import translate_errors
from wabroker.api.serializers import conversation_to_dict, message_to_dict, page_to_dict
from wabroker.domain.conversations import ConversationService

router = APIRouter(prefix="/conversations", tags=["conversations"])


class AssignRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assignee: str | None = None


class TagsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tags: list[str]


@router.get("")
def list_conversations(
    page: int = Query(1),
    limit: int = Query(20),
    status: str | None = Query(None),
    assigned_to: str | None = Query(None),
    tag: list[str] | None = Query(None),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Inbox, most recent activity first. Repeated `tag` params must all match."""
    with translate_errors():
        result = service.list(
            page=page, limit=limit, status=status, assigned_to=assigned_to, tags=tag
        )
    return page_to_dict(result, "conversations", conversation_to_dict)


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.get(conversation_id))


@router.get("/{conversation_id}/messages")
def list_messages(
    conversation_id: str = Path(..., description="Conversation UUID"),
    page: int = Query(1),
    limit: int = Query(50),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Message history; page 1 holds the newest messages, oldest first."""
    with translate_errors():
        result = service.messages(conversation_id, page=page, limit=limit)
    return page_to_dict(result, "messages", message_to_dict)


@router.post("/{conversation_id}/archive")
def archive_conversation(
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.archive(conversation_id))


@router.post("/{conversation_id}/close")
def close_conversation(
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.close(conversation_id))


@router.post("/{conversation_id}/reopen")
def reopen_conversation(
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    """409 when the user already has another open conversation."""
    with translate_errors():
        return conversation_to_dict(service.reopen(conversation_id))


@router.post("/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.mark_as_read(conversation_id))


@router.post("/{conversation_id}/assign")
def assign_conversation(
    body: AssignRequest,
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    """Assign to an agent; `assignee: null` clears the assignment."""
    with translate_errors():
        return conversation_to_dict(service.assign(conversation_id, body.assignee))


@router.post("/{conversation_id}/tags")
def add_conversation_tags(
    body: TagsRequest,
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.add_tags(conversation_id, body.tags))


@router.delete("/{conversation_id}/tags")
def remove_conversation_tags(
    body: TagsRequest,
    conversation_id: str = Path(..., description="Conversation UUID"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        return conversation_to_dict(service.remove_tags(conversation_id, body.tags))
