"""User (WhatsApp contact) endpoints.

GET    /users/{id}
GET    /users/wa/{wa_id}
PATCH  /users/wa/{wa_id}                 -> name, profile_picture, custom_fields
POST   /users/wa/{wa_id}/block|unblock
POST   /users/wa/{wa_id}/tags            -> add tags
DELETE /users/wa/{wa_id}/tags            -> remove tags
GET    /users/wa/{wa_id}/conversations
GET    /users/wa/{wa_id}/unread          -> unread total over active conversations
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, ConfigDict

from wabroker.api.deps import get_conversation_service, get_user_service
from wabroker.api.errors import translate_errors
from wabroker.api.serializers import conversation_to_dict, user_to_dict
from wabroker.domain.conversations import ConversationService
from wabroker.domain.users import UserService

router = APIRouter(prefix="/users", tags=["users"])


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    profile_picture: str | None = None
    custom_fields: dict[str, Any] | None = None


class TagsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tags: list[str]


@router.get("/wa/{wa_id}")
def get_user_by_wa_id(
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.get_by_wa_id(wa_id))


@router.patch("/wa/{wa_id}")
def update_user(
    body: UpdateUserRequest,
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    """Partial update; custom_fields replaces the stored mapping."""
    with translate_errors():
        user = service.update(
            wa_id,
            name=body.name,
            profile_picture=body.profile_picture,
            custom_fields=body.custom_fields,
        )
    return user_to_dict(user)


@router.post("/wa/{wa_id}/block")
def block_user(
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.block(wa_id))


@router.post("/wa/{wa_id}/unblock")
def unblock_user(
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.unblock(wa_id))


@router.post("/wa/{wa_id}/tags")
def add_user_tags(
    body: TagsRequest,
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.add_tags(wa_id, body.tags))


@router.delete("/wa/{wa_id}/tags")
def remove_user_tags(
    body: TagsRequest,
    wa_id: str = Path(..., description="WhatsApp id"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.remove_tags(wa_id, body.tags))


@router.get("/wa/{wa_id}/conversations")
def list_user_conversations(
    wa_id: str = Path(..., description="WhatsApp id"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    with translate_errors():
        conversations = service.list_for_user(wa_id)
    return {"conversations": [conversation_to_dict(c) for c in conversations]}


@router.get("/wa/{wa_id}/unread")
def get_user_unread(
    wa_id: str = Path(..., description="WhatsApp id"),
    service: ConversationService = Depends(get_conversation_service),
) -> dict:
    return {"wa_id": wa_id, "unread": service.unread_total(wa_id)}


@router.get("/{user_id}")
def get_user(
    user_id: str = Path(..., description="User UUID"),
    service: UserService = Depends(get_user_service),
) -> dict:
    with translate_errors():
        return user_to_dict(service.get(user_id))
