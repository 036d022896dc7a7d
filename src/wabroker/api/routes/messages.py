"""Outbound message endpoints.

POST /messages/{type}             -> send via the Cloud API and record it
POST /messages/{wa_message_id}/read -> read receipt for an inbound message

`type` is one of text, image, video, audio, document, sticker, location,
contacts, interactive, template, reaction. `content` is the Cloud API object
for that type (a list of contact cards for "contacts").
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, ConfigDict, Field

from wabroker.api.deps import get_coordinator
from wabroker.api.errors import translate_errors
from wabroker.api.serializers import message_to_dict
from wabroker.domain.content import MESSAGE_TYPES, parse_content
from wabroker.domain.outbound import OutboundSendCoordinator

router = APIRouter(prefix="/messages", tags=["messages"])


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    to: str = Field(..., min_length=1)
    content: dict[str, Any] | list[dict[str, Any]]
    reply_to: str | None = None


@router.post("/{wa_message_id}/read")
def mark_message_read(
    wa_message_id: str = Path(..., description="Provider message id (wamid)"),
    coordinator: OutboundSendCoordinator = Depends(get_coordinator),
) -> dict:
    with translate_errors():
        coordinator.mark_as_read(wa_message_id)
    return {"status": "ok"}


@router.post("/{message_type}", status_code=201)
def send_message(
    body: SendMessageRequest,
    message_type: str = Path(..., description="Cloud API message type"),
    coordinator: OutboundSendCoordinator = Depends(get_coordinator),
) -> dict:
    """Send one message.

    Returns 201 with the stored message, 400 on invalid content, 502 when
    the Cloud API rejects the send (nothing is stored then).
    """
    if message_type not in MESSAGE_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown message type: {message_type}")

    with translate_errors():
        content = parse_content(message_type, body.content)
        result = coordinator.send(body.to, content, reply_to=body.reply_to)

    return {"wa_id": result.wa_id, "message": message_to_dict(result.message)}
