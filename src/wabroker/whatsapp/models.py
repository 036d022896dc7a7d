"""WhatsApp event and send-result models.

Inbound events are produced by `meta_adapter.iter_events()` from one webhook
batch and consumed by the reconciliation engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from wabroker.domain.content import MessageContent


@dataclass(frozen=True)
class InboundMessageEvent:
    """One message received from a contact.

    PII: `from_address` and `sender_name` identify a person. Never log them
    unmasked.
    """

    wa_message_id: str
    from_address: str
    content: MessageContent
    timestamp: datetime
    reply_to_id: str | None = None
    sender_name: str | None = None

    @property
    def message_type(self) -> str:
        return self.content.message_type


@dataclass(frozen=True)
class StatusUpdateEvent:
    """Delivery/read/failure notification for a message we sent."""

    wa_message_id: str
    status: str
    timestamp: datetime
    recipient_id: str | None = None
    wa_conversation_id: str | None = None
    conversation_expires_at: datetime | None = None
    conversation_origin: str | None = None
    error_title: str | None = None


WebhookEvent = Union[InboundMessageEvent, StatusUpdateEvent]


@dataclass(frozen=True)
class SendResult:
    """Provider answer to a send request."""

    message_id: str
    wa_id: str | None = None
    # "accepted" / "held_for_quality_assessment" when the API reports it
    message_status: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.message_status in (None, "accepted")
