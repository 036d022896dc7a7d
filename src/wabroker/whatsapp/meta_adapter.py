"""Meta Cloud API adapter - verify and flatten webhook payloads.

Meta batches several events per delivery:

{
  "object": "whatsapp_business_account",
  "entry": [{
    "id": "WABA_ID",
    "changes": [{
      "field": "messages",
      "value": {
        "metadata": {"phone_number_id": "..."},
        "contacts": [{"profile": {"name": "..."}, "wa_id": "..."}],
        "messages": [{"from": "...", "id": "wamid...", "timestamp": "...", "type": "text", ...}],
        "statuses": [{"id": "wamid...", "status": "delivered", "timestamp": "...", ...}]
      }
    }]
  }]
}

`iter_events()` yields typed events in payload order: entries, then changes,
then within one change its messages followed by its statuses.
"""

import hashlib
import hmac
from typing import Any, Iterator

from wabroker.domain.content import MESSAGE_TYPES, parse_content
from wabroker.domain.errors import UnauthorizedError, ValidationError
from wabroker.domain.models import PROVIDER_STATUSES
from wabroker.infra.time import from_unix_seconds
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import id_prefix, safe_log_context

from .models import InboundMessageEvent, StatusUpdateEvent, WebhookEvent

logger = get_logger(__name__)

WHATSAPP_OBJECT = "whatsapp_business_account"


class InvalidPayloadError(ValidationError):
    """Raised when a webhook item has an invalid shape."""

    pass


class UnsupportedMessageTypeError(InvalidPayloadError):
    """Message type outside the supported set (e.g. "unsupported", "system")."""

    def __init__(self, message_type: str) -> None:
        super().__init__(f"unsupported message type: {message_type}")
        self.message_type = message_type


class SignatureVerificationError(UnauthorizedError):
    """Raised when HMAC signature verification fails."""

    pass


def verify_signature(payload_bytes: bytes, signature_header: str, app_secret: str) -> None:
    """Verify Meta webhook signature (HMAC-SHA256 over the raw body).

    Args:
        payload_bytes: Raw request body bytes.
        signature_header: X-Hub-Signature-256 header value (sha256=...).
        app_secret: Meta App Secret.

    Raises:
        SignatureVerificationError: If signature is invalid or missing.
    """
    if not signature_header:
        raise SignatureVerificationError("missing signature header")

    if not signature_header.startswith("sha256="):
        raise SignatureVerificationError("invalid signature format")

    expected_sig = signature_header[7:]

    computed_sig = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(computed_sig, expected_sig):
        raise SignatureVerificationError("signature mismatch")


def is_whatsapp_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("object") == WHATSAPP_OBJECT


def get_phone_number_id(payload: dict[str, Any]) -> str | None:
    """Extract phone_number_id of the first change, for logging."""
    try:
        value = payload["entry"][0]["changes"][0]["value"]
        return value.get("metadata", {}).get("phone_number_id")
    except (IndexError, KeyError, TypeError, AttributeError):
        return None


def _as_list(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidPayloadError(f"{name} must be a list")
    return value


def _parse_timestamp(raw: Any, what: str):
    try:
        return from_unix_seconds(raw)
    except (TypeError, ValueError, OverflowError, OSError):
        raise InvalidPayloadError(f"invalid {what} timestamp") from None


def _contact_name(contacts: list[Any], wa_id: str) -> str | None:
    for contact in contacts:
        if isinstance(contact, dict) and contact.get("wa_id") == wa_id:
            profile = contact.get("profile") or {}
            name = profile.get("name") if isinstance(profile, dict) else None
            return name or None
    return None


def parse_message(message: Any, contacts: list[Any] | None = None) -> InboundMessageEvent:
    """Parse one entry of value.messages.

    Args:
        message: Raw message object.
        contacts: value.contacts of the same change, used for the display name.

    Raises:
        InvalidPayloadError: Missing id/from/timestamp or malformed content.
    """
    if not isinstance(message, dict):
        raise InvalidPayloadError("message must be an object")

    message_id = message.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid message id")

    sender = message.get("from")
    if not sender or not isinstance(sender, str):
        raise InvalidPayloadError("missing sender")

    message_type = message.get("type")
    if not isinstance(message_type, str):
        raise InvalidPayloadError("missing message type")
    if message_type not in MESSAGE_TYPES:
        raise UnsupportedMessageTypeError(message_type)

    try:
        content = parse_content(message_type, message.get(message_type))
    except ValidationError as e:
        raise InvalidPayloadError(str(e)) from None

    context = message.get("context")
    reply_to_id = context.get("id") if isinstance(context, dict) else None

    return InboundMessageEvent(
        wa_message_id=message_id,
        from_address=sender,
        content=content,
        timestamp=_parse_timestamp(message.get("timestamp"), "message"),
        reply_to_id=reply_to_id,
        sender_name=_contact_name(contacts or [], sender),
    )


def parse_status(status: Any) -> StatusUpdateEvent:
    """Parse one entry of value.statuses.

    Raises:
        InvalidPayloadError: Missing id, unknown status or bad timestamp.
    """
    if not isinstance(status, dict):
        raise InvalidPayloadError("status must be an object")

    message_id = status.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidPayloadError("missing or invalid status message id")

    status_value = status.get("status")
    if status_value not in PROVIDER_STATUSES:
        raise InvalidPayloadError(f"unknown status: {status_value}")

    conversation = status.get("conversation")
    wa_conversation_id = None
    expires_at = None
    origin = None
    if isinstance(conversation, dict):
        wa_conversation_id = conversation.get("id")
        if conversation.get("expiration_timestamp"):
            expires_at = _parse_timestamp(
                conversation["expiration_timestamp"], "conversation expiration"
            )
        origin_obj = conversation.get("origin")
        if isinstance(origin_obj, dict):
            origin = origin_obj.get("type")

    error_title = None
    errors = status.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        error_title = errors[0].get("title") or errors[0].get("message")

    return StatusUpdateEvent(
        wa_message_id=message_id,
        status=status_value,
        timestamp=_parse_timestamp(status.get("timestamp"), "status"),
        recipient_id=status.get("recipient_id"),
        wa_conversation_id=wa_conversation_id,
        conversation_expires_at=expires_at,
        conversation_origin=origin,
        error_title=error_title,
    )


def iter_events(payload: dict[str, Any]) -> Iterator[WebhookEvent]:
    """Flatten a webhook batch into ordered events.

    Only changes with field == "messages" carry messages/statuses; other
    fields (account updates, template reviews) are skipped, as are messages
    of unsupported types (logged with a warning).

    Raises:
        InvalidPayloadError: On the first malformed item (lazily, in order).
    """
    for entry in _as_list(payload.get("entry"), "entry"):
        if not isinstance(entry, dict):
            raise InvalidPayloadError("entry must be an object")
        for change in _as_list(entry.get("changes"), "changes"):
            if not isinstance(change, dict):
                raise InvalidPayloadError("change must be an object")
            if change.get("field") != "messages":
                continue
            value = change.get("value") or {}
            if not isinstance(value, dict):
                raise InvalidPayloadError("change value must be an object")

            contacts = _as_list(value.get("contacts"), "contacts")
            for message in _as_list(value.get("messages"), "messages"):
                try:
                    event = parse_message(message, contacts)
                except UnsupportedMessageTypeError as e:
                    logger.warning(
                        "unsupported message type skipped",
                        extra={
                            "extra_fields": safe_log_context(
                                message_type=e.message_type,
                                message_id_prefix=id_prefix(message.get("id")),
                            )
                        },
                    )
                    continue
                yield event
            for status in _as_list(value.get("statuses"), "statuses"):
                yield parse_status(status)
