"""Message content - closed tagged union over the Cloud API message types.

Each content family is a frozen dataclass. `parse_content()` builds one from
the type tag plus the type-specific object of a webhook message (or an
outbound request), `to_dict()` serializes back to the wire shape
`{<type>: {...}}` that is persisted in messages.content.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union, get_args

from wabroker.domain.errors import ValidationError

MessageType = Literal[
    "text",
    "image",
    "video",
    "audio",
    "document",
    "sticker",
    "location",
    "contacts",
    "interactive",
    "template",
    "reaction",
]

MediaType = Literal["image", "video", "audio", "document", "sticker"]

MESSAGE_TYPES: tuple[str, ...] = get_args(MessageType)
MEDIA_TYPES: tuple[str, ...] = get_args(MediaType)

PREVIEW_MAX_LENGTH = 100

# Fallback labels when the content carries nothing better to show
_MEDIA_LABELS: dict[str, str] = {
    "image": "📷 Image",
    "video": "🎥 Video",
    "audio": "🎵 Audio",
    "document": "📎 Document",
    "sticker": "🎨 Sticker",
}


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class TextContent:
    body: str
    preview_url: bool | None = None

    @property
    def message_type(self) -> str:
        return "text"

    def to_payload(self) -> dict[str, Any]:
        return _drop_none({"body": self.body, "preview_url": self.preview_url})

    def preview(self) -> str:
        return self.body


@dataclass(frozen=True)
class MediaContent:
    """Image, video, audio, document or sticker, by id (uploaded) or link."""

    media_type: str
    id: str | None = None
    link: str | None = None
    caption: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    sha256: str | None = None

    @property
    def message_type(self) -> str:
        return self.media_type

    def to_payload(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "link": self.link,
                "caption": self.caption,
                "filename": self.filename,
                "mime_type": self.mime_type,
                "sha256": self.sha256,
            }
        )

    def preview(self) -> str:
        label = _MEDIA_LABELS[self.media_type]
        if self.media_type in ("image", "video"):
            return self.caption or label
        if self.media_type == "document":
            return self.filename or label
        return label


@dataclass(frozen=True)
class LocationContent:
    latitude: float
    longitude: float
    name: str | None = None
    address: str | None = None

    @property
    def message_type(self) -> str:
        return "location"

    def to_payload(self) -> dict[str, Any]:
        return _drop_none(
            {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "name": self.name,
                "address": self.address,
            }
        )

    def preview(self) -> str:
        return f"📍 {self.name or 'Location'}"


@dataclass(frozen=True)
class ContactsContent:
    """Shared contact cards (vCard-like objects kept as mappings)."""

    contacts: tuple[dict[str, Any], ...] = ()

    @property
    def message_type(self) -> str:
        return "contacts"

    def to_payload(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self.contacts]

    def preview(self) -> str:
        return "👤 Contact"


@dataclass(frozen=True)
class InteractiveContent:
    """Interactive message.

    Inbound: a button or list reply (`reply_kind` is "button_reply" or
    "list_reply"). Outbound: the full interactive object in `definition`.
    """

    interactive_type: str
    reply_kind: str | None = None
    reply_id: str | None = None
    reply_title: str | None = None
    reply_description: str | None = None
    definition: dict[str, Any] | None = None

    @property
    def message_type(self) -> str:
        return "interactive"

    def to_payload(self) -> dict[str, Any]:
        if self.definition is not None:
            return dict(self.definition)
        payload: dict[str, Any] = {"type": self.interactive_type}
        if self.reply_kind:
            payload[self.reply_kind] = _drop_none(
                {
                    "id": self.reply_id,
                    "title": self.reply_title,
                    "description": self.reply_description,
                }
            )
        return payload

    def preview(self) -> str:
        return self.reply_title or "Interactive"


@dataclass(frozen=True)
class TemplateContent:
    name: str
    language_code: str
    components: tuple[dict[str, Any], ...] = ()

    @property
    def message_type(self) -> str:
        return "template"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "language": {"code": self.language_code},
        }
        if self.components:
            payload["components"] = [dict(c) for c in self.components]
        return payload

    def preview(self) -> str:
        return f"📄 {self.name}"


@dataclass(frozen=True)
class ReactionContent:
    message_id: str
    emoji: str = field(default="")

    @property
    def message_type(self) -> str:
        return "reaction"

    def to_payload(self) -> dict[str, Any]:
        return {"message_id": self.message_id, "emoji": self.emoji}

    def preview(self) -> str:
        return self.emoji or "👍"


MessageContent = Union[
    TextContent,
    MediaContent,
    LocationContent,
    ContactsContent,
    InteractiveContent,
    TemplateContent,
    ReactionContent,
]


def to_dict(content: MessageContent) -> dict[str, Any]:
    """Serialize content to the persisted wire shape {type: payload}."""
    return {content.message_type: content.to_payload()}


def message_preview(content: MessageContent) -> str:
    """Human-readable preview, truncated to PREVIEW_MAX_LENGTH characters."""
    return truncate_preview(content.preview())


def truncate_preview(text: str, limit: int = PREVIEW_MAX_LENGTH) -> str:
    return text[:limit]


def _require_mapping(message_type: str, data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError(f"missing or invalid {message_type} object")
    return data


def parse_content(message_type: str, data: Any) -> MessageContent:
    """Build typed content from a type tag and its type-specific object.

    Args:
        message_type: One of MESSAGE_TYPES.
        data: The object found under the type key (a list for "contacts").

    Returns:
        The matching content dataclass.

    Raises:
        ValidationError: Unknown type or malformed object.
    """
    if message_type not in MESSAGE_TYPES:
        raise ValidationError(f"unsupported message type: {message_type}")

    if message_type == "contacts":
        if not isinstance(data, list) or not all(isinstance(c, dict) for c in data):
            raise ValidationError("contacts must be a list of objects")
        return ContactsContent(contacts=tuple(data))

    obj = _require_mapping(message_type, data)

    if message_type == "text":
        body = obj.get("body")
        if not isinstance(body, str):
            raise ValidationError("text.body is required")
        return TextContent(body=body, preview_url=obj.get("preview_url"))

    if message_type in MEDIA_TYPES:
        if not obj.get("id") and not obj.get("link"):
            raise ValidationError(f"{message_type} requires id or link")
        return MediaContent(
            media_type=message_type,
            id=obj.get("id"),
            link=obj.get("link"),
            caption=obj.get("caption"),
            filename=obj.get("filename"),
            mime_type=obj.get("mime_type"),
            sha256=obj.get("sha256"),
        )

    if message_type == "location":
        try:
            latitude = float(obj["latitude"])
            longitude = float(obj["longitude"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("location requires latitude and longitude") from None
        return LocationContent(
            latitude=latitude,
            longitude=longitude,
            name=obj.get("name"),
            address=obj.get("address"),
        )

    if message_type == "interactive":
        interactive_type = obj.get("type")
        if not isinstance(interactive_type, str):
            raise ValidationError("interactive.type is required")
        for reply_kind in ("button_reply", "list_reply"):
            reply = obj.get(reply_kind)
            if isinstance(reply, dict):
                return InteractiveContent(
                    interactive_type=interactive_type,
                    reply_kind=reply_kind,
                    reply_id=reply.get("id"),
                    reply_title=reply.get("title"),
                    reply_description=reply.get("description"),
                )
        return InteractiveContent(interactive_type=interactive_type, definition=dict(obj))

    if message_type == "template":
        name = obj.get("name")
        language = obj.get("language")
        code = language.get("code") if isinstance(language, dict) else language
        if not name or not code:
            raise ValidationError("template requires name and language code")
        return TemplateContent(
            name=name,
            language_code=code,
            components=tuple(obj.get("components") or ()),
        )

    # reaction
    message_id = obj.get("message_id")
    if not message_id:
        raise ValidationError("reaction.message_id is required")
    return ReactionContent(message_id=message_id, emoji=obj.get("emoji") or "")


def content_from_dict(data: dict[str, Any]) -> MessageContent:
    """Inverse of to_dict() for rows read back from the store."""
    if not isinstance(data, dict) or len(data) != 1:
        raise ValidationError("content must hold exactly one type key")
    ((message_type, payload),) = data.items()
    return parse_content(message_type, payload)
