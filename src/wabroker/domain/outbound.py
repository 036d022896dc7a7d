"""Outbound send coordinator - provider send + matching persistence.

Outbound sends build the same conversational state as inbound traffic
(user + open conversation + message + last-message fields), except that the
unread counter is never touched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from wabroker.domain.content import MessageContent, message_preview
from wabroker.domain.errors import DuplicateError
from wabroker.domain.models import Message
from wabroker.domain.reconciliation import resolve_participants
from wabroker.domain.repositories import UnitOfWork
from wabroker.infra.time import utc_now
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import id_prefix, mask_wa_id, safe_log_context
from wabroker.whatsapp.models import SendResult

logger = get_logger(__name__)


class Sender(Protocol):
    """External send capability (Cloud API client in production)."""

    def send_message(
        self,
        to: str,
        message_type: str,
        body: Any,
        *,
        reply_to: str | None = None,
    ) -> SendResult: ...

    def mark_as_read(self, message_id: str) -> None: ...


@dataclass(frozen=True)
class OutboundResult:
    message: Message
    wa_id: str


class OutboundSendCoordinator:
    """Sends locally originated messages and records them.

    Args:
        unit_of_work: Factory of transactional repository bundles.
        sender: External send capability.
        business_phone_number_id: Our Cloud API phone number id (the `from`).
    """

    def __init__(
        self,
        unit_of_work: UnitOfWork,
        sender: Sender,
        *,
        business_phone_number_id: str,
    ) -> None:
        self._unit_of_work = unit_of_work
        self._sender = sender
        self._business_phone_number_id = business_phone_number_id

    def send(
        self,
        to: str,
        content: MessageContent,
        *,
        reply_to: str | None = None,
    ) -> OutboundResult:
        """Send one message and persist it as outbound.

        Args:
            to: Recipient wa_id / phone number.
            content: Typed message content.
            reply_to: Optional wamid to quote.

        Returns:
            OutboundResult with the stored message and the provider wa_id.
            When the provider reuses a message id already stored, that stored
            message is returned and nothing else changes.

        Raises:
            SendError: Propagated untouched from the sender; nothing persisted.
        """
        result = self._sender.send_message(
            to,
            content.message_type,
            content.to_payload(),
            reply_to=reply_to,
        )

        # Provider normalizes the address; prefer its wa_id as identity
        wa_id = result.wa_id or to
        status = "sent" if result.confirmed else "pending"
        now = utc_now()

        try:
            with self._unit_of_work() as repos:
                _, conversation = resolve_participants(repos, wa_id=wa_id, display_name=None)

                message = repos.messages.create(
                    conversation_id=conversation.id,
                    wa_message_id=result.message_id,
                    from_address=self._business_phone_number_id,
                    to_address=wa_id,
                    content=content,
                    direction="outbound",
                    status=status,
                    timestamp=now,
                    context_message_id=reply_to,
                )

                repos.conversations.touch_last_message(
                    conversation.id,
                    message_id=message.id,
                    preview=message_preview(content),
                    at=now,
                    increment_unread=False,
                )
        except DuplicateError:
            # The provider accepted the send; answer with the row holding its id
            with self._unit_of_work() as repos:
                existing = repos.messages.find_by_wa_message_id(result.message_id)
            if existing is None:
                raise
            logger.warning(
                "provider message id already stored",
                extra={
                    "extra_fields": safe_log_context(
                        message_id_prefix=id_prefix(result.message_id),
                        message_db_id=existing.id,
                    )
                },
            )
            return OutboundResult(message=existing, wa_id=wa_id)

        logger.info(
            "outbound message stored",
            extra={
                "extra_fields": safe_log_context(
                    message_id_prefix=id_prefix(result.message_id),
                    message_type=content.message_type,
                    wa_id=mask_wa_id(wa_id),
                    conversation_id=conversation.id,
                    status=status,
                )
            },
        )
        return OutboundResult(message=message, wa_id=wa_id)

    def mark_as_read(self, wa_message_id: str) -> None:
        """Forward a read receipt to the provider (no local state change)."""
        self._sender.mark_as_read(wa_message_id)
