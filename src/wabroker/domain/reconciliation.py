"""Reconciliation engine - fold inbound webhook events into conversation state.

Each event is applied in its own unit of work (one transaction):

Incoming message:
  1. find-or-create user by wa_id (refresh display name if it changed)
  2. find-or-create the user's single open conversation
  3. derive preview from content
  4. create the message (inbound, delivered, event timestamp)
     - wamid already stored means the event was already applied: the
       transaction rolls back, so a replay changes nothing
  5. conversation last-message fields + unread += 1, one update
  6. user last activity

Status update:
  1. locate message by wamid (unknown -> no-op, statuses may arrive first)
  2. set status, stamp delivered_at / read_at with the event time
  3. propagate provider conversation id / expiry (best-effort)
"""

from __future__ import annotations

from wabroker.domain.content import message_preview
from wabroker.domain.errors import DuplicateError, NotFoundError
from wabroker.domain.models import Conversation, Message, User
from wabroker.domain.repositories import Repositories, UnitOfWork
from wabroker.infra.time import utc_now
from wabroker.observability.logging import get_logger
from wabroker.observability.redaction import id_prefix, mask_wa_id, safe_log_context
from wabroker.whatsapp.models import InboundMessageEvent, StatusUpdateEvent

logger = get_logger(__name__)


def resolve_participants(
    repos: Repositories,
    *,
    wa_id: str,
    display_name: str | None,
) -> tuple[User, Conversation]:
    """Find-or-create the user and their open conversation.

    Shared by inbound reconciliation and outbound sends so both paths build
    the same conversational state.

    Args:
        repos: Repositories bound to the current transaction.
        wa_id: Contact WhatsApp id (also used as phone number).
        display_name: Profile name if known. Refreshes a stored name that differs.

    Returns:
        Tuple of (user, conversation).
    """
    user, user_created = repos.users.get_or_create(
        wa_id=wa_id,
        phone_number=wa_id,
        name=display_name or wa_id,
    )

    if not user_created and display_name and user.name != display_name:
        user = repos.users.update(wa_id, {"name": display_name})

    conversation, conversation_created = repos.conversations.get_or_create_open(
        user_id=user.id,
        phone_number=user.phone_number,
    )

    if user_created or conversation_created:
        logger.info(
            "participants resolved",
            extra={
                "extra_fields": safe_log_context(
                    wa_id=mask_wa_id(wa_id),
                    user_id=user.id,
                    user_created=user_created,
                    conversation_id=conversation.id,
                    conversation_created=conversation_created,
                )
            },
        )

    return user, conversation


class ReconciliationEngine:
    """Applies inbound events against the repositories.

    Args:
        unit_of_work: Factory of transactional repository bundles.
        business_phone_number_id: Our Cloud API phone number id, recorded as
            the `to` address of inbound messages.
    """

    def __init__(self, unit_of_work: UnitOfWork, *, business_phone_number_id: str) -> None:
        self._unit_of_work = unit_of_work
        self._business_phone_number_id = business_phone_number_id

    def handle_incoming_message(self, event: InboundMessageEvent) -> Message | None:
        """Apply one incoming message.

        Returns:
            The stored message, or None when the event is a replay.
        """
        log_ctx = safe_log_context(
            message_id_prefix=id_prefix(event.wa_message_id),
            message_type=event.message_type,
            wa_id=mask_wa_id(event.from_address),
        )
        logger.info("processing incoming message", extra={"extra_fields": log_ctx})

        try:
            with self._unit_of_work() as repos:
                if repos.messages.find_by_wa_message_id(event.wa_message_id) is not None:
                    raise DuplicateError("Message already exists")

                user, conversation = resolve_participants(
                    repos,
                    wa_id=event.from_address,
                    display_name=event.sender_name,
                )

                preview = message_preview(event.content)

                # Raises DuplicateError when a concurrent delivery stored it first
                message = repos.messages.create(
                    conversation_id=conversation.id,
                    wa_message_id=event.wa_message_id,
                    from_address=event.from_address,
                    to_address=self._business_phone_number_id,
                    content=event.content,
                    direction="inbound",
                    status="delivered",
                    timestamp=event.timestamp,
                    context_message_id=event.reply_to_id,
                )

                now = utc_now()
                repos.conversations.touch_last_message(
                    conversation.id,
                    message_id=message.id,
                    preview=preview,
                    at=now,
                    increment_unread=True,
                )
                repos.users.touch_last_message(user.wa_id, now)
        except DuplicateError:
            # Unit of work rolled back: a replay leaves no trace
            logger.info(
                "duplicate incoming message ignored",
                extra={"extra_fields": log_ctx},
            )
            return None

        logger.info(
            "incoming message stored",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    conversation_id=conversation.id,
                    message_db_id=message.id,
                )
            },
        )
        return message

    def handle_status_update(self, event: StatusUpdateEvent) -> Message | None:
        """Apply one delivery status.

        Returns:
            The updated message, or None when the message is not stored yet.
        """
        log_ctx = safe_log_context(
            message_id_prefix=id_prefix(event.wa_message_id),
            status=event.status,
        )

        with self._unit_of_work() as repos:
            message = repos.messages.update_status(
                event.wa_message_id,
                event.status,
                delivered_at=event.timestamp if event.status == "delivered" else None,
                read_at=event.timestamp if event.status == "read" else None,
                failed_reason=event.error_title if event.status == "failed" else None,
            )

            if message is None:
                logger.debug(
                    "status for unknown message ignored",
                    extra={"extra_fields": log_ctx},
                )
                return None

            fields = {}
            if event.wa_conversation_id:
                fields["wa_conversation_id"] = event.wa_conversation_id
            if event.conversation_expires_at:
                fields["expires_at"] = event.conversation_expires_at
            if event.conversation_origin:
                fields["origin"] = event.conversation_origin

            if fields:
                try:
                    repos.conversations.update(message.conversation_id, fields)
                except NotFoundError:
                    logger.warning(
                        "conversation for status update not found",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, conversation_id=message.conversation_id
                            )
                        },
                    )

        logger.debug("message status updated", extra={"extra_fields": log_ctx})
        return message
