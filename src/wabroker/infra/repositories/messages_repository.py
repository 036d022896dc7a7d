"""Messages repository - one row per provider message id (wamid).

Uses raw SQL with psycopg2 (no ORM). Content is persisted as JSONB in the
Cloud API wire shape ({<type>: {...}}).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from wabroker.domain.content import MessageContent, content_from_dict, to_dict
from wabroker.domain.errors import DuplicateError, NotFoundError
from wabroker.domain.models import Message, Page
from wabroker.infra.db import fetchall, fetchone

_COLUMNS = """
    id, conversation_id, wa_message_id, from_address, to_address, content,
    direction, status, timestamp, context_message_id, delivered_at, read_at,
    failed_reason, created_at, updated_at
"""


def _row_to_message(row: tuple[Any, ...]) -> Message:
    return Message(
        id=str(row[0]),
        conversation_id=str(row[1]),
        wa_message_id=row[2],
        from_address=row[3],
        to_address=row[4],
        content=content_from_dict(row[5]),
        direction=row[6],
        status=row[7],
        timestamp=row[8],
        context_message_id=row[9],
        delivered_at=row[10],
        read_at=row[11],
        failed_reason=row[12],
        created_at=row[13],
        updated_at=row[14],
    )


class PgMessageRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def create(
        self,
        *,
        conversation_id: str,
        wa_message_id: str,
        from_address: str,
        to_address: str,
        content: MessageContent,
        direction: str,
        status: str,
        timestamp: datetime,
        context_message_id: str | None = None,
    ) -> Message:
        """Insert a message.

        Raises:
            DuplicateError: wa_message_id already stored. ON CONFLICT keeps the
                surrounding transaction usable for the caller.
        """
        row = fetchone(
            self._cur,
            f"""
            INSERT INTO messages (
                conversation_id, wa_message_id, from_address, to_address,
                type, content, direction, status, timestamp, context_message_id
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (wa_message_id) DO NOTHING
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (
                conversation_id,
                wa_message_id,
                from_address,
                to_address,
                content.message_type,
                Json(to_dict(content)),
                direction,
                status,
                timestamp,
                context_message_id,
            ),
        )
        if row is None:
            raise DuplicateError("Message already exists")
        return _row_to_message(row)

    def get(self, message_id: str) -> Message:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM messages WHERE id = %s",  # noqa: S608
            (message_id,),
        )
        if row is None:
            raise NotFoundError("Message not found")
        return _row_to_message(row)

    def find_by_wa_message_id(self, wa_message_id: str) -> Message | None:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM messages WHERE wa_message_id = %s",  # noqa: S608
            (wa_message_id,),
        )
        return _row_to_message(row) if row else None

    def update_status(
        self,
        wa_message_id: str,
        status: str,
        *,
        delivered_at: datetime | None = None,
        read_at: datetime | None = None,
        failed_reason: str | None = None,
    ) -> Message | None:
        row = fetchone(
            self._cur,
            f"""
            UPDATE messages
            SET status = %s,
                delivered_at = COALESCE(%s, delivered_at),
                read_at = COALESCE(%s, read_at),
                failed_reason = COALESCE(%s, failed_reason),
                updated_at = now()
            WHERE wa_message_id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (status, delivered_at, read_at, failed_reason, wa_message_id),
        )
        return _row_to_message(row) if row else None

    def list_for_conversation(
        self, conversation_id: str, *, page: int, limit: int
    ) -> Page:
        total = fetchone(
            self._cur,
            "SELECT count(*) FROM messages WHERE conversation_id = %s",
            (conversation_id,),
        )[0]
        rows = fetchall(
            self._cur,
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE conversation_id = %s
            ORDER BY timestamp DESC, created_at DESC
            LIMIT %s OFFSET %s
            """,  # noqa: S608
            (conversation_id, limit, (page - 1) * limit),
        )
        # Newest page first, oldest-to-newest inside the page
        items = [_row_to_message(r) for r in reversed(rows)]
        return Page(items=items, total=total, page=page, limit=limit)
