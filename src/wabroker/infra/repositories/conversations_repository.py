"""Conversations repository - one open conversation per user.

Uses raw SQL with psycopg2 (no ORM).

The "single open conversation" rule is enforced by the partial unique index
conversations_one_open_per_user (user_id WHERE status <> 'closed'):
find-or-create inserts with ON CONFLICT DO NOTHING and reads back the
winner, and a status change that would open a second conversation fails
with UniqueViolation, surfaced as DuplicateError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from wabroker.domain.errors import DuplicateError, NotFoundError
from wabroker.domain.models import Conversation, Page
from wabroker.infra.db import fetchall, fetchone

_COLUMNS = """
    id, user_id, phone_number, status, wa_conversation_id, unread_count,
    last_message_id, last_message_at, last_message_preview, assigned_to,
    tags, expires_at, origin, created_at, updated_at
"""

_UPDATABLE = {"status", "assigned_to", "wa_conversation_id", "expires_at", "origin"}


def _row_to_conversation(row: tuple[Any, ...]) -> Conversation:
    return Conversation(
        id=str(row[0]),
        user_id=str(row[1]),
        phone_number=row[2],
        status=row[3],
        wa_conversation_id=row[4],
        unread_count=row[5],
        last_message_id=str(row[6]) if row[6] else None,
        last_message_at=row[7],
        last_message_preview=row[8],
        assigned_to=row[9],
        tags=list(row[10] or []),
        expires_at=row[11],
        origin=row[12],
        created_at=row[13],
        updated_at=row[14],
    )


class PgConversationRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def get_or_create_open(
        self, *, user_id: str, phone_number: str
    ) -> tuple[Conversation, bool]:
        row = fetchone(
            self._cur,
            f"""
            INSERT INTO conversations (user_id, phone_number)
            VALUES (%s, %s)
            ON CONFLICT (user_id) WHERE status <> 'closed' DO NOTHING
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (user_id, phone_number),
        )
        if row is not None:
            return _row_to_conversation(row), True

        conversation = self.find_open_for_user(user_id)
        if conversation is None:
            raise NotFoundError("Open conversation vanished during find-or-create")
        return conversation, False

    def get(self, conversation_id: str) -> Conversation:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM conversations WHERE id = %s",  # noqa: S608
            (conversation_id,),
        )
        if row is None:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def find_open_for_user(self, user_id: str) -> Conversation | None:
        row = fetchone(
            self._cur,
            f"""
            SELECT {_COLUMNS} FROM conversations
            WHERE user_id = %s AND status <> 'closed'
            """,  # noqa: S608
            (user_id,),
        )
        return _row_to_conversation(row) if row else None

    def list_for_user(self, user_id: str) -> list[Conversation]:
        rows = fetchall(
            self._cur,
            f"""
            SELECT {_COLUMNS} FROM conversations
            WHERE user_id = %s
            ORDER BY created_at DESC
            """,  # noqa: S608
            (user_id,),
        )
        return [_row_to_conversation(r) for r in rows]

    def list(
        self,
        *,
        page: int,
        limit: int,
        status: str | None = None,
        assigned_to: str | None = None,
        tags: list[str] | None = None,
    ) -> Page:
        where: list[str] = ["TRUE"]
        params: list = []
        if status is not None:
            where.append("status = %s")
            params.append(status)
        if assigned_to is not None:
            where.append("assigned_to = %s")
            params.append(assigned_to)
        if tags:
            where.append("tags @> %s::text[]")
            params.append(tags)
        clause = " AND ".join(where)

        total = fetchone(
            self._cur,
            f"SELECT count(*) FROM conversations WHERE {clause}",  # noqa: S608
            params,
        )[0]
        rows = fetchall(
            self._cur,
            f"""
            SELECT {_COLUMNS} FROM conversations
            WHERE {clause}
            ORDER BY last_message_at DESC NULLS LAST, created_at DESC
            LIMIT %s OFFSET %s
            """,  # noqa: S608
            [*params, limit, (page - 1) * limit],
        )
        return Page(
            items=[_row_to_conversation(r) for r in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def update(self, conversation_id: str, fields: dict[str, Any]) -> Conversation:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update conversation columns: {sorted(unknown)}")

        updates: list[str] = ["updated_at = now()"]
        params: list = []
        for column, value in fields.items():
            updates.append(f"{column} = %s")
            params.append(value)
        params.append(conversation_id)

        try:
            row = fetchone(
                self._cur,
                f"""
                UPDATE conversations
                SET {", ".join(updates)}
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,  # noqa: S608
                params,
            )
        except pg_errors.UniqueViolation:
            raise DuplicateError("User already has an open conversation") from None

        if row is None:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def touch_last_message(
        self,
        conversation_id: str,
        *,
        message_id: str,
        preview: str,
        at: datetime,
        increment_unread: bool,
    ) -> None:
        self._cur.execute(
            """
            UPDATE conversations
            SET last_message_id = %s,
                last_message_at = %s,
                last_message_preview = %s,
                unread_count = unread_count + %s,
                updated_at = now()
            WHERE id = %s
            """,
            (message_id, at, preview, 1 if increment_unread else 0, conversation_id),
        )
        if self._cur.rowcount == 0:
            raise NotFoundError("Conversation not found")

    def reset_unread(self, conversation_id: str) -> Conversation:
        row = fetchone(
            self._cur,
            f"""
            UPDATE conversations
            SET unread_count = 0, updated_at = now()
            WHERE id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (conversation_id,),
        )
        if row is None:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def add_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        row = fetchone(
            self._cur,
            f"""
            UPDATE conversations
            SET tags = tags || ARRAY(
                    SELECT t FROM unnest(%s::text[]) WITH ORDINALITY AS x(t, n)
                    WHERE NOT t = ANY(tags)
                    ORDER BY n
                ),
                updated_at = now()
            WHERE id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (tags, conversation_id),
        )
        if row is None:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def remove_tags(self, conversation_id: str, tags: list[str]) -> Conversation:
        row = fetchone(
            self._cur,
            f"""
            UPDATE conversations
            SET tags = ARRAY(
                    SELECT t FROM unnest(tags) WITH ORDINALITY AS x(t, n)
                    WHERE NOT t = ANY(%s::text[])
                    ORDER BY n
                ),
                updated_at = now()
            WHERE id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (tags, conversation_id),
        )
        if row is None:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def unread_total(self, user_id: str) -> int:
        row = fetchone(
            self._cur,
            """
            SELECT COALESCE(SUM(unread_count), 0) FROM conversations
            WHERE user_id = %s AND status = 'active'
            """,
            (user_id,),
        )
        return int(row[0])
