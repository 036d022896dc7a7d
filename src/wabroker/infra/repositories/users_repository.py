"""Users repository - WhatsApp contacts keyed by wa_id.

Uses raw SQL with psycopg2 (no ORM). Bound to the cursor of one transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from wabroker.domain.errors import NotFoundError
from wabroker.domain.models import User
from wabroker.infra.db import fetchone

_COLUMNS = """
    id, wa_id, phone_number, name, profile_picture, is_blocked,
    tags, custom_fields, last_message_at, created_at, updated_at
"""

# Columns update() may set; everything else is owned by other operations
_UPDATABLE = {"name", "profile_picture", "is_blocked", "custom_fields"}


def _row_to_user(row: tuple[Any, ...]) -> User:
    return User(
        id=str(row[0]),
        wa_id=row[1],
        phone_number=row[2],
        name=row[3],
        profile_picture=row[4],
        is_blocked=row[5],
        tags=list(row[6] or []),
        custom_fields=row[7] or {},
        last_message_at=row[8],
        created_at=row[9],
        updated_at=row[10],
    )


class PgUserRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def get_or_create(
        self, *, wa_id: str, phone_number: str, name: str
    ) -> tuple[User, bool]:
        """INSERT ... ON CONFLICT DO NOTHING; a lost race reads the winner's row."""
        row = fetchone(
            self._cur,
            f"""
            INSERT INTO users (wa_id, phone_number, name)
            VALUES (%s, %s, %s)
            ON CONFLICT (wa_id) DO NOTHING
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (wa_id, phone_number, name),
        )
        if row is not None:
            return _row_to_user(row), True

        user = self.find_by_wa_id(wa_id)
        if user is None:
            raise NotFoundError("User vanished during find-or-create")
        return user, False

    def get(self, user_id: str) -> User:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM users WHERE id = %s",  # noqa: S608
            (user_id,),
        )
        if row is None:
            raise NotFoundError("User not found")
        return _row_to_user(row)

    def find_by_wa_id(self, wa_id: str) -> User | None:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM users WHERE wa_id = %s",  # noqa: S608
            (wa_id,),
        )
        return _row_to_user(row) if row else None

    def update(self, wa_id: str, fields: dict[str, Any]) -> User:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update user columns: {sorted(unknown)}")

        updates: list[str] = ["updated_at = now()"]
        params: list = []
        for column, value in fields.items():
            updates.append(f"{column} = %s")
            params.append(Json(value) if column == "custom_fields" else value)
        params.append(wa_id)

        row = fetchone(
            self._cur,
            f"""
            UPDATE users
            SET {", ".join(updates)}
            WHERE wa_id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            params,
        )
        if row is None:
            raise NotFoundError("User not found")
        return _row_to_user(row)

    def touch_last_message(self, wa_id: str, at: datetime) -> None:
        self._cur.execute(
            """
            UPDATE users
            SET last_message_at = %s, updated_at = now()
            WHERE wa_id = %s
            """,
            (at, wa_id),
        )

    def add_tags(self, wa_id: str, tags: list[str]) -> User:
        # Union keeping existing order, new tags appended in given order
        row = fetchone(
            self._cur,
            f"""
            UPDATE users
            SET tags = tags || ARRAY(
                    SELECT t FROM unnest(%s::text[]) WITH ORDINALITY AS x(t, n)
                    WHERE NOT t = ANY(tags)
                    ORDER BY n
                ),
                updated_at = now()
            WHERE wa_id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (tags, wa_id),
        )
        if row is None:
            raise NotFoundError("User not found")
        return _row_to_user(row)

    def remove_tags(self, wa_id: str, tags: list[str]) -> User:
        row = fetchone(
            self._cur,
            f"""
            UPDATE users
            SET tags = ARRAY(
                    SELECT t FROM unnest(tags) WITH ORDINALITY AS x(t, n)
                    WHERE NOT t = ANY(%s::text[])
                    ORDER BY n
                ),
                updated_at = now()
            WHERE wa_id = %s
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (tags, wa_id),
        )
        if row is None:
            raise NotFoundError("User not found")
        return _row_to_user(row)
