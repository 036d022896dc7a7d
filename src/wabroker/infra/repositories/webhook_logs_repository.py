"""Webhook logs repository - raw batch audit trail and retry queue.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor
from psycopg2.extras import Json

from wabroker.domain.errors import NotFoundError
from wabroker.domain.models import WebhookLog
from wabroker.infra.db import fetchall, fetchone

_COLUMNS = """
    id, event_type, payload, status, processed_at, error, retry_count,
    created_at, updated_at
"""


def _row_to_log(row: tuple[Any, ...]) -> WebhookLog:
    return WebhookLog(
        id=str(row[0]),
        event_type=row[1],
        payload=row[2],
        status=row[3],
        processed_at=row[4],
        error=row[5],
        retry_count=row[6],
        created_at=row[7],
        updated_at=row[8],
    )


class PgWebhookLogRepository:
    def __init__(self, cur: PgCursor) -> None:
        self._cur = cur

    def create(self, *, event_type: str, payload: dict[str, Any]) -> WebhookLog:
        row = fetchone(
            self._cur,
            f"""
            INSERT INTO webhook_logs (event_type, payload)
            VALUES (%s, %s)
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (event_type, Json(payload)),
        )
        return _row_to_log(row)

    def get(self, log_id: str) -> WebhookLog:
        row = fetchone(
            self._cur,
            f"SELECT {_COLUMNS} FROM webhook_logs WHERE id = %s",  # noqa: S608
            (log_id,),
        )
        if row is None:
            raise NotFoundError("Webhook log not found")
        return _row_to_log(row)

    def _execute_one(self, query: str, params: tuple) -> None:
        self._cur.execute(query, params)
        if self._cur.rowcount == 0:
            raise NotFoundError("Webhook log not found")

    def mark_processed(self, log_id: str, at: datetime) -> None:
        self._execute_one(
            """
            UPDATE webhook_logs
            SET status = 'processed', processed_at = %s, error = NULL,
                updated_at = now()
            WHERE id = %s
            """,
            (at, log_id),
        )

    def mark_failed(self, log_id: str, error: str) -> None:
        self._execute_one(
            """
            UPDATE webhook_logs
            SET status = 'failed', error = %s, updated_at = now()
            WHERE id = %s
            """,
            (error, log_id),
        )

    def increment_retry_count(self, log_id: str) -> None:
        self._execute_one(
            """
            UPDATE webhook_logs
            SET retry_count = retry_count + 1, updated_at = now()
            WHERE id = %s
            """,
            (log_id,),
        )

    def claim_retryable(self, *, max_retries: int, limit: int) -> list[WebhookLog]:
        """Move retryable failed logs back to pending and return them, oldest first.

        SKIP LOCKED lets overlapping sweeps claim disjoint sets.
        """
        rows = fetchall(
            self._cur,
            f"""
            UPDATE webhook_logs
            SET status = 'pending', updated_at = now()
            WHERE id IN (
                SELECT id FROM webhook_logs
                WHERE status = 'failed' AND retry_count < %s
                ORDER BY created_at ASC
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {_COLUMNS}
            """,  # noqa: S608
            (max_retries, limit),
        )
        logs = [_row_to_log(r) for r in rows]
        # RETURNING order is unspecified
        logs.sort(key=lambda log: log.created_at)
        return logs
