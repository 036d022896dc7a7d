"""Postgres unit of work - repositories bound to one txn() cursor."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from wabroker.domain.repositories import Repositories
from wabroker.infra.db import txn
from wabroker.infra.repositories.conversations_repository import PgConversationRepository
from wabroker.infra.repositories.messages_repository import PgMessageRepository
from wabroker.infra.repositories.users_repository import PgUserRepository
from wabroker.infra.repositories.webhook_logs_repository import PgWebhookLogRepository


@contextmanager
def pg_unit_of_work() -> Iterator[Repositories]:
    """Open a transaction and yield the repositories sharing its cursor.

    Commits on clean exit, rolls back when the block raises.
    """
    with txn() as cur:
        yield Repositories(
            users=PgUserRepository(cur),
            conversations=PgConversationRepository(cur),
            messages=PgMessageRepository(cur),
            webhook_logs=PgWebhookLogRepository(cur),
        )
