"""Dependency providers wiring the domain services to FastAPI routes.

Tests swap the store or the sender with `app.dependency_overrides`, e.g.
`app.dependency_overrides[get_unit_of_work] = lambda: memory_store.unit_of_work`.
"""

from __future__ import annotations

import os

from fastapi import Depends

from wabroker.domain.conversations import ConversationService
from wabroker.domain.dispatcher import WebhookDispatcher
from wabroker.domain.outbound import OutboundSendCoordinator, Sender
from wabroker.domain.reconciliation import ReconciliationEngine
from wabroker.domain.repositories import UnitOfWork
from wabroker.domain.users import UserService
from wabroker.infra.store import pg_unit_of_work
from wabroker.whatsapp.meta_client import MetaCloudClient

DEFAULT_WEBHOOK_MAX_RETRIES = 3

# Created on first use, shared across requests (one HTTP session)
_sender: MetaCloudClient | None = None


def get_unit_of_work() -> UnitOfWork:
    return pg_unit_of_work


def get_business_phone_number_id() -> str:
    return os.environ.get("META_PHONE_NUMBER_ID", "")


def get_webhook_max_retries() -> int:
    return int(os.environ.get("WEBHOOK_MAX_RETRIES", DEFAULT_WEBHOOK_MAX_RETRIES))


def get_sender() -> Sender:
    """Cloud API client. Raises RuntimeError when Meta config is missing."""
    global _sender
    if _sender is None:
        _sender = MetaCloudClient()
    return _sender


def get_engine(
    unit_of_work: UnitOfWork = Depends(get_unit_of_work),
    business_phone_number_id: str = Depends(get_business_phone_number_id),
) -> ReconciliationEngine:
    return ReconciliationEngine(unit_of_work, business_phone_number_id=business_phone_number_id)


def get_dispatcher(
    unit_of_work: UnitOfWork = Depends(get_unit_of_work),
    engine: ReconciliationEngine = Depends(get_engine),
) -> WebhookDispatcher:
    return WebhookDispatcher(unit_of_work, engine)


def get_coordinator(
    unit_of_work: UnitOfWork = Depends(get_unit_of_work),
    sender: Sender = Depends(get_sender),
    business_phone_number_id: str = Depends(get_business_phone_number_id),
) -> OutboundSendCoordinator:
    return OutboundSendCoordinator(
        unit_of_work, sender, business_phone_number_id=business_phone_number_id
    )


def get_conversation_service(
    unit_of_work: UnitOfWork = Depends(get_unit_of_work),
) -> ConversationService:
    return ConversationService(unit_of_work)


def get_user_service(unit_of_work: UnitOfWork = Depends(get_unit_of_work)) -> UserService:
    return UserService(unit_of_work)
