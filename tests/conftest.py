"""Shared pytest fixtures for wabroker tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from wabroker.api import deps  # noqa: E402
from wabroker.api.factory import create_app  # noqa: E402
from wabroker.domain.dispatcher import WebhookDispatcher  # noqa: E402
from wabroker.domain.outbound import OutboundSendCoordinator  # noqa: E402
from wabroker.domain.reconciliation import ReconciliationEngine  # noqa: E402

from .helpers import BUSINESS_PHONE_NUMBER_ID, FakeSender, MemoryStore  # noqa: E402


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def engine(store):
    return ReconciliationEngine(
        store.unit_of_work, business_phone_number_id=BUSINESS_PHONE_NUMBER_ID
    )


@pytest.fixture
def dispatcher(store, engine):
    return WebhookDispatcher(store.unit_of_work, engine)


@pytest.fixture
def coordinator(store, sender):
    return OutboundSendCoordinator(
        store.unit_of_work, sender, business_phone_number_id=BUSINESS_PHONE_NUMBER_ID
    )


def _build_client(role, store, sender):
    app = create_app(role=role)
    app.dependency_overrides[deps.get_unit_of_work] = lambda: store.unit_of_work
    app.dependency_overrides[deps.get_sender] = lambda: sender
    app.dependency_overrides[deps.get_business_phone_number_id] = (
        lambda: BUSINESS_PHONE_NUMBER_ID
    )
    return TestClient(app)


@pytest.fixture
def client(store, sender, monkeypatch):
    """Public app backed by the in-memory store and the fake sender."""
    monkeypatch.delenv("META_APP_SECRET", raising=False)
    return _build_client("public", store, sender)


@pytest.fixture
def worker_client(store, sender):
    """Worker app backed by the in-memory store (no auth mock)."""
    return _build_client("worker", store, sender)
