"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from kitchen_bookings.application import notification_service
from kitchen_bookings.application.idempotency_service import reset_idempotency_service
from kitchen_bookings.application.notification_service import reset_notification_dispatcher
from kitchen_bookings.infrastructure.booking_repository import (
    get_booking_repository,
    reset_booking_repository,
)
from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.payment_gateway import (
    get_payment_gateway,
    reset_payment_gateway,
)
from kitchen_bookings.main import app

MANAGER_TOKEN = "dev-manager-token"
OTHER_MANAGER_TOKEN = "other-manager-token"


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    """Give every test its own store, gateway and idempotency cache."""
    monkeypatch.setattr(settings, "booking_store", "memory")
    monkeypatch.setattr(settings, "payment_provider", "sandbox")
    monkeypatch.setattr(settings, "notification_webhook_url", "")
    monkeypatch.setattr(settings, "manager_tokens", {MANAGER_TOKEN: 1, OTHER_MANAGER_TOKEN: 2})
    reset_booking_repository()
    reset_payment_gateway()
    reset_notification_dispatcher()
    reset_idempotency_service()
    yield
    reset_booking_repository()
    reset_payment_gateway()
    reset_notification_dispatcher()
    reset_idempotency_service()


@pytest.fixture
def client() -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client() -> TestClient:
    """Create test client authenticated as manager 1."""
    return TestClient(app, headers={"Authorization": f"Bearer {MANAGER_TOKEN}"})


@pytest.fixture
def other_manager_client() -> TestClient:
    """Create test client authenticated as manager 2."""
    return TestClient(app, headers={"Authorization": f"Bearer {OTHER_MANAGER_TOKEN}"})


@pytest.fixture
async def api_booking(seed, make_aggregate, make_storage, make_equipment):
    """Booking 12 with storage bookings 7 and 8 and one equipment rental."""
    return await seed(
        make_aggregate(storage=[make_storage(7), make_storage(8)], equipment=[make_equipment(3)])
    )


@pytest.fixture
def gateway():
    """The gateway the application resolves."""
    return get_payment_gateway()


@pytest.fixture
def repository():
    """The repository the application resolves."""
    return get_booking_repository()


@pytest.fixture
def dispatcher(dispatcher, monkeypatch):
    """The recording dispatcher, installed as the one the application resolves."""
    monkeypatch.setattr(notification_service, "_dispatcher", dispatcher)
    return dispatcher
