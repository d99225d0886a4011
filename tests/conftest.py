"""Shared fixtures and builders for booking tests."""

from datetime import date

import pytest

from kitchen_bookings.application.approval_service import BookingApprovalService
from kitchen_bookings.application.notification_service import NotificationDispatcher, OutcomeSummary
from kitchen_bookings.domain.entities import (
    BookingAggregate,
    EquipmentItem,
    KitchenBooking,
    StorageItem,
    StorageType,
)
from kitchen_bookings.domain.state_machines import BookingStatus, PaymentStatus
from kitchen_bookings.domain.value_objects import ManagerPrincipal
from kitchen_bookings.infrastructure.booking_repository import InMemoryBookingRepository
from kitchen_bookings.infrastructure.payment_gateway import SandboxPaymentGateway

MANAGER_ID = 1
CHEF_ID = 5


def build_storage(
    storage_booking_id: int,
    price_cents: int | None = 2500,
    authorization_ref: str | None = "auto",
    status: BookingStatus = BookingStatus.PENDING,
    name: str | None = None,
) -> StorageItem:
    """Build a storage item with its own authorization hold by default."""
    if authorization_ref == "auto":
        authorization_ref = f"pi_storage_{storage_booking_id}"
    return StorageItem(
        id=100 + storage_booking_id,
        storage_booking_id=storage_booking_id,
        name=name or f"Walk-in cooler {storage_booking_id}",
        storage_type=StorageType.COLD,
        status=status,
        start_date=date(2026, 1, 5),
        end_date=date(2026, 1, 9),
        total_price_cents=price_cents,
        authorization_ref=authorization_ref,
        payment_status=PaymentStatus.AUTHORIZED if authorization_ref else PaymentStatus.PENDING,
    )


def build_aggregate(
    booking_id: int = 12,
    manager_id: int = MANAGER_ID,
    chef_id: int | None = CHEF_ID,
    price_cents: int | None = 10000,
    authorization_ref: str | None = "auto",
    status: BookingStatus = BookingStatus.PENDING,
    storage: list[StorageItem] | None = None,
    equipment: list[EquipmentItem] | None = None,
    timezone: str = "America/St_Johns",
) -> BookingAggregate:
    """Build a pending kitchen booking aggregate."""
    if authorization_ref == "auto":
        authorization_ref = f"pi_kitchen_{booking_id}"
    booking = KitchenBooking(
        id=booking_id,
        chef_id=chef_id,
        manager_id=manager_id,
        kitchen_id=3,
        location_id=2,
        status=status,
        booking_date=date(2026, 1, 5),
        start_time="09:00",
        end_time="13:00",
        timezone=timezone,
        total_price_cents=price_cents,
        authorization_ref=authorization_ref,
        payment_status=PaymentStatus.AUTHORIZED if authorization_ref else PaymentStatus.PENDING,
        kitchen_name="Harbourside Kitchen",
        chef_name="Sam Chef",
    )
    return BookingAggregate(
        id=booking_id,
        booking=booking,
        storage_items=storage or [],
        equipment_items=equipment or [],
    )


def build_equipment(equipment_booking_id: int, name: str = "Stand mixer") -> EquipmentItem:
    return EquipmentItem(
        id=200 + equipment_booking_id,
        equipment_booking_id=equipment_booking_id,
        name=name,
        total_price_cents=1500,
    )


async def seed_booking(
    repository: InMemoryBookingRepository,
    gateway: SandboxPaymentGateway,
    aggregate: BookingAggregate,
) -> BookingAggregate:
    """Store an aggregate and place holds for each of its authorized units."""
    held: dict[str, int] = {}
    for unit in aggregate.billable_units():
        if unit.authorization_ref:
            held[unit.authorization_ref] = held.get(unit.authorization_ref, 0) + (unit.total_price_cents or 0)
    for ref, amount in held.items():
        gateway.authorize(ref, amount)
    await repository.add(aggregate)
    return aggregate


@pytest.fixture
def gateway() -> SandboxPaymentGateway:
    return SandboxPaymentGateway()


@pytest.fixture
def repository() -> InMemoryBookingRepository:
    return InMemoryBookingRepository()


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps every delivered summary for assertions."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, int, OutcomeSummary]] = []

    async def notify(self, chef_id: int, booking_id: int, summary: OutcomeSummary) -> None:
        self.sent.append((chef_id, booking_id, summary))


@pytest.fixture
def dispatcher() -> RecordingNotificationDispatcher:
    return RecordingNotificationDispatcher()


@pytest.fixture
def manager() -> ManagerPrincipal:
    return ManagerPrincipal(manager_id=MANAGER_ID)


@pytest.fixture
def service(
    repository: InMemoryBookingRepository,
    gateway: SandboxPaymentGateway,
    dispatcher: RecordingNotificationDispatcher,
) -> BookingApprovalService:
    return BookingApprovalService(
        repository=repository,
        gateway=gateway,
        dispatcher=dispatcher,
        payment_timeout_seconds=0.5,
        lock_ttl_seconds=60,
    )


@pytest.fixture
def make_aggregate():
    return build_aggregate


@pytest.fixture
def make_storage():
    return build_storage


@pytest.fixture
def make_equipment():
    return build_equipment


@pytest.fixture
def seed(repository: InMemoryBookingRepository, gateway: SandboxPaymentGateway):
    """Store an aggregate in the test repository with matching sandbox holds."""

    async def _seed(aggregate: BookingAggregate) -> BookingAggregate:
        return await seed_booking(repository, gateway, aggregate)

    return _seed
