"""Booking aggregate repository.

Loads a kitchen booking together with its storage and equipment line
items in one consistent read, and persists approval outcomes
atomically across every row a decision touches.

Two implementations are provided:
- InMemoryBookingRepository for development and tests
- SqlAlchemyBookingRepository for PostgreSQL via async SQLAlchemy
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from copy import deepcopy
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from kitchen_bookings.domain.entities import (
    BillableUnit,
    BookingAggregate,
    EquipmentItem,
    KitchenBooking,
    StorageItem,
    StorageType,
)
from kitchen_bookings.domain.exceptions import PersistenceError
from kitchen_bookings.domain.state_machines import BookingStatus, PaymentStatus
from kitchen_bookings.domain.value_objects import PaymentSettlement, UnitKind, UnitRef
from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.database import async_session_factory
from kitchen_bookings.infrastructure.models import (
    EquipmentBookingModel,
    KitchenBookingModel,
    StorageBookingModel,
)

logger = structlog.get_logger()


# ============================================================================
# Repository Interface
# ============================================================================


class BookingRepository(ABC):
    """Abstract repository for booking aggregates."""

    @abstractmethod
    async def load_for_approval(self, booking_id: int) -> BookingAggregate | None:
        """Load a booking with all of its line items.

        Args:
            booking_id: Kitchen booking ID.

        Returns:
            The aggregate, or None if the booking does not exist.
        """
        ...

    @abstractmethod
    async def acquire_decision_lock(self, booking_id: int, token: str, ttl_seconds: int) -> bool:
        """Claim the booking for one decision.

        Succeeds only while no other unexpired claim is held. Committed
        on its own, before any payment call.

        Returns:
            True if the claim was taken.
        """
        ...

    @abstractmethod
    async def release_decision_lock(self, booking_id: int, token: str) -> None:
        """Drop a claim taken with the given token (no-op if not held)."""
        ...

    @abstractmethod
    async def persist_decisions(
        self,
        booking_id: int,
        kitchen_outcome: BookingStatus | None,
        storage_outcomes: Mapping[int, BookingStatus],
        *,
        payments: Sequence[PaymentSettlement] = (),
        lock_token: str,
    ) -> None:
        """Write decision outcomes all-or-nothing.

        Every row is only updated while it is still pending. The
        decision lock is released in the same transaction.

        Args:
            booking_id: Kitchen booking ID.
            kitchen_outcome: New kitchen booking status, or None to leave it.
            storage_outcomes: New status per storage booking ID.
            payments: Payment state to store with the outcomes.
            lock_token: Token the decision lock was acquired with.

        Raises:
            PersistenceError: If anything fails; nothing was written.
        """
        ...

    @abstractmethod
    async def add(self, aggregate: BookingAggregate) -> BookingAggregate:
        """Store a new booking aggregate."""
        ...


def _settlements_by_unit(payments: Sequence[PaymentSettlement]) -> dict[UnitRef, PaymentSettlement]:
    return {settlement.unit: settlement for settlement in payments}


# ============================================================================
# In-Memory Repository
# ============================================================================


class InMemoryBookingRepository(BookingRepository):
    """In-memory repository for booking aggregates.

    Reads return deep copies. Writes are applied to a staged copy that
    replaces the stored aggregate only once every row write succeeded.
    A thread lock guards the store since the API test client runs the
    app on its own event loop thread.
    """

    def __init__(self) -> None:
        self._aggregates: dict[int, BookingAggregate] = {}
        self._locks: dict[int, tuple[str, datetime]] = {}
        self._mutex = threading.Lock()

    async def add(self, aggregate: BookingAggregate) -> BookingAggregate:
        with self._mutex:
            self._aggregates[aggregate.id] = deepcopy(aggregate)
        return aggregate

    async def load_for_approval(self, booking_id: int) -> BookingAggregate | None:
        with self._mutex:
            aggregate = self._aggregates.get(booking_id)
            return deepcopy(aggregate) if aggregate is not None else None

    async def acquire_decision_lock(self, booking_id: int, token: str, ttl_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        with self._mutex:
            if booking_id not in self._aggregates:
                return False
            held = self._locks.get(booking_id)
            if held is not None and held[0] != token and now - held[1] < timedelta(seconds=ttl_seconds):
                return False
            self._locks[booking_id] = (token, now)
            return True

    async def release_decision_lock(self, booking_id: int, token: str) -> None:
        with self._mutex:
            held = self._locks.get(booking_id)
            if held is not None and held[0] == token:
                del self._locks[booking_id]

    def is_locked(self, booking_id: int) -> bool:
        with self._mutex:
            return booking_id in self._locks

    async def persist_decisions(
        self,
        booking_id: int,
        kitchen_outcome: BookingStatus | None,
        storage_outcomes: Mapping[int, BookingStatus],
        *,
        payments: Sequence[PaymentSettlement] = (),
        lock_token: str,
    ) -> None:
        with self._mutex:
            current = self._aggregates.get(booking_id)
            if current is None:
                raise PersistenceError(booking_id, "booking no longer exists")
            held = self._locks.get(booking_id)
            if held is None or held[0] != lock_token:
                raise PersistenceError(booking_id, "decision lock is not held")

            staged = deepcopy(current)
            settlements = _settlements_by_unit(payments)
            try:
                if kitchen_outcome is not None:
                    self._write_kitchen_booking(staged, kitchen_outcome, settlements.get(staged.booking.unit_ref))
                for storage_booking_id, outcome in storage_outcomes.items():
                    ref = UnitRef(kind=UnitKind.STORAGE_BOOKING, id=storage_booking_id)
                    self._write_storage_item(staged, storage_booking_id, outcome, settlements.get(ref))
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(booking_id, str(e)) from e

            self._aggregates[booking_id] = staged
            del self._locks[booking_id]

        logger.debug(
            "Persisted booking decisions",
            booking_id=booking_id,
            kitchen_outcome=kitchen_outcome.value if kitchen_outcome else None,
            storage_outcomes={k: v.value for k, v in storage_outcomes.items()},
        )

    # -------------------------------------------------------------------------
    # Row writes
    # -------------------------------------------------------------------------

    def _write_kitchen_booking(
        self,
        staged: BookingAggregate,
        outcome: BookingStatus,
        settlement: PaymentSettlement | None,
    ) -> None:
        if not staged.booking.status.is_pending():
            raise PersistenceError(
                staged.id, f"kitchen booking is no longer pending ({staged.booking.status.value})"
            )
        staged.booking.status = outcome
        self._write_payment(staged.booking, settlement)

    def _write_storage_item(
        self,
        staged: BookingAggregate,
        storage_booking_id: int,
        outcome: BookingStatus,
        settlement: PaymentSettlement | None,
    ) -> None:
        item = staged.storage_item_for(storage_booking_id)
        if item is None:
            raise PersistenceError(staged.id, f"storage booking {storage_booking_id} is not attached")
        if not item.status.is_pending():
            raise PersistenceError(staged.id, f"storage booking {storage_booking_id} is no longer pending")
        item.status = outcome
        self._write_payment(item, settlement)

    @staticmethod
    def _write_payment(unit: BillableUnit, settlement: PaymentSettlement | None) -> None:
        if settlement is None:
            return
        unit.payment_status = settlement.payment_status
        unit.captured_amount_cents = settlement.captured_amount_cents
        if settlement.charge_ref:
            unit.charge_ref = settlement.charge_ref


# ============================================================================
# SQLAlchemy Repository
# ============================================================================


def _to_aggregate(model: KitchenBookingModel) -> BookingAggregate:
    """Map ORM rows to the booking aggregate."""
    booking = KitchenBooking(
        id=model.id,
        chef_id=model.chef_id,
        manager_id=model.manager_id,
        kitchen_id=model.kitchen_id,
        location_id=model.location_id,
        status=BookingStatus(model.status),
        booking_date=model.booking_date,
        start_time=model.start_time,
        end_time=model.end_time,
        timezone=model.timezone or settings.default_timezone,
        total_price_cents=model.total_price_cents,
        currency=model.currency or settings.default_currency,
        authorization_ref=model.payment_intent_id,
        payment_status=PaymentStatus(model.payment_status),
        captured_amount_cents=model.captured_amount_cents or 0,
        charge_ref=model.charge_id,
        kitchen_name=model.kitchen_name or "",
        chef_name=model.chef_name or "",
    )
    storage_items = [
        StorageItem(
            id=row.storage_listing_id,
            storage_booking_id=row.id,
            name=row.name or "",
            storage_type=StorageType(row.storage_type),
            status=BookingStatus(row.status),
            start_date=row.start_date,
            end_date=row.end_date,
            total_price_cents=row.total_price_cents,
            currency=row.currency or settings.default_currency,
            authorization_ref=row.payment_intent_id,
            payment_status=PaymentStatus(row.payment_status),
            captured_amount_cents=row.captured_amount_cents or 0,
            charge_ref=row.charge_id,
        )
        for row in model.storage_bookings
    ]
    equipment_items = [
        EquipmentItem(
            id=row.equipment_listing_id,
            equipment_booking_id=row.id,
            name=row.name or "",
            total_price_cents=row.total_price_cents,
        )
        for row in model.equipment_bookings
    ]
    return BookingAggregate(
        id=model.id,
        booking=booking,
        storage_items=storage_items,
        equipment_items=equipment_items,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _payment_values(settlement: PaymentSettlement | None) -> dict:
    if settlement is None:
        return {}
    values = {
        "payment_status": settlement.payment_status.value,
        "captured_amount_cents": settlement.captured_amount_cents,
    }
    if settlement.charge_ref:
        values["charge_id"] = settlement.charge_ref
    return values


class SqlAlchemyBookingRepository(BookingRepository):
    """Async SQLAlchemy repository.

    Each public call runs in its own session and transaction; no
    transaction spans payment provider calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        """Initialize repository.

        Args:
            session_factory: Session factory (defaults to the app database).
        """
        self._session_factory = session_factory or async_session_factory

    async def load_for_approval(self, booking_id: int) -> BookingAggregate | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(KitchenBookingModel)
                .options(
                    selectinload(KitchenBookingModel.storage_bookings),
                    selectinload(KitchenBookingModel.equipment_bookings),
                )
                .where(KitchenBookingModel.id == booking_id)
            )
            model = result.scalar_one_or_none()
            return _to_aggregate(model) if model is not None else None

    async def acquire_decision_lock(self, booking_id: int, token: str, ttl_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=ttl_seconds)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(KitchenBookingModel)
                .where(
                    KitchenBookingModel.id == booking_id,
                    or_(
                        KitchenBookingModel.decision_lock_token.is_(None),
                        KitchenBookingModel.decision_lock_token == token,
                        KitchenBookingModel.decision_locked_at < stale_before,
                    ),
                )
                .values(decision_lock_token=token, decision_locked_at=now)
            )
            return result.rowcount == 1

    async def release_decision_lock(self, booking_id: int, token: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(KitchenBookingModel)
                .where(
                    KitchenBookingModel.id == booking_id,
                    KitchenBookingModel.decision_lock_token == token,
                )
                .values(decision_lock_token=None, decision_locked_at=None)
            )

    async def persist_decisions(
        self,
        booking_id: int,
        kitchen_outcome: BookingStatus | None,
        storage_outcomes: Mapping[int, BookingStatus],
        *,
        payments: Sequence[PaymentSettlement] = (),
        lock_token: str,
    ) -> None:
        settlements = _settlements_by_unit(payments)
        kitchen_ref = UnitRef(kind=UnitKind.KITCHEN_BOOKING, id=booking_id)

        try:
            async with self._session_factory() as session, session.begin():
                kitchen_values: dict = {"decision_lock_token": None, "decision_locked_at": None}
                conditions = [
                    KitchenBookingModel.id == booking_id,
                    KitchenBookingModel.decision_lock_token == lock_token,
                ]
                if kitchen_outcome is not None:
                    kitchen_values["status"] = kitchen_outcome.value
                    kitchen_values.update(_payment_values(settlements.get(kitchen_ref)))
                    conditions.append(KitchenBookingModel.status == BookingStatus.PENDING.value)

                result = await session.execute(
                    update(KitchenBookingModel).where(*conditions).values(**kitchen_values)
                )
                if result.rowcount != 1:
                    raise PersistenceError(
                        booking_id, "kitchen booking is no longer pending or the decision lock was lost"
                    )

                for storage_booking_id, outcome in storage_outcomes.items():
                    ref = UnitRef(kind=UnitKind.STORAGE_BOOKING, id=storage_booking_id)
                    result = await session.execute(
                        update(StorageBookingModel)
                        .where(
                            StorageBookingModel.id == storage_booking_id,
                            StorageBookingModel.kitchen_booking_id == booking_id,
                            StorageBookingModel.status == BookingStatus.PENDING.value,
                        )
                        .values(status=outcome.value, **_payment_values(settlements.get(ref)))
                    )
                    if result.rowcount != 1:
                        raise PersistenceError(
                            booking_id, f"storage booking {storage_booking_id} is no longer pending"
                        )
        except SQLAlchemyError as e:
            logger.error("Booking decision persistence failed", booking_id=booking_id, error=str(e))
            raise PersistenceError(booking_id, str(e)) from e

    async def add(self, aggregate: BookingAggregate) -> BookingAggregate:
        booking = aggregate.booking
        model = KitchenBookingModel(
            id=aggregate.id,
            chef_id=booking.chef_id,
            manager_id=booking.manager_id,
            kitchen_id=booking.kitchen_id,
            location_id=booking.location_id,
            status=booking.status.value,
            booking_date=booking.booking_date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            timezone=booking.timezone,
            total_price_cents=booking.total_price_cents,
            currency=booking.currency,
            payment_intent_id=booking.authorization_ref,
            payment_status=booking.payment_status.value,
            captured_amount_cents=booking.captured_amount_cents,
            charge_id=booking.charge_ref,
            kitchen_name=booking.kitchen_name,
            chef_name=booking.chef_name,
        )
        model.storage_bookings = [
            StorageBookingModel(
                id=item.storage_booking_id,
                storage_listing_id=item.id,
                name=item.name,
                storage_type=item.storage_type.value,
                status=item.status.value,
                start_date=item.start_date,
                end_date=item.end_date,
                total_price_cents=item.total_price_cents,
                currency=item.currency,
                payment_intent_id=item.authorization_ref,
                payment_status=item.payment_status.value,
                captured_amount_cents=item.captured_amount_cents,
                charge_id=item.charge_ref,
            )
            for item in aggregate.storage_items
        ]
        model.equipment_bookings = [
            EquipmentBookingModel(
                id=item.equipment_booking_id,
                equipment_listing_id=item.id,
                name=item.name,
                total_price_cents=item.total_price_cents,
            )
            for item in aggregate.equipment_items
        ]
        async with self._session_factory() as session, session.begin():
            session.add(model)
        return aggregate


# ============================================================================
# Repository Factory
# ============================================================================


_booking_repo: BookingRepository | None = None


def get_booking_repository() -> BookingRepository:
    """Get booking repository singleton.

    Returns:
        SqlAlchemyBookingRepository when settings.booking_store is
        "database", otherwise the in-memory repository.
    """
    global _booking_repo
    if _booking_repo is None:
        if settings.booking_store == "database":
            _booking_repo = SqlAlchemyBookingRepository()
        else:
            _booking_repo = InMemoryBookingRepository()
    return _booking_repo


def reset_booking_repository() -> None:
    """Reset booking repository (for testing)."""
    global _booking_repo
    _booking_repo = None
