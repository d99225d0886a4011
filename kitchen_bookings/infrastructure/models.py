"""SQLAlchemy models for database tables.

Provides ORM models for kitchen_bookings, storage_bookings and
equipment_bookings.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from kitchen_bookings.infrastructure.config import settings
from kitchen_bookings.infrastructure.database import Base


# ============================================================================
# Kitchen Booking Models
# ============================================================================


class KitchenBookingModel(Base):
    """Kitchen booking model for database persistence.

    The decision lock columns implement the per-booking concurrency gate:
    a decision claims the row by setting decision_lock_token while no
    unexpired lock is held.
    """

    __tablename__ = "kitchen_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chef_id = Column(Integer, nullable=True, index=True)
    manager_id = Column(Integer, nullable=False, index=True)
    kitchen_id = Column(Integer, nullable=False, index=True)
    location_id = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)

    # Slot (local wall-clock in the location's timezone)
    booking_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    timezone = Column(String(64), nullable=False, default=lambda: settings.default_timezone)

    # Payment
    total_price_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default=lambda: settings.default_currency)
    payment_intent_id = Column(String(100), nullable=True, index=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    captured_amount_cents = Column(Integer, nullable=False, default=0)
    charge_id = Column(String(100), nullable=True)

    # Display
    kitchen_name = Column(String(255), nullable=False, default="")
    chef_name = Column(String(255), nullable=False, default="")

    # Decision lock
    decision_lock_token = Column(String(64), nullable=True)
    decision_locked_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    storage_bookings = relationship(
        "StorageBookingModel",
        back_populates="kitchen_booking",
        cascade="all, delete-orphan",
        order_by="StorageBookingModel.id",
    )
    equipment_bookings = relationship(
        "EquipmentBookingModel",
        back_populates="kitchen_booking",
        cascade="all, delete-orphan",
        order_by="EquipmentBookingModel.id",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "chef_id": self.chef_id,
            "manager_id": self.manager_id,
            "kitchen_id": self.kitchen_id,
            "status": self.status,
            "booking_date": self.booking_date.isoformat() if self.booking_date else None,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_price_cents": self.total_price_cents,
            "currency": self.currency,
            "payment_status": self.payment_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class StorageBookingModel(Base):
    """Storage rental attached to a kitchen booking.

    Has its own status and payment columns; the row id is the storage
    booking id that approval decisions target.
    """

    __tablename__ = "storage_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kitchen_booking_id = Column(
        Integer,
        ForeignKey("kitchen_bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    storage_listing_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False, default="")
    storage_type = Column(String(20), nullable=False, default="dry")
    status = Column(String(20), nullable=False, default="pending", index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Payment
    total_price_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default=lambda: settings.default_currency)
    payment_intent_id = Column(String(100), nullable=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    captured_amount_cents = Column(Integer, nullable=False, default=0)
    charge_id = Column(String(100), nullable=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    kitchen_booking = relationship("KitchenBookingModel", back_populates="storage_bookings")


class EquipmentBookingModel(Base):
    """Equipment rental bundled into a kitchen booking (no own status)."""

    __tablename__ = "equipment_bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kitchen_booking_id = Column(
        Integer,
        ForeignKey("kitchen_bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    equipment_listing_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False, default="")
    total_price_cents = Column(Integer, nullable=True)

    # Relationships
    kitchen_booking = relationship("KitchenBookingModel", back_populates="equipment_bookings")
