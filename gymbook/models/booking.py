# gymbook/models/booking.py
"""
Booking model for gymbook.

A booking is one member's reservation against one schedule instance. It
is created CONFIRMED or WAITLISTED depending on seat availability, and
CANCELLED, COMPLETED and NO_SHOW are terminal.

At most one non-cancelled booking may exist per (member, schedule
instance); the partial unique index below is the storage-level guarantee
behind the service check.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship
import ulid

from ..core.exceptions import InvalidStateError
from ..database import Base
from .types import GymScopedMixin, TimestampMixin, UTCDateTime


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    CONFIRMED = "CONFIRMED"  # Holds a seat
    WAITLISTED = "WAITLISTED"  # Queued until a seat frees
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"  # Checked in and out
    NO_SHOW = "NO_SHOW"  # Confirmed but never attended


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value, BookingStatus.NO_SHOW.value}
)


class Booking(GymScopedMixin, TimestampMixin, Base):
    """Member reservation for a schedule instance."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))

    member_id = Column(String(26), nullable=False, index=True)
    schedule_instance_id = Column(
        String(26), ForeignKey("schedule_instances.id"), nullable=False, index=True
    )
    # Membership charged for the seat; NULL while waitlisted or when nothing was charged.
    membership_id = Column(String(26), nullable=True)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    credits_used = Column(Integer, nullable=False, default=0)

    checked_in_at = Column(UTCDateTime(), nullable=True)
    checked_out_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    member_notes = Column(Text, nullable=True)

    schedule_instance = relationship("ScheduleInstance")

    __table_args__ = (
        CheckConstraint(
            "status IN ('CONFIRMED', 'WAITLISTED', 'CANCELLED', 'COMPLETED', 'NO_SHOW')",
            name="ck_bookings_status",
        ),
        CheckConstraint("credits_used >= 0", name="ck_bookings_credits_used_non_negative"),
        Index(
            "uq_booking_member_schedule_active",
            "member_id",
            "schedule_instance_id",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index("ix_bookings_waitlist_order", "schedule_instance_id", "status", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} member={self.member_id} "
            f"schedule={self.schedule_instance_id} {self.status}>"
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == BookingStatus.CONFIRMED.value

    @property
    def is_waitlisted(self) -> bool:
        return self.status == BookingStatus.WAITLISTED.value

    @property
    def is_checked_in(self) -> bool:
        return self.checked_in_at is not None

    def is_active(self) -> bool:
        """Active bookings count against the one-booking-per-member rule."""
        return self.status != BookingStatus.CANCELLED.value

    def confirm(self, credits_used: int, membership_id: Optional[str]) -> None:
        """Mark a new or waitlisted booking as holding a paid seat."""
        if self.status not in (None, BookingStatus.CONFIRMED.value, BookingStatus.WAITLISTED.value):
            raise InvalidStateError("Only waitlisted bookings can be confirmed", self.status)
        self.status = BookingStatus.CONFIRMED.value
        self.credits_used = credits_used
        self.membership_id = membership_id

    def cancel(self, reason: Optional[str], now: datetime) -> str:
        """
        Cancel the booking.

        Returns the status the booking held before cancelling so the caller
        can decide whether a seat was freed.
        """
        if self.status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel a booking that is {self.status}",
                self.status,
                booking_id=self.id,
            )
        previous = self.status
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = now
        self.cancellation_reason = reason
        return previous

    def check_in(self, now: datetime) -> None:
        if self.status != BookingStatus.CONFIRMED.value:
            raise InvalidStateError(
                "Only confirmed bookings can be checked in", self.status, booking_id=self.id
            )
        if self.checked_in_at is not None:
            raise InvalidStateError(
                "Booking is already checked in", self.status, booking_id=self.id
            )
        self.checked_in_at = now

    def check_out(self, now: datetime) -> None:
        if self.checked_in_at is None or self.status != BookingStatus.CONFIRMED.value:
            raise InvalidStateError(
                "Booking must be checked in before checking out", self.status, booking_id=self.id
            )
        self.checked_out_at = now
        self.status = BookingStatus.COMPLETED.value

    def mark_no_show(self, now: datetime, class_end: datetime) -> None:
        if self.status != BookingStatus.CONFIRMED.value or self.checked_in_at is not None:
            raise InvalidStateError(
                "Only confirmed bookings that were never checked in can be marked no-show",
                self.status,
                booking_id=self.id,
            )
        if class_end > now:
            raise InvalidStateError(
                "Cannot mark no-show before the class has ended",
                self.status,
                booking_id=self.id,
                class_end=class_end.isoformat(),
            )
        self.status = BookingStatus.NO_SHOW.value

    def to_dict(self) -> dict[str, Any]:
        """Convert booking to dictionary for API responses."""
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "gym_id": self.gym_id,
            "member_id": self.member_id,
            "schedule_instance_id": self.schedule_instance_id,
            "status": self.status,
            "credits_used": self.credits_used,
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "checked_out_at": self.checked_out_at.isoformat() if self.checked_out_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "member_notes": self.member_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
