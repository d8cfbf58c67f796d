# gymbook/models/schedule.py
"""
Schedule instance model.

One concrete occurrence of a class at a given time, optionally with a
trainer and an area. confirmed_count is the authoritative number of seats
held by CONFIRMED bookings; a booking that completes, becomes a no-show
or is cancelled gives its seat back. It only changes through the
compare-and-set updates in ScheduleRepository so it can never pass the
effective capacity.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
import ulid

from ..database import Base
from .types import GymScopedMixin, TimestampMixin, UTCDateTime


class ScheduleStatus(str, Enum):
    """Schedule instance lifecycle statuses."""

    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ScheduleInstance(GymScopedMixin, TimestampMixin, Base):
    """A scheduled occurrence of a class definition."""

    __tablename__ = "schedule_instances"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    class_definition_id = Column(
        String(26), ForeignKey("class_definitions.id"), nullable=False, index=True
    )
    trainer_id = Column(String(26), nullable=True)
    area_id = Column(String(26), nullable=True)

    start_time = Column(UTCDateTime(), nullable=False)
    end_time = Column(UTCDateTime(), nullable=False)

    capacity_override = Column(Integer, nullable=True)
    confirmed_count = Column(Integer, nullable=False, default=0)
    price_override = Column(Numeric(10, 2), nullable=True)

    status = Column(String(20), nullable=False, default=ScheduleStatus.SCHEDULED.value)
    cancellation_reason = Column(Text, nullable=True)
    instructor_notes = Column(Text, nullable=True)

    class_definition = relationship("ClassDefinition", lazy="joined")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_schedule_instances_time_order"),
        CheckConstraint("confirmed_count >= 0", name="ck_schedule_instances_confirmed_non_negative"),
        CheckConstraint(
            "capacity_override IS NULL OR capacity_override > 0",
            name="ck_schedule_instances_capacity_override_positive",
        ),
        CheckConstraint(
            "status IN ('SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_schedule_instances_status",
        ),
        Index("ix_schedule_instances_trainer_time", "trainer_id", "start_time", "end_time"),
        Index("ix_schedule_instances_area_time", "area_id", "start_time", "end_time"),
        Index("ix_schedule_instances_gym_start", "gym_id", "start_time"),
    )

    @property
    def effective_capacity(self) -> int:
        """Seat limit after applying the per-instance override."""
        if self.capacity_override is not None:
            return int(self.capacity_override)
        return int(self.class_definition.capacity)

    @property
    def available_seats(self) -> int:
        return max(self.effective_capacity - int(self.confirmed_count or 0), 0)

    def is_bookable(self) -> bool:
        return self.status == ScheduleStatus.SCHEDULED.value

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval overlap; back-to-back instances do not overlap."""
        return self.start_time < end and self.end_time > start

    def has_ended(self, now: datetime) -> bool:
        return self.end_time <= now

    def __repr__(self) -> str:
        return (
            f"<ScheduleInstance {self.id} class={self.class_definition_id} "
            f"{self.start_time}-{self.end_time} {self.status}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "gym_id": self.gym_id,
            "class_definition_id": self.class_definition_id,
            "trainer_id": self.trainer_id,
            "area_id": self.area_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "capacity_override": self.capacity_override,
            "confirmed_count": self.confirmed_count,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
