"""SQLAlchemy models for gymbook."""

from ..database import Base
from .booking import Booking, BookingStatus
from .class_definition import ClassDefinition
from .gym import Gym
from .membership import Membership, MembershipStatus
from .schedule import ScheduleInstance, ScheduleStatus
from .types import GymScopedMixin, TenantScopedMixin, TimestampMixin, UTCDateTime

__all__ = [
    "Base",
    "Booking",
    "BookingStatus",
    "ClassDefinition",
    "Gym",
    "GymScopedMixin",
    "Membership",
    "MembershipStatus",
    "ScheduleInstance",
    "ScheduleStatus",
    "TenantScopedMixin",
    "TimestampMixin",
    "UTCDateTime",
]
