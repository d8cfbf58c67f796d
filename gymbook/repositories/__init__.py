"""Repository layer for gymbook data access."""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .class_definition_repository import ClassDefinitionRepository
from .factory import RepositoryFactory
from .gym_repository import GymRepository
from .membership_repository import MembershipRepository
from .schedule_repository import ScheduleRepository
from .scoped_repository import ScopedRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "ClassDefinitionRepository",
    "GymRepository",
    "MembershipRepository",
    "RepositoryFactory",
    "ScheduleRepository",
    "ScopedRepository",
]
