# gymbook/repositories/factory.py
"""
Repository Factory for gymbook

Provides centralized creation of repository instances so services share
one construction path (and tests one patch point).
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .class_definition_repository import ClassDefinitionRepository
    from .gym_repository import GymRepository
    from .membership_repository import MembershipRepository
    from .schedule_repository import ScheduleRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_schedule_repository(db: Session) -> "ScheduleRepository":
        """Create repository for schedule instances and seat counters."""
        from .schedule_repository import ScheduleRepository

        return ScheduleRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_class_definition_repository(db: Session) -> "ClassDefinitionRepository":
        from .class_definition_repository import ClassDefinitionRepository

        return ClassDefinitionRepository(db)

    @staticmethod
    def create_membership_repository(db: Session) -> "MembershipRepository":
        """Create repository for membership credit operations."""
        from .membership_repository import MembershipRepository

        return MembershipRepository(db)

    @staticmethod
    def create_gym_repository(db: Session) -> "GymRepository":
        from .gym_repository import GymRepository

        return GymRepository(db)
