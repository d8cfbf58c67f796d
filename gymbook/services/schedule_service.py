# gymbook/services/schedule_service.py
"""
Schedule Service for gymbook

Creates and manages schedule instances. Every create or time/resource
change goes through ScheduleConflictChecker: a trainer or area
double-booking is refused, never silently adjusted.

Status flow: SCHEDULED -> IN_PROGRESS -> COMPLETED, with CANCELLED
reachable from SCHEDULED or IN_PROGRESS.
"""

from datetime import datetime
import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import (
    BusinessRuleException,
    InvalidStateError,
    ValidationException,
)
from ..core.tenant_scope import current_scope
from ..database.scope_enforcer import assert_belongs_to
from ..models.booking import Booking
from ..models.schedule import ScheduleInstance, ScheduleStatus
from ..models.types import to_utc, utcnow
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from ..repositories.class_definition_repository import ClassDefinitionRepository
from ..repositories.schedule_repository import ScheduleRepository
from .base import BaseService
from .conflict_checker import ScheduleConflictChecker

logger = logging.getLogger(__name__)

# Fields update_schedule accepts; anything else is rejected.
UPDATABLE_FIELDS = frozenset(
    {
        "trainer_id",
        "area_id",
        "start_time",
        "end_time",
        "capacity_override",
        "price_override",
        "instructor_notes",
    }
)


class ScheduleService(BaseService):
    """Service layer for schedule instance management."""

    def __init__(
        self,
        db: Session,
        repository: Optional[ScheduleRepository] = None,
        class_repository: Optional[ClassDefinitionRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        conflict_checker: Optional[ScheduleConflictChecker] = None,
    ):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_schedule_repository(db)
        self.class_repository = (
            class_repository or RepositoryFactory.create_class_definition_repository(db)
        )
        self.booking_repository = (
            booking_repository or RepositoryFactory.create_booking_repository(db)
        )
        self.conflict_checker = conflict_checker or ScheduleConflictChecker(db, self.repository)

    @BaseService.measure_operation("create_schedule")
    def create_schedule(
        self,
        class_definition_id: str,
        start_time: datetime,
        end_time: datetime,
        trainer_id: Optional[str] = None,
        area_id: Optional[str] = None,
        capacity_override: Optional[int] = None,
        price_override: Optional[Any] = None,
        instructor_notes: Optional[str] = None,
    ) -> ScheduleInstance:
        """
        Schedule an occurrence of a class.

        Raises:
            ValidationException: end not after start, or non-positive capacity
            NotFoundError: class definition not in scope
            SchedulingConflictError: trainer or area already committed
        """
        start, end = self._window(start_time, end_time)
        self._validate_capacity(capacity_override)

        with self.transaction():
            class_definition = self.class_repository.require(class_definition_id)
            scope = current_scope()
            assert_belongs_to(class_definition, scope.organisation_id, scope.gym_id)

            self.conflict_checker.ensure_no_conflicts(
                start, end, trainer_id=trainer_id, area_id=area_id
            )
            schedule = self.repository.create(
                organisation_id=class_definition.organisation_id,
                gym_id=class_definition.gym_id,
                class_definition_id=class_definition.id,
                trainer_id=trainer_id,
                area_id=area_id,
                start_time=start,
                end_time=end,
                capacity_override=capacity_override,
                price_override=price_override,
                instructor_notes=instructor_notes,
                status=ScheduleStatus.SCHEDULED.value,
                confirmed_count=0,
            )

        self.log_operation(
            "create_schedule",
            schedule_instance_id=schedule.id,
            class_definition_id=class_definition_id,
            trainer_id=trainer_id,
            area_id=area_id,
        )
        return schedule

    @BaseService.measure_operation("update_schedule")
    def update_schedule(self, schedule_instance_id: str, **changes: Any) -> ScheduleInstance:
        """
        Change time, resources, capacity or notes of a SCHEDULED instance.

        Conflicts are re-checked against everything except the instance
        itself. A capacity override may not drop below the seats already
        held.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationException(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                code="INVALID_FIELDS",
                details={"fields": sorted(unknown)},
            )
        if "capacity_override" in changes:
            self._validate_capacity(changes["capacity_override"])

        with self.transaction():
            schedule = self._load(schedule_instance_id, for_update=True)
            if schedule.status != ScheduleStatus.SCHEDULED.value:
                raise InvalidStateError(
                    "Only scheduled classes can be modified", schedule.status
                )

            start = to_utc(changes.get("start_time", schedule.start_time))
            end = to_utc(changes.get("end_time", schedule.end_time))
            trainer_id = changes.get("trainer_id", schedule.trainer_id)
            area_id = changes.get("area_id", schedule.area_id)
            if "start_time" in changes or "end_time" in changes:
                changes["start_time"], changes["end_time"] = start, end

            if {"start_time", "end_time", "trainer_id", "area_id"} & set(changes):
                self.conflict_checker.ensure_no_conflicts(
                    start,
                    end,
                    trainer_id=trainer_id,
                    area_id=area_id,
                    exclude_schedule_id=schedule.id,
                )

            if "capacity_override" in changes:
                held = self.repository.get_confirmed_count(schedule.id)
                new_capacity = changes["capacity_override"]
                effective = (
                    new_capacity
                    if new_capacity is not None
                    else schedule.class_definition.capacity
                )
                if effective < held:
                    raise BusinessRuleException(
                        f"Capacity {effective} is below the {held} seats already booked",
                        code="CAPACITY_BELOW_CONFIRMED",
                        details={"capacity": effective, "confirmed_count": held},
                    )

            for key, value in changes.items():
                setattr(schedule, key, value)
            self.repository.flush()

        self.log_operation(
            "update_schedule", schedule_instance_id=schedule.id, fields=sorted(changes)
        )
        return schedule

    @BaseService.measure_operation("cancel_schedule")
    def cancel_schedule(self, schedule_instance_id: str, reason: str) -> ScheduleInstance:
        """
        Cancel an instance together with its open bookings.

        Bookings are cancelled with the same reason; credits are not
        refunded here. The seat counter is reset to zero.
        """
        with self.transaction():
            schedule = self._load(schedule_instance_id, for_update=True)
            if schedule.status not in (
                ScheduleStatus.SCHEDULED.value,
                ScheduleStatus.IN_PROGRESS.value,
            ):
                raise InvalidStateError(
                    f"Cannot cancel a class that is {schedule.status}", schedule.status
                )

            now = utcnow()
            open_bookings: List[Booking] = self.booking_repository.find_open_by_schedule(
                schedule.id
            )
            for booking in open_bookings:
                booking.cancel(reason, now)

            schedule.status = ScheduleStatus.CANCELLED.value
            schedule.cancellation_reason = reason
            self.repository.flush()
            self.repository.reset_seats(schedule.id)

        self.log_operation(
            "cancel_schedule",
            schedule_instance_id=schedule.id,
            cancelled_bookings=len(open_bookings),
        )
        return schedule

    @BaseService.measure_operation("start_schedule")
    def start_schedule(self, schedule_instance_id: str) -> ScheduleInstance:
        return self._transition(
            schedule_instance_id, (ScheduleStatus.SCHEDULED,), ScheduleStatus.IN_PROGRESS
        )

    @BaseService.measure_operation("complete_schedule")
    def complete_schedule(self, schedule_instance_id: str) -> ScheduleInstance:
        return self._transition(
            schedule_instance_id,
            (ScheduleStatus.SCHEDULED, ScheduleStatus.IN_PROGRESS),
            ScheduleStatus.COMPLETED,
        )

    @BaseService.measure_operation("delete_schedule")
    def delete_schedule(self, schedule_instance_id: str) -> None:
        """Delete an instance nobody has booked and that is not running."""
        with self.transaction():
            schedule = self._load(schedule_instance_id, for_update=True)
            if schedule.status == ScheduleStatus.IN_PROGRESS.value:
                raise InvalidStateError(
                    "Cannot delete a class that is in progress", schedule.status
                )
            references = self.booking_repository.count_by_schedule_id(schedule.id)
            if references:
                raise BusinessRuleException(
                    "Cannot delete a class that has bookings; cancel it instead",
                    code="SCHEDULE_HAS_BOOKINGS",
                    details={"booking_count": references},
                )
            self.repository.delete(schedule.id)

        self.log_operation("delete_schedule", schedule_instance_id=schedule_instance_id)

    def get_schedule(self, schedule_instance_id: str) -> ScheduleInstance:
        with self.transaction():
            return self._load(schedule_instance_id)

    def list_schedules(
        self, start: datetime, end: datetime, status: Optional[ScheduleStatus] = None
    ) -> List[ScheduleInstance]:
        """Instances overlapping the window, by start time."""
        start, end = self._window(start, end)
        with self.transaction():
            return self.repository.list_in_range(start, end, status)

    def find_available(self, start: datetime, end: datetime) -> List[ScheduleInstance]:
        """Bookable instances starting inside the window, by start time."""
        start, end = self._window(start, end)
        with self.transaction():
            return self.repository.find_available(start, end)

    # Internals

    def _load(self, schedule_instance_id: str, for_update: bool = False) -> ScheduleInstance:
        schedule = self.repository.require(schedule_instance_id, for_update=for_update)
        scope = current_scope()
        return assert_belongs_to(schedule, scope.organisation_id, scope.gym_id)

    def _transition(
        self,
        schedule_instance_id: str,
        allowed_from: tuple,
        target: ScheduleStatus,
    ) -> ScheduleInstance:
        with self.transaction():
            schedule = self._load(schedule_instance_id, for_update=True)
            if schedule.status not in {s.value for s in allowed_from}:
                raise InvalidStateError(
                    f"Cannot move a class from {schedule.status} to {target.value}",
                    schedule.status,
                )
            schedule.status = target.value
            self.repository.flush()
        self.log_operation(
            "schedule_status_change", schedule_instance_id=schedule.id, status=target.value
        )
        return schedule

    @staticmethod
    def _validate_capacity(capacity_override: Optional[int]) -> None:
        if capacity_override is not None and capacity_override <= 0:
            raise ValidationException(
                "Capacity override must be positive",
                code="INVALID_CAPACITY",
                details={"capacity_override": capacity_override},
            )

    @staticmethod
    def _window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
        start, end = to_utc(start), to_utc(end)
        if end <= start:
            raise ValidationException(
                "End time must be after start time",
                code="INVALID_TIME_RANGE",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        return start, end
