# gymbook/services/conflict_checker.py
"""
Schedule Conflict Checker Service for gymbook

Detects trainer and area double-booking for schedule instances. Intervals
are half-open, so an instance ending at 10:00 and one starting at 10:00
do not conflict. Cancelled instances never conflict; every other status
does, including instances already running or finished.

Queries run through the scoped ScheduleRepository, so only instances in
the caller's tenant scope are considered.
"""

from datetime import datetime
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.exceptions import SchedulingConflictError, ValidationException
from ..models.schedule import ScheduleInstance
from ..models.types import to_utc
from ..repositories import RepositoryFactory
from ..repositories.schedule_repository import ScheduleRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def _checked_interval(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    start, end = to_utc(start), to_utc(end)
    if end <= start:
        raise ValidationException(
            "End time must be after start time",
            code="INVALID_TIME_RANGE",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()},
        )
    return start, end


class ScheduleConflictChecker(BaseService):
    """Service for trainer/area overlap detection."""

    def __init__(self, db: Session, repository: Optional[ScheduleRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_schedule_repository(db)

    @BaseService.measure_operation("has_trainer_conflict")
    def has_trainer_conflict(
        self,
        trainer_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> bool:
        start, end = _checked_interval(start, end)
        return self.repository.has_trainer_conflict(trainer_id, start, end, exclude_schedule_id)

    @BaseService.measure_operation("has_area_conflict")
    def has_area_conflict(
        self,
        area_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> bool:
        start, end = _checked_interval(start, end)
        return self.repository.has_area_conflict(area_id, start, end, exclude_schedule_id)

    @BaseService.measure_operation("find_conflicts")
    def find_conflicts(
        self,
        start: datetime,
        end: datetime,
        trainer_id: Optional[str] = None,
        area_id: Optional[str] = None,
        exclude_schedule_id: Optional[str] = None,
    ) -> Dict[str, List[ScheduleInstance]]:
        """
        Conflicting instances per resource type.

        Returns:
            {"trainer": [...], "area": [...]}, each ordered by start time;
            a resource that was not given maps to an empty list.
        """
        start, end = _checked_interval(start, end)
        conflicts: Dict[str, List[ScheduleInstance]] = {"trainer": [], "area": []}
        if trainer_id:
            conflicts["trainer"] = self.repository.find_trainer_conflicts(
                trainer_id, start, end, exclude_schedule_id
            )
        if area_id:
            conflicts["area"] = self.repository.find_area_conflicts(
                area_id, start, end, exclude_schedule_id
            )
        return conflicts

    def ensure_no_conflicts(
        self,
        start: datetime,
        end: datetime,
        trainer_id: Optional[str] = None,
        area_id: Optional[str] = None,
        exclude_schedule_id: Optional[str] = None,
    ) -> None:
        """
        Raise SchedulingConflictError naming the first conflicting resource.

        The trainer is checked before the area.
        """
        conflicts = self.find_conflicts(start, end, trainer_id, area_id, exclude_schedule_id)
        for resource_type, resource_id in (("trainer", trainer_id), ("area", area_id)):
            clashing = conflicts[resource_type]
            if clashing:
                self.logger.info(
                    f"{resource_type.capitalize()} conflict for {resource_id}",
                    extra={
                        "resource_type": resource_type,
                        "resource_id": resource_id,
                        "start_time": start.isoformat(),
                        "end_time": end.isoformat(),
                        "conflicting_schedule_ids": [s.id for s in clashing],
                    },
                )
                raise SchedulingConflictError(
                    resource_type,
                    str(resource_id),
                    start,
                    end,
                    [s.id for s in clashing],
                )
