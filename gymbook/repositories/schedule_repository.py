# gymbook/repositories/schedule_repository.py
"""
Schedule Repository for gymbook

Data access for schedule instances: overlap queries for the conflict
checker, window listings, and the seat counter.

The seat counter (``confirmed_count``) only moves through compare-and-set
UPDATEs. ``try_reserve_seat`` increments it only while it is below the
effective capacity, so two workers racing for the last seat cannot both
succeed: the database serializes the row update and the loser sees
rowcount 0.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.util import identity_key

from ..core.exceptions import RepositoryException
from ..models.schedule import ScheduleInstance, ScheduleStatus
from .scoped_repository import ScopedRepository

logger = logging.getLogger(__name__)


class ScheduleRepository(ScopedRepository[ScheduleInstance]):
    """Repository for schedule instance data access."""

    def __init__(self, db: Session):
        super().__init__(db, ScheduleInstance)

    # Conflict queries

    def _overlapping(
        self, start: datetime, end: datetime, exclude_schedule_id: Optional[str]
    ) -> Query:
        # Half-open intervals: existing.start < end AND existing.end > start
        query = self._build_query().filter(
            ScheduleInstance.status != ScheduleStatus.CANCELLED.value,
            ScheduleInstance.start_time < end,
            ScheduleInstance.end_time > start,
        )
        if exclude_schedule_id:
            query = query.filter(ScheduleInstance.id != exclude_schedule_id)
        return query

    def has_trainer_conflict(
        self,
        trainer_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> bool:
        """True if a non-cancelled instance for the trainer overlaps [start, end)."""
        try:
            query = self._overlapping(start, end, exclude_schedule_id).filter(
                ScheduleInstance.trainer_id == trainer_id
            )
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking trainer conflict: {str(e)}")
            raise RepositoryException(f"Failed to check trainer conflict: {str(e)}") from e

    def has_area_conflict(
        self,
        area_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> bool:
        """True if a non-cancelled instance in the area overlaps [start, end)."""
        try:
            query = self._overlapping(start, end, exclude_schedule_id).filter(
                ScheduleInstance.area_id == area_id
            )
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking area conflict: {str(e)}")
            raise RepositoryException(f"Failed to check area conflict: {str(e)}") from e

    def find_trainer_conflicts(
        self,
        trainer_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> List[ScheduleInstance]:
        query = (
            self._overlapping(start, end, exclude_schedule_id)
            .filter(ScheduleInstance.trainer_id == trainer_id)
            .order_by(ScheduleInstance.start_time, ScheduleInstance.id)
        )
        return self._execute_query(query)

    def find_area_conflicts(
        self,
        area_id: str,
        start: datetime,
        end: datetime,
        exclude_schedule_id: Optional[str] = None,
    ) -> List[ScheduleInstance]:
        query = (
            self._overlapping(start, end, exclude_schedule_id)
            .filter(ScheduleInstance.area_id == area_id)
            .order_by(ScheduleInstance.start_time, ScheduleInstance.id)
        )
        return self._execute_query(query)

    # Listings

    def list_in_range(
        self, start: datetime, end: datetime, status: Optional[ScheduleStatus] = None
    ) -> List[ScheduleInstance]:
        """Instances overlapping [start, end), optionally of one status, by start time."""
        query = self._build_query().filter(
            ScheduleInstance.start_time < end,
            ScheduleInstance.end_time > start,
        )
        if status is not None:
            query = query.filter(ScheduleInstance.status == ScheduleStatus(status).value)
        return self._execute_query(query.order_by(ScheduleInstance.start_time, ScheduleInstance.id))

    def find_available(self, start: datetime, end: datetime) -> List[ScheduleInstance]:
        """SCHEDULED instances starting inside [start, end), by start time."""
        query = (
            self._build_query()
            .filter(
                ScheduleInstance.status == ScheduleStatus.SCHEDULED.value,
                ScheduleInstance.start_time >= start,
                ScheduleInstance.start_time < end,
            )
            .order_by(ScheduleInstance.start_time, ScheduleInstance.id)
        )
        return self._execute_query(query)

    # Seat counter

    def get_confirmed_count(self, schedule_id: str) -> int:
        """Authoritative seat counter read straight from storage."""
        query = self.db.query(ScheduleInstance.confirmed_count).filter(
            ScheduleInstance.id == schedule_id, *self._scope_criteria()
        )
        return int(self._execute_scalar(query) or 0)

    def try_reserve_seat(self, schedule_id: str, capacity: int) -> bool:
        """
        Atomically take one seat if fewer than ``capacity`` are held.

        Returns False when the instance is full or no longer SCHEDULED.
        """
        stmt = (
            update(ScheduleInstance)
            .where(
                ScheduleInstance.id == schedule_id,
                ScheduleInstance.status == ScheduleStatus.SCHEDULED.value,
                ScheduleInstance.confirmed_count < capacity,
                *self._scope_criteria(),
            )
            .values(confirmed_count=ScheduleInstance.confirmed_count + 1)
            .execution_options(synchronize_session=False)
        )
        return self._execute_counter_update(stmt, schedule_id, "reserve") == 1

    def release_seat(self, schedule_id: str) -> bool:
        """Give one seat back; never drives the counter below zero."""
        stmt = (
            update(ScheduleInstance)
            .where(
                ScheduleInstance.id == schedule_id,
                ScheduleInstance.confirmed_count > 0,
                *self._scope_criteria(),
            )
            .values(confirmed_count=ScheduleInstance.confirmed_count - 1)
            .execution_options(synchronize_session=False)
        )
        released = self._execute_counter_update(stmt, schedule_id, "release") == 1
        if not released:
            logger.warning(
                "Seat release found no held seat",
                extra={"schedule_instance_id": schedule_id},
            )
        return released

    def reset_seats(self, schedule_id: str) -> None:
        stmt = (
            update(ScheduleInstance)
            .where(ScheduleInstance.id == schedule_id, *self._scope_criteria())
            .values(confirmed_count=0)
            .execution_options(synchronize_session=False)
        )
        self._execute_counter_update(stmt, schedule_id, "reset")

    def _execute_counter_update(self, stmt, schedule_id: str, action: str) -> int:
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating seat counter ({action}) for {schedule_id}: {str(e)}")
            raise RepositoryException(f"Failed to {action} seat: {str(e)}") from e

        # The UPDATE bypassed the identity map; reload any cached counter value.
        cached = self.db.identity_map.get(identity_key(ScheduleInstance, schedule_id))
        if cached is not None:
            self.db.refresh(cached, ["confirmed_count"])
        return int(result.rowcount or 0)
