# gymbook/repositories/booking_repository.py
"""
Booking Repository for gymbook

Kind-specific booking queries used by the booking engine:
confirmed counts, the FIFO waitlist, duplicate detection, and member
and schedule listings. All queries run inside the active tenant scope.
"""

from datetime import datetime
import logging
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingStatus
from ..models.schedule import ScheduleInstance
from .scoped_repository import ScopedRepository

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.WAITLISTED.value)


def _status_values(statuses: Optional[Sequence[BookingStatus]]) -> List[str]:
    return [BookingStatus(s).value for s in statuses or ()]


class BookingRepository(ScopedRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.schedule_instance))

    def count_confirmed_by_schedule_id(self, schedule_id: str) -> int:
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.schedule_instance_id == schedule_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            *self._scope_criteria(),
        )
        return int(self._execute_scalar(query) or 0)

    def count_by_schedule_id(self, schedule_id: str) -> int:
        """Bookings of any status referencing the instance."""
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.schedule_instance_id == schedule_id,
            *self._scope_criteria(),
        )
        return int(self._execute_scalar(query) or 0)

    def find_waitlist_by_schedule_id(
        self, schedule_id: str, limit: Optional[int] = None, *, for_update: bool = False
    ) -> List[Booking]:
        """
        WAITLISTED bookings oldest first.

        Ties on created_at are broken by id so promotion order is
        deterministic.
        """
        query = (
            self._build_query()
            .filter(
                Booking.schedule_instance_id == schedule_id,
                Booking.status == BookingStatus.WAITLISTED.value,
            )
            .order_by(Booking.created_at.asc(), Booking.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        if for_update:
            query = query.populate_existing()
            if self.dialect_name != "sqlite":
                query = query.with_for_update()
        return self._execute_query(query)

    def exists_active_for_member(self, member_id: str, schedule_id: str) -> bool:
        """existsByScheduleIdAndMemberId, ignoring cancelled bookings."""
        try:
            query = self._build_query().filter(
                Booking.member_id == member_id,
                Booking.schedule_instance_id == schedule_id,
                Booking.status != BookingStatus.CANCELLED.value,
            )
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking existing booking: {str(e)}")
            raise RepositoryException(f"Failed to check existing booking: {str(e)}") from e

    def find_by_member(
        self, member_id: str, statuses: Optional[Sequence[BookingStatus]] = None
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.member_id == member_id)
        if statuses:
            query = query.filter(Booking.status.in_(_status_values(statuses)))
        return self._execute_query(query.order_by(Booking.created_at.desc(), Booking.id.desc()))

    def find_by_schedule(
        self, schedule_id: str, statuses: Optional[Sequence[BookingStatus]] = None
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.schedule_instance_id == schedule_id)
        if statuses:
            query = query.filter(Booking.status.in_(_status_values(statuses)))
        return self._execute_query(query.order_by(Booking.created_at.asc(), Booking.id.asc()))

    def find_open_by_schedule(self, schedule_id: str) -> List[Booking]:
        """CONFIRMED and WAITLISTED bookings for the instance."""
        return self.find_by_schedule(
            schedule_id, [BookingStatus.CONFIRMED, BookingStatus.WAITLISTED]
        )

    def find_upcoming_by_member(self, member_id: str, from_time: datetime) -> List[Booking]:
        """Open bookings on instances starting at or after ``from_time``, soonest first."""
        query = (
            self._build_query()
            .join(ScheduleInstance, Booking.schedule_instance_id == ScheduleInstance.id)
            .filter(
                Booking.member_id == member_id,
                Booking.status.in_(OPEN_STATUSES),
                ScheduleInstance.start_time >= from_time,
                *self._scope_criteria(ScheduleInstance),
            )
            .options(joinedload(Booking.schedule_instance))
            .order_by(ScheduleInstance.start_time.asc(), Booking.id.asc())
        )
        return self._execute_query(query)
