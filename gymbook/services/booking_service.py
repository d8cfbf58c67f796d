# gymbook/services/booking_service.py
"""
Booking Service for gymbook

The booking engine: capacity-constrained reservations against schedule
instances with a FIFO waitlist.

Seat accounting:
- A seat is taken with a compare-and-set increment of the instance's
  confirmed_count, bounded by the effective capacity. Only one of two
  workers racing for the last seat can win that UPDATE.
- confirmed_count equals the number of CONFIRMED bookings: cancelling a
  confirmed booking, checking it out (COMPLETED) or marking it NO_SHOW
  each give its seat back in the same transaction.
- The credit deduction for a confirmed seat runs in the same transaction
  as the seat increment and the booking insert, so either all three take
  effect or none does.
- Cancelling a CONFIRMED booking promotes at most one waitlisted booking
  (oldest first, ties by id). If the promoted member cannot pay, the seat
  is released again and the entry stays WAITLISTED.
- Operations on an existing booking lock its schedule instance first and
  then the booking, and re-read both under the locks, so two concurrent
  transitions of one booking cannot both apply.

Every operation runs as one transaction, retried once on a storage
serialization conflict before surfacing TransientBookingError. Business
rule violations are never retried.
"""

from datetime import datetime
import logging
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    DuplicateBookingError,
    InsufficientCreditsError,
    NotFoundError,
    RepositoryException,
    TransientBookingError,
)
from ..core.tenant_scope import current_scope
from ..database import with_db_retry
from ..database.scope_enforcer import assert_belongs_to
from ..database.session_utils import is_serialization_failure
from ..models.booking import Booking, BookingStatus
from ..models.schedule import ScheduleInstance
from ..models.types import to_utc, utcnow
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from ..repositories.schedule_repository import ScheduleRepository
from .base import BaseService
from .membership_credits import MembershipCredits, SqlMembershipCredits

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_BOOKING_INDEX = "uq_booking_member_schedule_active"


def _is_active_booking_violation(exc: BaseException) -> bool:
    cause = exc.__cause__ if isinstance(exc, RepositoryException) else exc
    if not isinstance(cause, IntegrityError):
        return False
    message = str(cause.orig).lower()
    return ACTIVE_BOOKING_INDEX in message or (
        "bookings.member_id" in message and "bookings.schedule_instance_id" in message
    )


class BookingService(BaseService):
    """
    Service layer for class bookings.

    Tenant filtering is applied by the scoped repositories; the service only
    uses the active scope to double-check entities resolved from external
    ids.
    """

    def __init__(
        self,
        db: Session,
        repository: Optional[BookingRepository] = None,
        schedule_repository: Optional[ScheduleRepository] = None,
        credits: Optional[MembershipCredits] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize booking service.

        Args:
            db: Database session
            repository: Optional BookingRepository instance
            schedule_repository: Optional ScheduleRepository instance
            credits: Membership credits collaborator (defaults to the SQL one)
            clock: Returns the current aware UTC time (defaults to utcnow)
        """
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)
        self.schedule_repository = (
            schedule_repository or RepositoryFactory.create_schedule_repository(db)
        )
        self.credits = credits or SqlMembershipCredits(db)
        self.clock = clock or utcnow

    # Commands

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self, member_id: str, schedule_instance_id: str, notes: Optional[str] = None
    ) -> Booking:
        """
        Book a seat, or a waitlist place when the instance is full.

        Raises:
            NotFoundError: instance absent or not open for booking
            DuplicateBookingError: member already holds an active booking
            InsufficientCreditsError: a seat was free but the member cannot pay
        """

        def unit() -> Booking:
            with self.transaction():
                schedule = self._load_schedule(schedule_instance_id)
                if not schedule.is_bookable():
                    raise NotFoundError(
                        "ScheduleInstance",
                        schedule_instance_id,
                        reason="is not open for booking",
                    )

                if self.repository.exists_active_for_member(member_id, schedule.id):
                    raise DuplicateBookingError(member_id, schedule.id)

                if self.schedule_repository.try_reserve_seat(
                    schedule.id, schedule.effective_capacity
                ):
                    credits_used, membership_id = self._charge_seat(
                        member_id, schedule.class_definition.credit_cost
                    )
                    booking = self._insert_booking(
                        schedule,
                        member_id,
                        BookingStatus.CONFIRMED,
                        notes,
                        credits_used=credits_used,
                        membership_id=membership_id,
                    )
                else:
                    booking = self._insert_booking(
                        schedule, member_id, BookingStatus.WAITLISTED, notes
                    )
            return booking

        booking = self._run_atomic("create_booking", unit)
        outcome = "confirmed" if booking.is_confirmed else "waitlisted"
        prometheus_metrics.record_booking_outcome(outcome)
        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            member_id=member_id,
            schedule_instance_id=schedule_instance_id,
            status=booking.status,
        )
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a booking; a freed seat goes to the head of the waitlist.

        Returns the cancelled booking. At most one waitlisted booking is
        promoted per cancellation.
        """

        def unit() -> Tuple[Booking, Optional[Booking], bool]:
            promoted, skipped = None, False
            with self.transaction():
                booking, schedule = self._lock_booking(booking_id)
                previous = booking.cancel(reason, self._now())
                self.repository.flush()

                if previous == BookingStatus.CONFIRMED.value:
                    self.schedule_repository.release_seat(schedule.id)
                    promoted, skipped = self._promote_next(schedule)
            return booking, promoted, skipped

        booking, promoted, skipped = self._run_atomic("cancel_booking", unit)
        prometheus_metrics.record_booking_outcome("cancelled")
        if promoted is not None:
            prometheus_metrics.record_booking_outcome("promoted")
        if skipped:
            prometheus_metrics.record_booking_outcome("promotion_skipped")
        self.log_operation(
            "cancel_booking",
            booking_id=booking.id,
            schedule_instance_id=booking.schedule_instance_id,
            promoted_booking_id=promoted.id if promoted is not None else None,
        )
        return booking

    @BaseService.measure_operation("check_in")
    def check_in(self, booking_id: str) -> Booking:
        """Record arrival; the booking stays CONFIRMED and keeps its seat."""

        def unit() -> Booking:
            with self.transaction():
                booking, _ = self._lock_booking(booking_id)
                booking.check_in(self._now())
                self.repository.flush()
            return booking

        booking = self._run_atomic("check_in", unit)
        prometheus_metrics.record_booking_outcome("checked_in")
        return booking

    @BaseService.measure_operation("check_out")
    def check_out(self, booking_id: str) -> Booking:
        """Record departure; the booking becomes COMPLETED and gives its seat back."""

        def unit() -> Booking:
            with self.transaction():
                booking, schedule = self._lock_booking(booking_id)
                booking.check_out(self._now())
                self.repository.flush()
                self.schedule_repository.release_seat(schedule.id)
            return booking

        booking = self._run_atomic("check_out", unit)
        prometheus_metrics.record_booking_outcome("completed")
        return booking

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, booking_id: str, now: Optional[datetime] = None) -> Booking:
        """
        Mark a confirmed booking that never checked in as NO_SHOW.

        Only allowed once the instance's end time has passed. The seat is
        given back; credits are not refunded.
        """
        at = to_utc(now) if now is not None else self._now()

        def unit() -> Booking:
            with self.transaction():
                booking, schedule = self._lock_booking(booking_id)
                booking.mark_no_show(at, schedule.end_time)
                self.repository.flush()
                self.schedule_repository.release_seat(schedule.id)
            return booking

        booking = self._run_atomic("mark_no_show", unit)
        prometheus_metrics.record_booking_outcome("no_show")
        return booking

    # Queries

    @BaseService.measure_operation("get_booking")
    def get_booking(self, booking_id: str) -> Booking:
        with self.transaction():
            return self._load_booking(booking_id)

    def get_bookings_for_member(
        self, member_id: str, statuses: Optional[Sequence[BookingStatus]] = None
    ) -> List[Booking]:
        with self.transaction():
            return self.repository.find_by_member(member_id, statuses)

    def get_bookings_for_schedule(
        self, schedule_instance_id: str, statuses: Optional[Sequence[BookingStatus]] = None
    ) -> List[Booking]:
        with self.transaction():
            self._load_schedule(schedule_instance_id)
            return self.repository.find_by_schedule(schedule_instance_id, statuses)

    def get_waitlist(self, schedule_instance_id: str) -> List[Booking]:
        """Waitlisted bookings in promotion order."""
        with self.transaction():
            self._load_schedule(schedule_instance_id)
            return self.repository.find_waitlist_by_schedule_id(schedule_instance_id)

    def get_upcoming_bookings_for_member(
        self, member_id: str, from_time: Optional[datetime] = None
    ) -> List[Booking]:
        start = to_utc(from_time) if from_time is not None else self._now()
        with self.transaction():
            return self.repository.find_upcoming_by_member(member_id, start)

    def get_confirmed_count(self, schedule_instance_id: str) -> int:
        """Number of CONFIRMED bookings for the instance."""
        with self.transaction():
            self._load_schedule(schedule_instance_id)
            return self.repository.count_confirmed_by_schedule_id(schedule_instance_id)

    def get_effective_capacity(self, schedule_instance_id: str) -> int:
        with self.transaction():
            return self._load_schedule(schedule_instance_id).effective_capacity

    # Internals

    def _now(self) -> datetime:
        return to_utc(self.clock())

    def _run_atomic(self, operation: str, unit: Callable[[], T]) -> T:
        try:
            return with_db_retry(
                operation,
                unit,
                max_attempts=settings.booking_max_attempts,
                on_retry=lambda attempt, exc: prometheus_metrics.record_booking_retry(operation),
            )
        except Exception as exc:
            if is_serialization_failure(exc):
                self.logger.error(
                    f"{operation} failed after retry: storage conflict",
                    extra={"operation": operation},
                )
                raise TransientBookingError(
                    "The booking could not be completed because of concurrent activity; please retry",
                    code="BOOKING_CONTENTION",
                    details={"operation": operation},
                ) from exc
            raise

    def _load_booking(self, booking_id: str, *, for_update: bool = False) -> Booking:
        booking = self.repository.require(booking_id, for_update=for_update)
        scope = current_scope()
        return assert_belongs_to(booking, scope.organisation_id, scope.gym_id)

    def _load_schedule(
        self, schedule_instance_id: str, *, for_update: bool = False
    ) -> ScheduleInstance:
        schedule = self.schedule_repository.require(schedule_instance_id, for_update=for_update)
        scope = current_scope()
        return assert_belongs_to(schedule, scope.organisation_id, scope.gym_id)

    def _lock_booking(self, booking_id: str) -> Tuple[Booking, ScheduleInstance]:
        """
        Lock the booking's schedule instance, then the booking itself.

        Instance before booking is the order create_booking and
        cancel_schedule take these rows in. The booking is re-read under its
        lock, so a transition committed concurrently is seen here.
        """
        schedule_instance_id = self._load_booking(booking_id).schedule_instance_id
        schedule = self._load_schedule(schedule_instance_id, for_update=True)
        booking = self._load_booking(booking_id, for_update=True)
        return booking, schedule

    def _charge_seat(self, member_id: str, credit_cost: int) -> Tuple[int, Optional[str]]:
        """
        Charge one seat to the member's active membership.

        Returns (credits_used, membership_id). Unlimited memberships are
        not charged.
        """
        today = self._now().date()
        membership = self.credits.find_active_membership(member_id, today)
        if membership is None or not membership.is_usable_on(today):
            raise InsufficientCreditsError(member_id, "Member has no active membership")
        if not membership.has_credits(credit_cost):
            raise InsufficientCreditsError(member_id)
        if membership.is_unlimited:
            return 0, membership.id
        self.credits.deduct_class_credit(membership.id, credit_cost)
        return credit_cost, membership.id

    def _insert_booking(
        self,
        schedule: ScheduleInstance,
        member_id: str,
        status: BookingStatus,
        notes: Optional[str],
        credits_used: int = 0,
        membership_id: Optional[str] = None,
    ) -> Booking:
        try:
            return self.repository.create(
                organisation_id=schedule.organisation_id,
                gym_id=schedule.gym_id,
                member_id=member_id,
                schedule_instance_id=schedule.id,
                status=status.value,
                credits_used=credits_used,
                membership_id=membership_id,
                member_notes=notes,
            )
        except RepositoryException as exc:
            if _is_active_booking_violation(exc):
                raise DuplicateBookingError(member_id, schedule.id) from exc
            raise

    def _promote_next(self, schedule: ScheduleInstance) -> Tuple[Optional[Booking], bool]:
        """
        Promote the oldest waitlisted booking into the freed seat, if it can pay.

        ``schedule`` must already be locked by the caller. Returns the
        promoted booking (or None) and whether the head of the waitlist was
        skipped because it could not pay.
        """
        waitlist = self.repository.find_waitlist_by_schedule_id(
            schedule.id, limit=1, for_update=True
        )
        if not waitlist:
            return None, False
        candidate = waitlist[0]

        if not self.schedule_repository.try_reserve_seat(schedule.id, schedule.effective_capacity):
            # Instance no longer open, or still full after a capacity change.
            return None, False

        try:
            credits_used, membership_id = self._charge_seat(
                candidate.member_id, schedule.class_definition.credit_cost
            )
        except InsufficientCreditsError as exc:
            self.schedule_repository.release_seat(schedule.id)
            self.logger.warning(
                "Waitlist promotion skipped: member cannot pay",
                extra={
                    "booking_id": candidate.id,
                    "member_id": candidate.member_id,
                    "schedule_instance_id": schedule.id,
                    "reason": exc.message,
                },
            )
            return None, True

        candidate.confirm(credits_used, membership_id)
        self.repository.flush()
        self.logger.info(
            "Waitlisted booking promoted",
            extra={"booking_id": candidate.id, "schedule_instance_id": schedule.id},
        )
        return candidate, False
