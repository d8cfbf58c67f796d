from __future__ import annotations

from datetime import timedelta

import pytest

from factories.gym_builders import (
    CLASS_START,
    GYM_A1,
    GYM_A2,
    ORG_A,
    make_class,
    make_membership,
)
from gymbook.core.exceptions import (
    BusinessRuleException,
    InvalidStateError,
    NotFoundError,
    SchedulingConflictError,
    ValidationException,
)
from gymbook.core.tenant_scope import tenant_scope
from gymbook.models import BookingStatus, ScheduleStatus
from gymbook.services.booking_service import BookingService
from gymbook.services.schedule_service import ScheduleService

NINE = CLASS_START
HOUR = timedelta(hours=1)
HALF = timedelta(minutes=30)


@pytest.fixture
def spin(db):
    return make_class(db, capacity=2)


@pytest.fixture
def service(db, spin):
    with tenant_scope(ORG_A, GYM_A1):
        yield ScheduleService(db)


@pytest.fixture
def bookings(db, spin):
    for member_id in ("m1", "m2", "m3"):
        make_membership(db, member_id)
    return BookingService(db, clock=lambda: NINE - timedelta(days=1))


class TestCreate:
    def test_trainer_cannot_be_double_booked(self, service, spin):
        first = service.create_schedule(spin.id, NINE, NINE + HOUR, trainer_id="trainer-t")

        with pytest.raises(SchedulingConflictError) as exc_info:
            service.create_schedule(spin.id, NINE + HALF, NINE + HOUR + HALF, trainer_id="trainer-t")
        assert exc_info.value.details["conflicting_schedule_ids"] == [first.id]

        back_to_back = service.create_schedule(spin.id, NINE + HOUR, NINE + 2 * HOUR, trainer_id="trainer-t")
        assert back_to_back.status == ScheduleStatus.SCHEDULED.value

    def test_area_cannot_be_double_booked(self, service, spin):
        service.create_schedule(spin.id, NINE, NINE + HOUR, area_id="studio-1")

        with pytest.raises(SchedulingConflictError) as exc_info:
            service.create_schedule(spin.id, NINE + HALF, NINE + HOUR, area_id="studio-1", trainer_id="t2")
        assert exc_info.value.code == "AREA_CONFLICT"

    def test_new_instance_starts_empty_in_scope(self, service, spin):
        schedule = service.create_schedule(
            spin.id, NINE, NINE + HOUR, capacity_override=5, instructor_notes="bring towels"
        )

        assert schedule.confirmed_count == 0
        assert schedule.effective_capacity == 5
        assert (schedule.organisation_id, schedule.gym_id) == (ORG_A, GYM_A1)
        assert service.get_schedule(schedule.id).instructor_notes == "bring towels"

    def test_end_must_follow_start(self, service, spin):
        with pytest.raises(ValidationException):
            service.create_schedule(spin.id, NINE, NINE)

    def test_capacity_override_must_be_positive(self, service, spin):
        with pytest.raises(ValidationException) as exc_info:
            service.create_schedule(spin.id, NINE, NINE + HOUR, capacity_override=0)
        assert exc_info.value.code == "INVALID_CAPACITY"

    def test_class_from_another_gym_is_not_found(self, db, service):
        with tenant_scope(ORG_A, GYM_A2):
            elsewhere = make_class(db, organisation_id=ORG_A, gym_id=GYM_A2)

        with pytest.raises(NotFoundError):
            service.create_schedule(elsewhere.id, NINE, NINE + HOUR)


class TestUpdate:
    def test_move_into_conflict_is_refused(self, service, spin):
        service.create_schedule(spin.id, NINE, NINE + HOUR, trainer_id="trainer-t")
        later = service.create_schedule(spin.id, NINE + 2 * HOUR, NINE + 3 * HOUR, trainer_id="trainer-t")

        with pytest.raises(SchedulingConflictError):
            service.update_schedule(later.id, start_time=NINE + HALF, end_time=NINE + HOUR + HALF)

    def test_shifting_within_own_slot_is_allowed(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR, trainer_id="trainer-t")

        moved = service.update_schedule(schedule.id, end_time=NINE + HOUR + HALF)

        assert moved.end_time == NINE + HOUR + HALF

    def test_unknown_fields_are_rejected(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        with pytest.raises(ValidationException) as exc_info:
            service.update_schedule(schedule.id, confirmed_count=0)
        assert exc_info.value.code == "INVALID_FIELDS"

    def test_capacity_cannot_drop_below_seats_held(self, service, spin, bookings):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        bookings.create_booking("m1", schedule.id)
        bookings.create_booking("m2", schedule.id)

        with pytest.raises(BusinessRuleException) as exc_info:
            service.update_schedule(schedule.id, capacity_override=1)
        assert exc_info.value.code == "CAPACITY_BELOW_CONFIRMED"

        assert service.update_schedule(schedule.id, capacity_override=4).effective_capacity == 4

    def test_only_scheduled_instances_change(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        service.start_schedule(schedule.id)

        with pytest.raises(InvalidStateError):
            service.update_schedule(schedule.id, instructor_notes="late")


class TestCancel:
    def test_cancel_closes_bookings_and_frees_resources(self, service, spin, bookings):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR, trainer_id="trainer-t")
        confirmed = bookings.create_booking("m1", schedule.id)
        bookings.create_booking("m2", schedule.id)
        waitlisted = bookings.create_booking("m3", schedule.id)

        cancelled = service.cancel_schedule(schedule.id, reason="instructor ill")

        assert cancelled.status == ScheduleStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "instructor ill"
        assert cancelled.confirmed_count == 0
        for booking_id in (confirmed.id, waitlisted.id):
            booking = bookings.get_booking(booking_id)
            assert booking.status == BookingStatus.CANCELLED.value
            assert booking.cancellation_reason == "instructor ill"

        with pytest.raises(NotFoundError):
            bookings.create_booking("m1", schedule.id)

        # The trainer's slot is free again.
        service.create_schedule(spin.id, NINE, NINE + HOUR, trainer_id="trainer-t")

    def test_completed_instance_cannot_be_cancelled(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        service.complete_schedule(schedule.id)

        with pytest.raises(InvalidStateError):
            service.cancel_schedule(schedule.id, reason="too late")


class TestLifecycle:
    def test_scheduled_to_in_progress_to_completed(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)

        assert service.start_schedule(schedule.id).status == ScheduleStatus.IN_PROGRESS.value
        assert service.complete_schedule(schedule.id).status == ScheduleStatus.COMPLETED.value

        with pytest.raises(InvalidStateError):
            service.start_schedule(schedule.id)

    def test_delete_unbooked_instance(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)

        service.delete_schedule(schedule.id)

        with pytest.raises(NotFoundError):
            service.get_schedule(schedule.id)

    def test_delete_refused_with_bookings(self, service, spin, bookings):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        booking = bookings.create_booking("m1", schedule.id)
        bookings.cancel_booking(booking.id)

        with pytest.raises(BusinessRuleException) as exc_info:
            service.delete_schedule(schedule.id)
        assert exc_info.value.code == "SCHEDULE_HAS_BOOKINGS"

    def test_delete_refused_while_running(self, service, spin):
        schedule = service.create_schedule(spin.id, NINE, NINE + HOUR)
        service.start_schedule(schedule.id)

        with pytest.raises(InvalidStateError):
            service.delete_schedule(schedule.id)


class TestQueries:
    def test_listing_and_availability(self, service, spin):
        morning = service.create_schedule(spin.id, NINE, NINE + HOUR)
        noon = service.create_schedule(spin.id, NINE + 3 * HOUR, NINE + 4 * HOUR)
        service.cancel_schedule(noon.id, reason="holiday")

        day_end = NINE + timedelta(hours=12)
        assert [s.id for s in service.list_schedules(NINE, day_end)] == [morning.id, noon.id]
        assert [s.id for s in service.list_schedules(NINE, day_end, ScheduleStatus.CANCELLED)] == [noon.id]
        assert [s.id for s in service.find_available(NINE, day_end)] == [morning.id]

    def test_listing_window_must_be_valid(self, service):
        with pytest.raises(ValidationException):
            service.list_schedules(NINE, NINE - HOUR)
