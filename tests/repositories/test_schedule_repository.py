from __future__ import annotations

from datetime import timedelta

import pytest

from factories.gym_builders import (
    CLASS_START,
    GYM_A1,
    GYM_A2,
    GYM_B1,
    ORG_A,
    ORG_B,
    make_class,
    make_schedule,
)
from gymbook.core.exceptions import MissingTenantContextError, NotFoundError
from gymbook.core.tenant_scope import tenant_scope
from gymbook.models import ScheduleStatus
from gymbook.repositories import RepositoryFactory

NINE = CLASS_START
TEN = CLASS_START + timedelta(hours=1)


@pytest.fixture
def seeded(db):
    spin = make_class(db, capacity=2)
    morning = make_schedule(db, spin, start=NINE, end=TEN, trainer_id="trainer-t", area_id="studio-1")
    cancelled = make_schedule(
        db,
        spin,
        start=NINE + timedelta(hours=3),
        trainer_id="trainer-t",
        status=ScheduleStatus.CANCELLED,
    )
    # Same trainer and area ids in other tenants never count.
    sibling = make_class(db, organisation_id=ORG_A, gym_id=GYM_A2)
    make_schedule(db, sibling, start=NINE + timedelta(hours=5), trainer_id="trainer-t")
    foreign = make_class(db, organisation_id=ORG_B, gym_id=GYM_B1)
    make_schedule(db, foreign, start=NINE + timedelta(hours=6), area_id="studio-1")
    return {"morning": morning, "cancelled": cancelled}


@pytest.fixture
def repo(db, seeded):
    with tenant_scope(ORG_A, GYM_A1):
        yield RepositoryFactory.create_schedule_repository(db)


class TestOverlap:
    @pytest.mark.parametrize(
        "start, end, expected",
        [
            (NINE + timedelta(minutes=30), TEN + timedelta(minutes=30), True),
            (NINE - timedelta(minutes=30), NINE + timedelta(minutes=1), True),
            (NINE + timedelta(minutes=15), NINE + timedelta(minutes=45), True),
            (NINE - timedelta(hours=1), TEN + timedelta(hours=1), True),
            (TEN, TEN + timedelta(hours=1), False),
            (NINE - timedelta(hours=1), NINE, False),
        ],
    )
    def test_trainer_intervals_are_half_open(self, repo, start, end, expected):
        assert repo.has_trainer_conflict("trainer-t", start, end) is expected

    def test_area_overlap(self, repo):
        assert repo.has_area_conflict("studio-1", NINE, TEN) is True
        assert repo.has_area_conflict("studio-2", NINE, TEN) is False

    def test_cancelled_instances_never_conflict(self, repo, seeded):
        cancelled = seeded["cancelled"]
        assert repo.has_trainer_conflict("trainer-t", cancelled.start_time, cancelled.end_time) is False

    def test_excluded_instance_is_ignored(self, repo, seeded):
        assert repo.has_trainer_conflict("trainer-t", NINE, TEN, seeded["morning"].id) is False

    def test_other_tenants_are_not_considered(self, repo):
        # Sibling gym (+5h) and foreign organisation (+6h) hold these slots.
        assert repo.has_trainer_conflict(
            "trainer-t", NINE + timedelta(hours=5), NINE + timedelta(hours=6)
        ) is False
        assert repo.has_area_conflict(
            "studio-1", NINE + timedelta(hours=6), NINE + timedelta(hours=7)
        ) is False

    def test_find_conflicts_returns_instances(self, repo, seeded):
        found = repo.find_trainer_conflicts("trainer-t", NINE - timedelta(hours=1), NINE + timedelta(hours=8))
        assert [s.id for s in found] == [seeded["morning"].id]


class TestListings:
    def test_list_in_range_includes_every_status(self, repo, seeded):
        window = repo.list_in_range(NINE, NINE + timedelta(days=1))
        assert [s.id for s in window] == [seeded["morning"].id, seeded["cancelled"].id]

    def test_list_in_range_by_status(self, repo, seeded):
        window = repo.list_in_range(NINE, NINE + timedelta(days=1), ScheduleStatus.CANCELLED)
        assert [s.id for s in window] == [seeded["cancelled"].id]

    def test_find_available_only_scheduled(self, repo, seeded):
        available = repo.find_available(NINE - timedelta(hours=1), NINE + timedelta(days=1))
        assert [s.id for s in available] == [seeded["morning"].id]


class TestSeatCounter:
    def test_reserve_stops_at_capacity(self, repo, seeded):
        schedule_id = seeded["morning"].id

        assert repo.try_reserve_seat(schedule_id, 2) is True
        assert repo.try_reserve_seat(schedule_id, 2) is True
        assert repo.try_reserve_seat(schedule_id, 2) is False
        assert repo.get_confirmed_count(schedule_id) == 2
        # The cached instance reflects the counter.
        assert seeded["morning"].confirmed_count == 2

    def test_release_never_goes_negative(self, repo, seeded):
        schedule_id = seeded["morning"].id
        repo.try_reserve_seat(schedule_id, 2)

        assert repo.release_seat(schedule_id) is True
        assert repo.release_seat(schedule_id) is False
        assert repo.get_confirmed_count(schedule_id) == 0

    def test_reserve_refused_when_not_scheduled(self, repo, seeded):
        assert repo.try_reserve_seat(seeded["cancelled"].id, 10) is False

    def test_reset(self, repo, seeded):
        schedule_id = seeded["morning"].id
        repo.try_reserve_seat(schedule_id, 2)
        repo.reset_seats(schedule_id)
        assert repo.get_confirmed_count(schedule_id) == 0

    def test_reserve_in_other_scope_touches_nothing(self, db, seeded):
        with tenant_scope(ORG_B, GYM_B1):
            other = RepositoryFactory.create_schedule_repository(db)
            assert other.try_reserve_seat(seeded["morning"].id, 2) is False
        with tenant_scope(ORG_A, GYM_A1):
            repo = RepositoryFactory.create_schedule_repository(db)
            assert repo.get_confirmed_count(seeded["morning"].id) == 0


def test_require_hides_other_tenants(db, seeded):
    with tenant_scope(ORG_B, GYM_B1):
        repo = RepositoryFactory.create_schedule_repository(db)
        with pytest.raises(NotFoundError):
            repo.require(seeded["morning"].id)


def test_repository_needs_scope(db, seeded):
    repo = RepositoryFactory.create_schedule_repository(db)
    with pytest.raises(MissingTenantContextError):
        repo.get_by_id(seeded["morning"].id)
