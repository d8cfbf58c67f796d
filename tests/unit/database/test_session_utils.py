from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from gymbook import database
from gymbook.core.exceptions import ServiceException
from gymbook.database import with_db_retry
from gymbook.database.session_utils import get_dialect_name, is_serialization_failure


class _PgError(Exception):
    def __init__(self, pgcode: str) -> None:
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _locked() -> OperationalError:
    return OperationalError("UPDATE schedule_instances", {}, Exception("database is locked"))


@pytest.mark.parametrize("pgcode", ["40001", "40P01"])
def test_postgres_serialization_codes_are_retryable(pgcode) -> None:
    exc = DBAPIError("UPDATE bookings", {}, _PgError(pgcode))
    assert is_serialization_failure(exc) is True


def test_sqlite_lock_is_retryable() -> None:
    assert is_serialization_failure(_locked()) is True


def test_cause_chain_is_followed() -> None:
    try:
        try:
            raise _locked()
        except OperationalError as inner:
            raise ServiceException("Database operation failed") from inner
    except ServiceException as outer:
        assert is_serialization_failure(outer) is True


@pytest.mark.parametrize(
    "exc",
    [
        IntegrityError("INSERT INTO bookings", {}, Exception("UNIQUE constraint failed")),
        DBAPIError("SELECT 1", {}, _PgError("23505")),
        ValueError("nope"),
    ],
)
def test_other_errors_are_not_retryable(exc) -> None:
    assert is_serialization_failure(exc) is False


def test_dialect_name_falls_back_to_default() -> None:
    session = MagicMock()
    session.get_bind.return_value = SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))
    assert get_dialect_name(session) == "postgresql"

    session.get_bind.return_value = SimpleNamespace(dialect=None)
    assert get_dialect_name(session, default="sqlite") == "sqlite"


class TestWithDbRetry:
    @pytest.fixture(autouse=True)
    def _no_sleep(self, monkeypatch):
        monkeypatch.setattr(database.time, "sleep", lambda _delay: None)

    def test_retries_once_then_succeeds(self) -> None:
        func = MagicMock(side_effect=[_locked(), "ok"])
        on_retry = MagicMock()

        assert with_db_retry("create_booking", func, max_attempts=2, on_retry=on_retry) == "ok"
        assert func.call_count == 2
        on_retry.assert_called_once()
        assert on_retry.call_args.args[0] == 1

    def test_gives_up_after_max_attempts(self) -> None:
        func = MagicMock(side_effect=[_locked(), _locked(), "never"])

        with pytest.raises(OperationalError):
            with_db_retry("create_booking", func, max_attempts=2)
        assert func.call_count == 2

    def test_does_not_retry_business_errors(self) -> None:
        func = MagicMock(side_effect=ValueError("rule"))

        with pytest.raises(ValueError):
            with_db_retry("create_booking", func, max_attempts=3)
        func.assert_called_once()
