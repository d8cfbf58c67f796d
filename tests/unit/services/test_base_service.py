from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from gymbook.core.exceptions import ServiceException
from gymbook.monitoring.prometheus_metrics import REGISTRY
from gymbook.services.base import BaseService


class _TimedService(BaseService):
    @BaseService.measure_operation("ping")
    def ping(self, fail: bool = False) -> str:
        if fail:
            raise ValueError("ping failed")
        return "ok"


def test_measured_operations_feed_prometheus() -> None:
    service = _TimedService(MagicMock())
    labels = {"service": "_TimedService", "operation": "ping"}
    ok_before = REGISTRY.get_sample_value(
        "gymbook_service_operations_total", {**labels, "status": "success"}
    ) or 0.0
    errors_before = REGISTRY.get_sample_value(
        "gymbook_errors_total", {**labels, "error_type": "ValueError"}
    ) or 0.0

    assert service.ping() == "ok"
    with pytest.raises(ValueError):
        service.ping(fail=True)

    assert REGISTRY.get_sample_value(
        "gymbook_service_operations_total", {**labels, "status": "success"}
    ) == ok_before + 1
    assert REGISTRY.get_sample_value(
        "gymbook_errors_total", {**labels, "error_type": "ValueError"}
    ) == errors_before + 1


def test_transaction_commits_on_success() -> None:
    db = MagicMock()

    with _TimedService(db).transaction():
        pass

    db.commit.assert_called_once()
    db.rollback.assert_not_called()


def test_transaction_wraps_database_errors_with_cause() -> None:
    db = MagicMock()
    failure = OperationalError("UPDATE", {}, Exception("database is locked"))

    with pytest.raises(ServiceException) as exc_info:
        with _TimedService(db).transaction():
            raise failure

    assert exc_info.value.__cause__ is failure
    db.rollback.assert_called_once()


def test_transaction_rolls_back_business_errors_unchanged() -> None:
    db = MagicMock()

    with pytest.raises(KeyError):
        with _TimedService(db).transaction():
            raise KeyError("missing")

    db.commit.assert_not_called()
    db.rollback.assert_called_once()
