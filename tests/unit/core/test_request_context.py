from __future__ import annotations

import logging

from gymbook.core.config import settings
from gymbook.core.request_context import (
    RequestContextFilter,
    attach_request_context_filter,
    configure_logging,
    get_request_id,
    reset_request_id,
    set_request_id,
)
from gymbook.core.tenant_scope import tenant_scope


def _record() -> logging.LogRecord:
    return logging.LogRecord("gymbook.test", logging.INFO, __file__, 1, "hello", None, None)


def test_filter_outside_scope_uses_placeholders() -> None:
    record = _record()

    assert RequestContextFilter().filter(record) is True
    assert record.request_id == "no-request"
    assert record.organisation_id == "-"
    assert record.gym_id == "-"


def test_filter_attaches_scope_and_request_id() -> None:
    token = set_request_id("req-123")
    try:
        with tenant_scope("org-1", "gym-1"):
            record = _record()
            RequestContextFilter().filter(record)
    finally:
        reset_request_id(token)

    assert record.request_id == "req-123"
    assert record.organisation_id == "org-1"
    assert record.gym_id == "gym-1"
    assert get_request_id() is None


def test_organisation_scope_logs_dash_for_gym() -> None:
    with tenant_scope("org-1"):
        record = _record()
        RequestContextFilter().filter(record)

    assert record.gym_id == "-"


def test_attach_filter_is_idempotent() -> None:
    logger = logging.getLogger("gymbook.test.attach")
    handler = logging.NullHandler()
    logger.addHandler(handler)
    try:
        attach_request_context_filter(logger)
        attach_request_context_filter(logger)
        assert len([f for f in handler.filters if isinstance(f, RequestContextFilter)]) == 1
    finally:
        logger.removeHandler(handler)


def test_configure_logging_sets_level_and_filters_root_handlers(monkeypatch) -> None:
    root = logging.getLogger()
    original_level = root.level
    monkeypatch.setattr(root, "handlers", [])
    try:
        configure_logging("warning")

        assert root.level == logging.WARNING
        assert root.handlers
        assert all(
            any(isinstance(f, RequestContextFilter) for f in handler.filters)
            for handler in root.handlers
        )
    finally:
        root.setLevel(original_level)


def test_configure_logging_defaults_to_configured_level(monkeypatch) -> None:
    root = logging.getLogger()
    original_level = root.level
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(settings, "log_level", "ERROR")
    try:
        configure_logging()

        assert root.level == logging.ERROR
    finally:
        root.setLevel(original_level)
