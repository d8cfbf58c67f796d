from __future__ import annotations

from contextvars import ContextVar, Token
import logging
from typing import Optional

from .config import settings
from .tenant_scope import get_scope_or_none

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - "
    "[req=%(request_id)s org=%(organisation_id)s gym=%(gym_id)s] %(message)s"
)


def set_request_id(request_id: Optional[str]) -> Token[str]:
    return _request_id_var.set(request_id or "")


def reset_request_id(token: Token[str]) -> None:
    _request_id_var.reset(token)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    value = _request_id_var.get()
    return value if value else default


def get_request_id_value(default: str = "no-request") -> str:
    value = _request_id_var.get()
    return value if value else default


class RequestContextFilter(logging.Filter):
    """Attach request id and tenant scope to every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id_value()
        scope = get_scope_or_none()
        if not hasattr(record, "organisation_id"):
            record.organisation_id = scope.organisation_id if scope else "-"
        if not hasattr(record, "gym_id"):
            record.gym_id = (scope.gym_id or "-") if scope else "-"
        return True


def attach_request_context_filter(logger: Optional[logging.Logger] = None) -> None:
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(RequestContextFilter())


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with tenant-aware records at ``level`` (default: settings)."""
    level = (level or settings.log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    attach_request_context_filter()
