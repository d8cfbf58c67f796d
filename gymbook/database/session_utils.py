"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

# SQLSTATEs PostgreSQL uses for serialization failures and deadlocks.
_RETRYABLE_SQLSTATES = {"40001", "40P01"}
_RETRYABLE_MESSAGE_SNIPPETS = (
    "database is locked",
    "could not serialize access",
    "deadlock detected",
)


def resolve_session_bind(session: Session) -> Optional[Connection | Engine]:
    """Return the engine/connection bound to a session without direct .bind access."""
    try:
        bind = session.get_bind()
        if bind is not None:
            return bind
    except Exception:
        bind = None

    try:
        insp = inspect(session)
    except Exception:
        return None

    return getattr(insp, "bind", None)


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return SQLAlchemy dialect name without touching Session.bind directly.

    Falls back to ``default`` when the bound engine cannot be resolved.
    """
    bind = resolve_session_bind(session)
    if bind is None:
        return default
    dialect = getattr(bind, "dialect", None)
    name = getattr(dialect, "name", None)
    return name or default


def is_serialization_failure(exc: BaseException) -> bool:
    """
    True when ``exc`` (or anything in its cause chain) is a storage-level
    serialization conflict worth one optimistic retry.
    """
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, DBAPIError):
            orig = getattr(current, "orig", None)
            pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
            if pgcode in _RETRYABLE_SQLSTATES:
                return True
            if isinstance(current, OperationalError):
                message = str(current).lower()
                if any(snippet in message for snippet in _RETRYABLE_MESSAGE_SNIPPETS):
                    return True
        current = current.__cause__ or current.__context__
    return False
