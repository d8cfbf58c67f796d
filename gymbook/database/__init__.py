"""
Database engine, session factory, and metadata shared across the application.

Sessions are TenantSession instances: the scope enforcer hooks are bound to
that class, so every session created through ``create_session_factory`` (or
``SessionLocal``) applies the tenant predicate and stamps new rows.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from gymbook.core.config import settings

from .session_utils import is_serialization_failure

logger = logging.getLogger(__name__)

Base: DeclarativeMeta = declarative_base()


class TenantSession(Session):
    """Session class carrying the tenant scope enforcer hooks."""


def _install_sqlite_write_lock(engine: Engine, busy_timeout_seconds: float) -> None:
    """
    Make SQLite take the write lock when a transaction begins.

    pysqlite defers BEGIN until the first write, which lets two workers read
    the same seat count and then deadlock on upgrade. Emitting BEGIN IMMEDIATE
    serializes writers instead and also makes SAVEPOINT behave.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_seconds * 1000)}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for_url(url: str, *, echo: Optional[bool] = None) -> Engine:
    """Build an engine for ``url`` with the locking behaviour booking relies on."""
    echo = settings.db_echo if echo is None else echo
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, future=True, **kwargs)
        _install_sqlite_write_lock(engine, settings.sqlite_busy_timeout_seconds)
        return engine

    return create_engine(url, echo=echo, future=True, pool_pre_ping=True)


def create_session_factory(bind: Engine) -> sessionmaker:
    """Session factory producing TenantSession instances bound to ``bind``."""
    return sessionmaker(
        bind=bind,
        class_=TenantSession,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


engine: Engine = create_engine_for_url(settings.database_url)
SessionLocal = create_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")


def _retry_delay(attempt: int) -> float:
    base = 0.05 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.02 * attempt)


def with_db_retry(
    op_name: str,
    func: Callable[[], T],
    *,
    max_attempts: int = 2,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Execute a DB unit of work, retrying on serialization conflicts.

    ``func`` must own its transaction so a retry starts from a clean state.
    Anything that is not a serialization conflict propagates immediately.
    """
    attempt = 1
    while True:
        try:
            return func()
        except Exception as exc:
            if attempt >= max_attempts or not is_serialization_failure(exc):
                raise

            delay = _retry_delay(attempt)
            logger.warning(
                "Serialization conflict detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            time.sleep(delay)
            attempt += 1


from .scope_enforcer import install_scope_enforcer  # noqa: E402

install_scope_enforcer(TenantSession)


__all__ = [
    "Base",
    "SessionLocal",
    "TenantSession",
    "create_engine_for_url",
    "create_session_factory",
    "engine",
    "get_db",
    "with_db_retry",
]
