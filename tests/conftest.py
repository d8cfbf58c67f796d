from __future__ import annotations

from typing import Iterator

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from gymbook.core.tenant_scope import TenantScope, tenant_scope
from gymbook.database import Base, create_engine_for_url, create_session_factory

# Import models so Base.metadata is populated for create_all.
import gymbook.models  # noqa: F401

from factories.gym_builders import GYM_A1, ORG_A, seed_gyms


@pytest.fixture
def engine() -> Iterator[Engine]:
    """Fresh in-memory database per test, with the production locking recipe."""
    engine = create_engine_for_url("sqlite+pysqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Iterator[Session]:
    """
    One TenantSession per test.

    The in-memory engine shares a single connection, so tests seed and
    exercise services through this one session.
    """
    session = create_session_factory(engine)()
    seed_gyms(session)
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_engine(tmp_path) -> Iterator[Engine]:
    """File-backed SQLite so worker threads get their own connections."""
    engine = create_engine_for_url(f"sqlite+pysqlite:///{tmp_path / 'gymbook.db'}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def gym_a1_scope() -> Iterator[TenantScope]:
    with tenant_scope(ORG_A, GYM_A1) as scope:
        yield scope
