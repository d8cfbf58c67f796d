# gymbook/core/tenant_scope.py
"""
Tenant scope propagation.

Every data read, write and entity creation in gymbook runs inside a
TenantScope: the (organisation_id, gym_id) pair of the caller. The scope
lives in a ContextVar, which gives the propagation rules we need:

- asyncio child tasks of a request copy the caller's context, so they see
  the same scope;
- independent requests (threads of a worker pool, or separate asyncio
  tasks) each run in their own context and never observe another
  request's scope;
- the scope is reset on every exit path of ``tenant_scope()``.

Thread pools do not copy context on their own, so same-request child work
goes through ``submit_in_scope``. Background work that must not inherit
the scope goes through ``run_detached`` / ``create_detached_task``.

Usage:
    with tenant_scope(org_id, gym_id):
        booking_service.create_booking(member_id, schedule_id)
"""

from __future__ import annotations

import asyncio
from concurrent.futures import Executor, Future
from contextlib import contextmanager
from contextvars import Context, ContextVar, copy_context
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Iterator, Optional, TypeVar

from .exceptions import NoScopeError

T = TypeVar("T")


@dataclass(frozen=True)
class TenantScope:
    """Immutable organisation/gym pair for one request or operation."""

    organisation_id: str
    gym_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.organisation_id:
            raise ValueError("organisation_id must not be empty")
        if self.gym_id is not None and not self.gym_id:
            raise ValueError("gym_id must be None or a non-empty id")

    @property
    def is_gym_level(self) -> bool:
        return self.gym_id is not None

    def __repr__(self) -> str:
        return f"TenantScope(org={self.organisation_id!r}, gym={self.gym_id!r})"


_current_scope: ContextVar[Optional[TenantScope]] = ContextVar("tenant_scope", default=None)


def current_scope() -> TenantScope:
    """Return the active scope or raise NoScopeError."""
    scope = _current_scope.get()
    if scope is None:
        raise NoScopeError()
    return scope


def get_scope_or_none() -> Optional[TenantScope]:
    """Return the active scope, or None for bypass paths and log filters."""
    return _current_scope.get()


@contextmanager
def tenant_scope(organisation_id: str, gym_id: Optional[str] = None) -> Iterator[TenantScope]:
    """
    Open a tenant scope for the enclosed block.

    Nested scopes are explicit overrides: the inner scope wins for the
    block and the outer one is restored on exit.
    """
    scope = TenantScope(organisation_id=organisation_id, gym_id=gym_id)
    token = _current_scope.set(scope)
    try:
        yield scope
    finally:
        _current_scope.reset(token)


@contextmanager
def use_scope(scope: TenantScope) -> Iterator[TenantScope]:
    """Open an already-resolved TenantScope (e.g. from ScopeResolver)."""
    with tenant_scope(scope.organisation_id, scope.gym_id) as active:
        yield active


def with_scope(
    organisation_id: str,
    gym_id: Optional[str],
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call ``fn`` so that nested ``current_scope()`` calls see the given pair."""
    with tenant_scope(organisation_id, gym_id):
        return fn(*args, **kwargs)


def submit_in_scope(executor: Executor, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
    """Submit same-request child work to a pool, carrying the caller's scope."""
    ctx = copy_context()
    return executor.submit(ctx.run, fn, *args, **kwargs)


def run_detached(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run ``fn`` in an empty context so no tenant scope leaks into it."""
    return Context().run(fn, *args, **kwargs)


def create_detached_task(coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
    """Start a fire-and-forget task that does not inherit the caller's scope."""
    return asyncio.get_running_loop().create_task(coro, context=Context())


__all__ = [
    "TenantScope",
    "create_detached_task",
    "current_scope",
    "get_scope_or_none",
    "run_detached",
    "submit_in_scope",
    "tenant_scope",
    "use_scope",
    "with_scope",
]
