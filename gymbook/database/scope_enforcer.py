# gymbook/database/scope_enforcer.py
"""
Tenant scope enforcement at the session layer.

Two hooks are bound to TenantSession:

``do_orm_execute``
    Every ORM SELECT touching a scoped kind gets loader criteria for
    ``organisation_id`` (and ``gym_id`` for gym-scoped kinds when the scope
    names a gym). ORM UPDATE/DELETE statements get the same predicates as
    WHERE clauses. Application code cannot opt out: there is no execution
    option that skips the criteria.

``before_flush``
    New scoped rows are stamped from the active scope, rows labelled for a
    different tenant are refused, and changes to a stored row's
    organisation_id/gym_id are refused.

Touching scoped storage with no active scope raises
MissingTenantContextError.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Type, TypeVar

from sqlalchemy import event, inspect
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from gymbook.core.exceptions import CrossTenantAccessError, MissingTenantContextError
from gymbook.core.tenant_scope import TenantScope, get_scope_or_none
from gymbook.models.types import GymScopedMixin, TenantScopedMixin
from gymbook.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _is_scoped(cls: Optional[type]) -> bool:
    return isinstance(cls, type) and issubclass(cls, TenantScopedMixin)


def _scoped_classes(orm_execute_state: ORMExecuteState) -> list[type]:
    mappers = list(orm_execute_state.all_mappers)
    # Aggregates like select(func.count()).select_from(Model) only surface here.
    if orm_execute_state.bind_mapper is not None:
        mappers.append(orm_execute_state.bind_mapper)
    classes = []
    for mapper in mappers:
        if _is_scoped(mapper.class_) and mapper.class_ not in classes:
            classes.append(mapper.class_)
    return classes


def _violation(kind: str, error: Exception) -> Exception:
    prometheus_metrics.record_scope_violation(kind)
    return error


def _apply_scope_criteria(orm_execute_state: ORMExecuteState) -> None:
    if orm_execute_state.is_column_load or orm_execute_state.is_relationship_load:
        return

    if orm_execute_state.is_select:
        scoped = _scoped_classes(orm_execute_state)
        if not scoped:
            return
        scope = get_scope_or_none()
        if scope is None:
            raise _violation(
                "missing_context",
                MissingTenantContextError(scoped[0].__name__, "select"),
            )
        orm_execute_state.statement = orm_execute_state.statement.options(
            *_loader_criteria(scope)
        )
        return

    if orm_execute_state.is_update or orm_execute_state.is_delete:
        statement = orm_execute_state.statement
        entity = statement.entity_description.get("entity")
        if not _is_scoped(entity):
            return
        operation = "update" if orm_execute_state.is_update else "delete"
        scope = get_scope_or_none()
        if scope is None:
            raise _violation(
                "missing_context",
                MissingTenantContextError(entity.__name__, operation),
            )
        statement = statement.where(entity.organisation_id == scope.organisation_id)
        if issubclass(entity, GymScopedMixin) and scope.gym_id is not None:
            statement = statement.where(entity.gym_id == scope.gym_id)
        orm_execute_state.statement = statement


def _loader_criteria(scope: TenantScope) -> list[Any]:
    organisation_id = scope.organisation_id
    options = [
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.organisation_id == organisation_id,
            include_aliases=True,
        )
    ]
    if scope.gym_id is not None:
        gym_id = scope.gym_id
        options.append(
            with_loader_criteria(
                GymScopedMixin,
                lambda cls: cls.gym_id == gym_id,
                include_aliases=True,
            )
        )
    return options


def _stamp_new(obj: TenantScopedMixin, scope: Optional[TenantScope]) -> None:
    entity = type(obj).__name__
    gym_scoped = isinstance(obj, GymScopedMixin)

    if scope is None:
        # Seeding and system jobs may label rows explicitly; nothing is guessed.
        if obj.organisation_id is None or (gym_scoped and obj.gym_id is None):
            raise _violation("missing_context", MissingTenantContextError(entity, "create"))
        return

    if obj.organisation_id is None:
        obj.organisation_id = scope.organisation_id
    elif obj.organisation_id != scope.organisation_id:
        raise _violation(
            "cross_tenant_write",
            CrossTenantAccessError(
                entity,
                getattr(obj, "id", None),
                {"organisation_id": obj.organisation_id},
            ),
        )

    if not gym_scoped:
        return
    if obj.gym_id is None:
        if scope.gym_id is None:
            raise _violation("missing_context", MissingTenantContextError(entity, "create"))
        obj.gym_id = scope.gym_id
    elif scope.gym_id is not None and obj.gym_id != scope.gym_id:
        raise _violation(
            "cross_tenant_write",
            CrossTenantAccessError(entity, getattr(obj, "id", None), {"gym_id": obj.gym_id}),
        )


def _check_persisted(obj: TenantScopedMixin, scope: Optional[TenantScope], operation: str) -> None:
    entity = type(obj).__name__
    state = inspect(obj)

    owner_fields = ["organisation_id"]
    if isinstance(obj, GymScopedMixin):
        owner_fields.append("gym_id")
    for field in owner_fields:
        if state.attrs[field].history.has_changes():
            raise _violation(
                "owner_change",
                CrossTenantAccessError(entity, getattr(obj, "id", None), {"field": field}),
            )

    if scope is None:
        raise _violation("missing_context", MissingTenantContextError(entity, operation))
    if obj.organisation_id != scope.organisation_id or (
        isinstance(obj, GymScopedMixin)
        and scope.gym_id is not None
        and obj.gym_id != scope.gym_id
    ):
        raise _violation(
            "cross_tenant_write",
            CrossTenantAccessError(entity, getattr(obj, "id", None)),
        )


def _scoped_only(objects: Iterable[Any]) -> list[TenantScopedMixin]:
    return [obj for obj in objects if isinstance(obj, TenantScopedMixin)]


def _enforce_on_flush(session: Session, flush_context: Any, instances: Any) -> None:
    scope = get_scope_or_none()
    for obj in _scoped_only(session.new):
        _stamp_new(obj, scope)
    for obj in _scoped_only(session.dirty):
        if session.is_modified(obj, include_collections=False):
            _check_persisted(obj, scope, "update")
    for obj in _scoped_only(session.deleted):
        _check_persisted(obj, scope, "delete")


def install_scope_enforcer(session_cls: Type[Session]) -> None:
    """Bind the enforcement hooks to ``session_cls`` (idempotent)."""
    if not event.contains(session_cls, "do_orm_execute", _apply_scope_criteria):
        event.listen(session_cls, "do_orm_execute", _apply_scope_criteria)
    if not event.contains(session_cls, "before_flush", _enforce_on_flush):
        event.listen(session_cls, "before_flush", _enforce_on_flush)


def assert_belongs_to(
    entity: Optional[E],
    expected_organisation_id: str,
    expected_gym_id: Optional[str] = None,
    *,
    entity_name: Optional[str] = None,
) -> E:
    """
    Verify an entity fetched by an externally supplied ID is inside the scope.

    Returns the entity so callers can chain; raises CrossTenantAccessError on
    any mismatch, including a missing entity.
    """
    name = entity_name or (type(entity).__name__ if entity is not None else "Entity")
    if entity is None:
        raise _violation("cross_tenant_read", CrossTenantAccessError(name))

    entity_id = getattr(entity, "id", None)
    if getattr(entity, "organisation_id", None) != expected_organisation_id:
        logger.error(
            "Entity resolved outside the caller's organisation",
            extra={"event": "cross_tenant_access", "entity": name, "entity_id": entity_id},
        )
        raise _violation("cross_tenant_read", CrossTenantAccessError(name, entity_id))
    if expected_gym_id is not None and getattr(entity, "gym_id", expected_gym_id) != expected_gym_id:
        logger.error(
            "Entity resolved outside the caller's gym",
            extra={"event": "cross_tenant_access", "entity": name, "entity_id": entity_id},
        )
        raise _violation("cross_tenant_read", CrossTenantAccessError(name, entity_id))
    return entity


__all__ = ["assert_belongs_to", "install_scope_enforcer"]
