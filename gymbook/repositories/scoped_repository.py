# gymbook/repositories/scoped_repository.py
"""
Repository base for tenant-scoped kinds.

The session hooks already attach the tenant predicate to every ORM
statement; ScopedRepository applies it again in its base query so that
every repository query is scoped structurally, including aggregate and
column-only queries built from ``_scope_criteria``.
"""

from typing import Any, List, Type, TypeVar

from sqlalchemy.orm import Query, Session, lazyload

from ..core.exceptions import MissingTenantContextError, NotFoundError
from ..core.tenant_scope import TenantScope, get_scope_or_none
from ..models.types import GymScopedMixin, TenantScopedMixin
from .base_repository import BaseRepository

S = TypeVar("S", bound=TenantScopedMixin)


class ScopedRepository(BaseRepository[S]):
    """BaseRepository whose every query is confined to the active tenant scope."""

    def __init__(self, db: Session, model: Type[S]):
        if not issubclass(model, TenantScopedMixin):
            raise TypeError(f"{model.__name__} is not a tenant-scoped model")
        super().__init__(db, model)

    def _require_scope(self, operation: str = "select") -> TenantScope:
        scope = get_scope_or_none()
        if scope is None:
            raise MissingTenantContextError(self.model.__name__, operation)
        return scope

    def _scope_criteria(self, model: Any = None) -> List[Any]:
        """Predicates confining ``model`` (default: this repository's) to the scope."""
        target = model if model is not None else self.model
        scope = self._require_scope()
        criteria = [target.organisation_id == scope.organisation_id]
        if issubclass(target, GymScopedMixin) and scope.gym_id is not None:
            criteria.append(target.gym_id == scope.gym_id)
        return criteria

    def _build_query(self) -> Query:
        return self.db.query(self.model).filter(*self._scope_criteria())

    def require(self, id: str, *, for_update: bool = False) -> S:
        """
        Return the entity with ``id`` inside the scope or raise NotFoundError.

        Rows of other tenants are indistinguishable from missing rows here.
        ``for_update`` takes a row lock where the backend supports one and
        overwrites any copy already in the identity map with the row as
        read under that lock.
        """
        query = self._build_query().filter(self.model.id == id)
        if for_update:
            # Relationships load lazily so the lock never spans an outer join.
            query = query.options(lazyload("*")).populate_existing()
            if self.dialect_name != "sqlite":
                query = query.with_for_update(of=self.model)
        entity = self._execute_query(query.limit(1))
        if not entity:
            raise NotFoundError(self.model.__name__, id)
        return entity[0]
