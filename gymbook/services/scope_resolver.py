# gymbook/services/scope_resolver.py
"""
Scope Resolver for gymbook

Turns an authenticated principal into the TenantScope a request runs in.
A principal without an organisation is rejected before any scoped call
is attempted; a gym that does not belong to the organisation is a
programming error in the auth layer and raises ScopeIntegrityError.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.exceptions import ForbiddenException, ScopeIntegrityError, UnauthorizedException
from ..core.tenant_scope import TenantScope
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import GymPrincipal
from ..repositories import RepositoryFactory
from ..repositories.gym_repository import GymRepository
from .base import BaseService

logger = logging.getLogger(__name__)


class ScopeResolver(BaseService):
    def __init__(self, db: Session, gym_repository: Optional[GymRepository] = None):
        super().__init__(db)
        self.gym_repository = gym_repository or RepositoryFactory.create_gym_repository(db)

    @BaseService.measure_operation("resolve_scope")
    def resolve(self, principal: GymPrincipal, gym_override: Optional[str] = None) -> TenantScope:
        """
        Scope for ``principal``.

        ``gym_override`` lets organisation staff act on one of the
        organisation's gyms; it is validated like the principal's own gym.
        Principals bound to a gym without a staff role may only name their
        own gym there.
        """
        if not principal.organisation_id:
            raise UnauthorizedException(
                "Caller is not attached to an organisation",
                code="NO_ORGANISATION",
                details={"user_id": principal.user_id},
            )

        if gym_override and gym_override != principal.gym_id and not principal.can_select_gym:
            self.logger.warning(
                "Gym override refused for gym-bound principal",
                extra={
                    "user_id": principal.user_id,
                    "gym_id": principal.gym_id,
                    "requested_gym_id": gym_override,
                },
            )
            raise ForbiddenException(
                "Caller may not act on another gym",
                code="GYM_OVERRIDE_FORBIDDEN",
                details={"gym_id": gym_override},
            )

        gym_id = gym_override or principal.gym_id
        if gym_id is not None:
            with self.transaction():
                gym = self.gym_repository.find_in_organisation(gym_id, principal.organisation_id)
            if gym is None:
                prometheus_metrics.record_scope_violation("scope_integrity")
                self.logger.error(
                    "Principal gym does not belong to its organisation",
                    extra={
                        "user_id": principal.user_id,
                        "organisation_id": principal.organisation_id,
                        "gym_id": gym_id,
                    },
                )
                raise ScopeIntegrityError(principal.organisation_id, gym_id)

        return TenantScope(organisation_id=principal.organisation_id, gym_id=gym_id)
