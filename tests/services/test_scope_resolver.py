from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from factories.gym_builders import GYM_A1, GYM_A2, GYM_B1, ORG_A
from gymbook.core.exceptions import ForbiddenException, ScopeIntegrityError, UnauthorizedException
from gymbook.core.tenant_scope import TenantScope
from gymbook.monitoring.prometheus_metrics import REGISTRY
from gymbook.principal import GymPrincipal
from gymbook.services.scope_resolver import ScopeResolver


def test_gym_staff_resolve_to_their_gym(db):
    principal = GymPrincipal(user_id="u1", organisation_id=ORG_A, gym_id=GYM_A1)
    assert ScopeResolver(db).resolve(principal) == TenantScope(ORG_A, GYM_A1)


def test_organisation_staff_resolve_to_organisation(db):
    principal = GymPrincipal(user_id="u1", organisation_id=ORG_A)
    scope = ScopeResolver(db).resolve(principal)
    assert scope == TenantScope(ORG_A)
    assert not scope.is_gym_level


def test_gym_override_within_organisation(db):
    principal = GymPrincipal(user_id="u1", organisation_id=ORG_A, roles=("org_admin",))
    assert ScopeResolver(db).resolve(principal, gym_override=GYM_A2).gym_id == GYM_A2


def test_principal_without_organisation_is_unauthorized(db):
    with pytest.raises(UnauthorizedException) as exc_info:
        ScopeResolver(db).resolve(GymPrincipal(user_id="u1", organisation_id=None))
    assert exc_info.value.code == "NO_ORGANISATION"
    assert exc_info.value.to_http_exception().status_code == 401


def test_gym_of_another_organisation_breaks_integrity(db):
    before = REGISTRY.get_sample_value(
        "gymbook_tenant_scope_violations_total", {"kind": "scope_integrity"}
    ) or 0.0

    with pytest.raises(ScopeIntegrityError):
        ScopeResolver(db).resolve(GymPrincipal(user_id="u1", organisation_id=ORG_A, gym_id=GYM_B1))

    assert REGISTRY.get_sample_value(
        "gymbook_tenant_scope_violations_total", {"kind": "scope_integrity"}
    ) == before + 1


def test_override_is_validated_too(db):
    principal = GymPrincipal(
        user_id="u1", organisation_id=ORG_A, gym_id=GYM_A1, roles=("org_admin",)
    )
    with pytest.raises(ScopeIntegrityError):
        ScopeResolver(db).resolve(principal, gym_override=GYM_B1)


def test_staff_bound_to_a_gym_can_switch_gyms(db):
    principal = GymPrincipal(
        user_id="u1", organisation_id=ORG_A, gym_id=GYM_A1, roles=("org_staff",)
    )
    assert ScopeResolver(db).resolve(principal, gym_override=GYM_A2) == TenantScope(ORG_A, GYM_A2)


def test_gym_bound_member_cannot_switch_gyms(db):
    principal = GymPrincipal(
        user_id="u1", organisation_id=ORG_A, gym_id=GYM_A1, roles=("member",)
    )

    with pytest.raises(ForbiddenException) as exc_info:
        ScopeResolver(db).resolve(principal, gym_override=GYM_A2)

    assert exc_info.value.code == "GYM_OVERRIDE_FORBIDDEN"
    assert exc_info.value.to_http_exception().status_code == 403


def test_gym_bound_member_may_name_their_own_gym(db):
    principal = GymPrincipal(user_id="u1", organisation_id=ORG_A, gym_id=GYM_A1)
    assert ScopeResolver(db).resolve(principal, gym_override=GYM_A1).gym_id == GYM_A1


def test_organisation_scope_skips_gym_lookup():
    gym_repository = MagicMock()
    resolver = ScopeResolver(MagicMock(), gym_repository=gym_repository)

    resolver.resolve(GymPrincipal(user_id="u1", organisation_id=ORG_A))

    gym_repository.find_in_organisation.assert_not_called()
