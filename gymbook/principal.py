"""Principal handed over by the authentication layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# Roles allowed to act on any gym of their organisation via X-Gym-ID.
ORGANISATION_STAFF_ROLES = frozenset({"org_admin", "org_staff"})


@dataclass(frozen=True)
class GymPrincipal:
    """
    Authenticated caller as far as tenancy is concerned.

    organisation_id is None for users not attached to any organisation
    (e.g. a fresh registration); such callers cannot open a scope.
    """

    user_id: str
    organisation_id: Optional[str]
    gym_id: Optional[str] = None
    roles: tuple[str, ...] = field(default_factory=tuple)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    @property
    def can_select_gym(self) -> bool:
        """Organisation-level principals and organisation staff may pick a gym."""
        return self.gym_id is None or any(self.has_role(r) for r in ORGANISATION_STAFF_ROLES)
