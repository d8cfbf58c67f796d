# gymbook/repositories/gym_repository.py
"""
Gym directory lookups.

The gym directory is not tenant-scoped: it is consulted while a scope is
being resolved, before one exists.
"""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.gym import Gym
from .base_repository import BaseRepository


class GymRepository(BaseRepository[Gym]):
    def __init__(self, db: Session):
        super().__init__(db, Gym)

    def find_in_organisation(self, gym_id: str, organisation_id: str) -> Optional[Gym]:
        """The active gym ``gym_id`` if it belongs to ``organisation_id``."""
        return self.find_one_by(id=gym_id, organisation_id=organisation_id, is_active=True)
