# gymbook/models/gym.py
"""
Gym directory model.

Gyms are managed by the organisation admin tooling; gymbook only needs the
directory to check that a scope's gym belongs to its organisation. The
table is intentionally not tenant-scoped so the check can run before any
scope exists.
"""

from sqlalchemy import Boolean, Column, String
import ulid

from ..database import Base
from .types import TimestampMixin


class Gym(TimestampMixin, Base):
    """One physical location under an organisation."""

    __tablename__ = "gyms"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    organisation_id = Column(String(26), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Gym {self.id} org={self.organisation_id} {self.name!r}>"
