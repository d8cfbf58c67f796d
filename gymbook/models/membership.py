# gymbook/models/membership.py
"""
Membership model.

Memberships are sold and renewed by the billing subsystem; gymbook reads
them to find the member's active plan and deducts class credits from
them. class_credits_remaining is NULL for unlimited plans.
"""

from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, Date, Integer, String
import ulid

from ..database import Base
from .types import GymScopedMixin, TimestampMixin


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Membership(GymScopedMixin, TimestampMixin, Base):
    """A member's subscription to a plan at one gym."""

    __tablename__ = "memberships"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    member_id = Column(String(26), nullable=False, index=True)
    plan_id = Column(String(26), nullable=True)

    start_date = Column(Date, nullable=False, default=date.today)
    end_date = Column(Date, nullable=True)

    class_credits_remaining = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=MembershipStatus.ACTIVE.value)
    frozen = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "class_credits_remaining IS NULL OR class_credits_remaining >= 0",
            name="ck_memberships_credits_non_negative",
        ),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.class_credits_remaining is None

    def is_usable_on(self, day: date) -> bool:
        """Active, not frozen, and inside its validity window on ``day``."""
        if self.status != MembershipStatus.ACTIVE.value or self.frozen:
            return False
        if self.start_date is not None and self.start_date > day:
            return False
        return self.end_date is None or self.end_date >= day

    def has_credits(self, cost: int) -> bool:
        return self.is_unlimited or (self.class_credits_remaining or 0) >= cost

    def __repr__(self) -> str:
        credits: Optional[int] = self.class_credits_remaining
        return f"<Membership {self.id} member={self.member_id} {self.status} credits={credits}>"
