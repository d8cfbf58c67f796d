# gymbook/models/class_definition.py
"""
Class definition model.

A class definition is the template a gym schedules from (e.g. "Spin 45").
Its capacity is the default seat count for every schedule instance that
does not carry an override, and credit_cost is what one confirmed seat
consumes from a member's membership.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String, Text
import ulid

from ..core.config import settings
from ..database import Base
from .types import GymScopedMixin, TimestampMixin


class ClassDefinition(GymScopedMixin, TimestampMixin, Base):
    """Bookable class template owned by a gym."""

    __tablename__ = "class_definitions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    category_id = Column(String(26), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    capacity = Column(Integer, nullable=False, default=lambda: settings.default_class_capacity)
    price_amount = Column(Numeric(10, 2), nullable=True)
    credit_cost = Column(Integer, nullable=False, default=lambda: settings.default_credit_cost)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_class_definitions_capacity_positive"),
        CheckConstraint("credit_cost >= 0", name="ck_class_definitions_credit_cost_non_negative"),
        CheckConstraint("duration_minutes > 0", name="ck_class_definitions_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<ClassDefinition {self.id} {self.name!r} capacity={self.capacity}>"
