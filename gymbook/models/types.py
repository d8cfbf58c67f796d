# gymbook/models/types.py
"""
Custom SQLAlchemy types and shared record mixins.

The scope mixins are the markers the scope enforcer keys on: any mapped
class carrying TenantScopedMixin is filtered by organisation, and any class
carrying GymScopedMixin is additionally filtered by gym when the active
scope names one.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, String, TypeDecorator
from sqlalchemy.orm import Mapped, mapped_column

if TYPE_CHECKING:
    from sqlalchemy.sql.type_api import TypeDecorator as _TypeDecorator

    TypeDecoratorProtocol = _TypeDecorator[Any]
else:
    TypeDecoratorProtocol = TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Aware UTC copy of ``value``; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecoratorProtocol):
    """
    Timezone-aware datetime stored as UTC on every backend.

    SQLite has no timezone support, so values are bound as naive UTC there
    and re-tagged on the way out. Naive inputs are treated as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        value = to_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return value
        return to_utc(value)


class TimestampMixin:
    """Mixin class for automatic timestamp tracking."""

    # Python-side default keeps microsecond precision for FIFO ordering.
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=True
    )


class TenantScopedMixin:
    """Record owned by an organisation; organisation_id is immutable once stored."""

    organisation_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)


class GymScopedMixin(TenantScopedMixin):
    """Record owned by a gym inside an organisation; gym_id is immutable once stored."""

    gym_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
