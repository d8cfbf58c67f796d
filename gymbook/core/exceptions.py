# gymbook/core/exceptions.py
"""
Domain-specific exceptions for the gymbook platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.

Two families live here:
- Tenant scope faults (NoScopeError and friends) are programming errors.
  They are never recovered automatically and surface as server faults.
- DomainException subclasses are expected business-rule violations that
  the API layer maps to client-actionable responses.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)

logger = logging.getLogger(__name__)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def _detail(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=self._detail(),
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=self._detail())


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self._detail())


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=self._detail())


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=self._detail())


class UnauthorizedException(DomainException):
    """Raised when the caller cannot be resolved to an organisation."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=self._detail())


class ForbiddenException(DomainException):
    """Raised when the caller lacks permission for an action."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=self._detail())


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Tenant scope faults


class NoScopeError(DomainException):
    """Raised when the current tenant scope is read outside any active scope."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message=message or "No tenant scope is active for this operation",
            code="NO_TENANT_SCOPE",
        )


class MissingTenantContextError(NoScopeError):
    """Raised by the scope enforcer when scoped storage is touched without a scope."""

    def __init__(self, entity: Optional[str] = None, operation: Optional[str] = None) -> None:
        what = entity or "scoped storage"
        how = f" ({operation})" if operation else ""
        super().__init__(f"Tenant context required to access {what}{how}")
        self.code = "MISSING_TENANT_CONTEXT"
        self.details = {"entity": entity, "operation": operation}


class ScopeIntegrityError(DomainException):
    """Raised when a scope pairs a gym with an organisation that does not own it."""

    def __init__(self, organisation_id: str, gym_id: str) -> None:
        super().__init__(
            message=f"Gym {gym_id} does not belong to organisation {organisation_id}",
            code="SCOPE_INTEGRITY",
            details={"organisation_id": organisation_id, "gym_id": gym_id},
        )


class CrossTenantAccessError(DomainException):
    """
    Raised when an entity resolves outside the caller's scope.

    Callers only ever see "not found" so the existence of another tenant's
    data is never revealed; the violation itself is logged at ERROR.
    """

    def __init__(
        self,
        entity: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=f"{entity} {entity_id or ''} is outside the current tenant scope".strip(),
            code="CROSS_TENANT_ACCESS",
            details={"entity": entity, "entity_id": entity_id, **(details or {})},
        )
        self.entity = entity
        self.entity_id = entity_id

    def to_http_exception(self) -> HTTPException:
        logger.error(
            "Cross-tenant access rejected",
            extra={"event": "cross_tenant_access", **self.details},
        )
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": f"{self.entity} not found",
                "code": "NOT_FOUND",
                "details": {},
            },
        )


# Specific business exceptions


class NotFoundError(NotFoundException):
    """Raised when an entity is absent (or not available) within the current scope."""

    def __init__(self, entity: str, entity_id: Optional[str] = None, reason: Optional[str] = None):
        message = f"{entity} not found" if not reason else f"{entity} {reason}"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            details={"entity": entity, "entity_id": entity_id},
        )


class SchedulingConflictError(ConflictException):
    """Raised when a trainer or area would be double-booked."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        start_time: Any,
        end_time: Any,
        conflicting_schedule_ids: Optional[list[str]] = None,
    ):
        label = "Trainer" if resource_type == "trainer" else "Area"
        super().__init__(
            message=(
                f"{label} {resource_id} already has a scheduled class between "
                f"{_iso(start_time)} and {_iso(end_time)}"
            ),
            code=f"{resource_type.upper()}_CONFLICT",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "start_time": _iso(start_time),
                "end_time": _iso(end_time),
                "conflicting_schedule_ids": conflicting_schedule_ids or [],
            },
        )


class DuplicateBookingError(ConflictException):
    """Raised when a member already holds an active booking for a class instance."""

    def __init__(self, member_id: str, schedule_instance_id: str):
        super().__init__(
            message="Member already has a booking for this class",
            code="ALREADY_BOOKED",
            details={"member_id": member_id, "schedule_instance_id": schedule_instance_id},
        )


class InsufficientCreditsError(BusinessRuleException):
    """Raised when a member cannot pay the class credit for a confirmed seat."""

    def __init__(self, member_id: str, reason: Optional[str] = None):
        super().__init__(
            message=reason or "Member has no class credits remaining",
            code="INSUFFICIENT_CREDITS",
            details={"member_id": member_id},
        )


class InvalidStateError(BusinessRuleException):
    """Raised when a transition is not legal from the entity's current state."""

    def __init__(self, message: str, current_status: Optional[str] = None, **details: Any):
        super().__init__(
            message=message,
            code="INVALID_STATE",
            details={"current_status": current_status, **details},
        )


class TransientBookingError(ServiceException):
    """Raised when storage keeps rejecting a booking transaction after the retry."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=self._detail(),
            headers={"Retry-After": "1"},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations. The SQLAlchemy error is kept as __cause__.
    """


def _iso(value: Any) -> str:
    isoformat = getattr(value, "isoformat", None)
    return isoformat() if callable(isoformat) else str(value)
