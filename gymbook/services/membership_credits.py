# gymbook/services/membership_credits.py
"""
Membership credits collaborator.

The booking engine only needs two things from the membership subsystem:
the member's active membership and an atomic credit deduction. The
protocol keeps the engine independent of where memberships live;
SqlMembershipCredits is the implementation over the shared database, so a
deduction joins the booking transaction and rolls back with it.
"""

from datetime import date
import logging
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from ..core.exceptions import InsufficientCreditsError
from ..models.membership import Membership
from ..repositories import RepositoryFactory
from ..repositories.membership_repository import MembershipRepository

logger = logging.getLogger(__name__)


@runtime_checkable
class MembershipCredits(Protocol):
    """Narrow interface the booking engine consumes."""

    def find_active_membership(self, member_id: str, on_day: date) -> Optional[Membership]:
        """The member's usable membership on ``on_day``, if any."""
        ...

    def deduct_class_credit(self, membership_id: str, credits: int = 1) -> None:
        """Deduct ``credits`` atomically or raise InsufficientCreditsError."""
        ...


class SqlMembershipCredits:
    """MembershipCredits backed by the memberships table."""

    def __init__(self, db: Session, repository: Optional[MembershipRepository] = None):
        self.db = db
        self.repository = repository or RepositoryFactory.create_membership_repository(db)

    def find_active_membership(self, member_id: str, on_day: date) -> Optional[Membership]:
        return self.repository.find_active_membership(member_id, on_day)

    def deduct_class_credit(self, membership_id: str, credits: int = 1) -> None:
        if credits <= 0:
            return
        if not self.repository.deduct_credits(membership_id, credits):
            membership = self.repository.get_by_id(membership_id, load_relationships=False)
            member_id = membership.member_id if membership is not None else membership_id
            logger.info(
                "Credit deduction refused",
                extra={"membership_id": membership_id, "credits": credits},
            )
            raise InsufficientCreditsError(member_id)
