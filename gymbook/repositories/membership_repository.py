# gymbook/repositories/membership_repository.py
"""
Membership Repository for gymbook

Reads memberships owned by the billing subsystem and deducts class
credits with a compare-and-set UPDATE, so a balance can never go
negative and two concurrent deductions cannot both spend the last
credit.
"""

from datetime import date
import logging
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from ..core.exceptions import RepositoryException
from ..models.membership import Membership, MembershipStatus
from .scoped_repository import ScopedRepository

logger = logging.getLogger(__name__)


class MembershipRepository(ScopedRepository[Membership]):
    """Repository for membership data access."""

    def __init__(self, db: Session):
        super().__init__(db, Membership)

    def find_active_membership(self, member_id: str, on_day: date) -> Optional[Membership]:
        """
        The member's usable membership on ``on_day``: ACTIVE, not frozen and
        inside its validity window. The most recently started one wins.
        """
        query = (
            self._build_query()
            .filter(
                Membership.member_id == member_id,
                Membership.status == MembershipStatus.ACTIVE.value,
                Membership.frozen.is_(False),
                Membership.start_date <= on_day,
                or_(Membership.end_date.is_(None), Membership.end_date >= on_day),
            )
            .order_by(Membership.start_date.desc(), Membership.id.desc())
            .limit(1)
            .populate_existing()
        )
        rows = self._execute_query(query)
        return rows[0] if rows else None

    def deduct_credits(self, membership_id: str, amount: int) -> bool:
        """
        Take ``amount`` credits if the balance covers it.

        Unlimited memberships (NULL balance) never match, so callers must
        not charge them. Returns False when the balance is insufficient.
        """
        stmt = (
            update(Membership)
            .where(
                Membership.id == membership_id,
                Membership.class_credits_remaining.is_not(None),
                Membership.class_credits_remaining >= amount,
                *self._scope_criteria(),
            )
            .values(class_credits_remaining=Membership.class_credits_remaining - amount)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error deducting credits from {membership_id}: {str(e)}")
            raise RepositoryException(f"Failed to deduct credits: {str(e)}") from e

        cached = self.db.identity_map.get(identity_key(Membership, membership_id))
        if cached is not None:
            self.db.refresh(cached, ["class_credits_remaining"])
        return int(result.rowcount or 0) == 1
