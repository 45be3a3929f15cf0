"""Repository for additional-approver rules."""

from typing import Sequence

from sqlalchemy import and_, select

from expense_approval.models.rule import ApprovalRule
from expense_approval.repositories.base import BaseRepository


class ApprovalRuleRepository(BaseRepository[ApprovalRule]):
    """Repository for ApprovalRule database operations."""

    model = ApprovalRule

    async def get_active_for_company(
        self, company_id: str, *, trigger_type: str | None = None
    ) -> Sequence[ApprovalRule]:
        """Get active rules of a company ordered by threshold.

        @param company_id - Company ID
        @param trigger_type - Optional trigger type filter
        @returns List of active rules
        """
        stmt = select(self.model).where(
            and_(self.model.company_id == company_id, self.model.active.is_(True))
        )
        if trigger_type:
            stmt = stmt.where(self.model.trigger_type == trigger_type)
        stmt = stmt.order_by(self.model.threshold_value, self.model.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()
