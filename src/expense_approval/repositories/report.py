"""Repository for expense report operations."""

from typing import Sequence

from expense_approval.models.report import ExpenseReport
from expense_approval.repositories.base import BaseRepository


class ExpenseReportRepository(BaseRepository[ExpenseReport]):
    """Repository for ExpenseReport database operations."""

    model = ExpenseReport

    async def get_by_submitter(
        self, submitter_id: str, *, status: str | None = None
    ) -> Sequence[ExpenseReport]:
        """Get reports submitted by a user, newest first.

        @param submitter_id - Submitter user ID
        @param status - Optional status filter
        @returns List of reports
        """
        return await self.get_by_filter(
            submitter_id=submitter_id,
            status=status,
            order_by=self.model.created_at.desc(),
        )
