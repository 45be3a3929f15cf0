"""Repository for approval matrix operations."""

from typing import Sequence

from sqlalchemy import desc, select, update

from expense_approval.models.matrix import ApprovalMatrix
from expense_approval.repositories.base import BaseRepository


class ApprovalMatrixRepository(BaseRepository[ApprovalMatrix]):
    """Repository for ApprovalMatrix database operations.

    Levels are loaded eagerly with every matrix.
    """

    model = ApprovalMatrix

    async def get_active(self, company_id: str) -> ApprovalMatrix | None:
        """Get the active matrix for a company.

        @param company_id - Company ID
        @returns Active matrix or None
        """
        stmt = (
            select(self.model)
            .where(self.model.company_id == company_id, self.model.is_active.is_(True))
            .order_by(desc(self.model.version))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_for_company(self, company_id: str) -> Sequence[ApprovalMatrix]:
        """List all matrices of a company, newest first.

        @param company_id - Company ID
        @returns Matrices
        """
        stmt = (
            select(self.model)
            .where(self.model.company_id == company_id)
            .order_by(desc(self.model.created_at))
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def deactivate_others(self, company_id: str, keep_id: str) -> int:
        """Deactivate every matrix of a company except one.

        @param company_id - Company ID
        @param keep_id - Matrix that stays active
        @returns Number of deactivated matrices
        """
        stmt = (
            update(self.model)
            .where(
                self.model.company_id == company_id,
                self.model.id != keep_id,
                self.model.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount
