"""Repository for approval instance and history operations."""

from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, desc, func, select

from expense_approval.models.instance import ApprovalHistory, ApprovalInstance
from expense_approval.repositories.base import BaseRepository


class ApprovalInstanceRepository(BaseRepository[ApprovalInstance]):
    """Repository for ApprovalInstance database operations.

    Handles instance queries including:
    - Row-locked loads for action processing
    - In-flight lookup by request
    - Pending instances per company for approver listings
    """

    model = ApprovalInstance

    async def get_for_update(self, instance_id: str) -> ApprovalInstance | None:
        """Get instance with a row lock held until the transaction ends.

        Backends without SELECT ... FOR UPDATE (SQLite) fall back to the
        optimistic version check alone.

        @param instance_id - Instance ID
        @returns ApprovalInstance with history or None
        """
        stmt = (
            select(self.model)
            .where(self.model.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_by_request(self, request_id: str) -> ApprovalInstance | None:
        """Get the most recent instance for a request.

        @param request_id - Request ID
        @returns ApprovalInstance or None
        """
        stmt = (
            select(self.model)
            .where(self.model.request_id == request_id)
            .order_by(desc(self.model.created_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_in_flight(self, request_id: str) -> ApprovalInstance | None:
        """Get the PENDING instance of a request, if any.

        @param request_id - Request ID
        @returns ApprovalInstance or None
        """
        stmt = select(self.model).where(
            and_(
                self.model.request_id == request_id,
                self.model.status == "PENDING",
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_pending_for_company(
        self,
        company_id: str,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Sequence[ApprovalInstance]:
        """Get pending instances of a company, oldest first.

        @param company_id - Company ID
        @param start_date - Optional lower bound on creation time
        @param end_date - Optional upper bound on creation time
        @returns List of pending instances
        """
        stmt = select(self.model).where(
            and_(
                self.model.company_id == company_id,
                self.model.status == "PENDING",
            )
        )
        if start_date:
            stmt = stmt.where(self.model.created_at >= start_date)
        if end_date:
            stmt = stmt.where(self.model.created_at <= end_date)
        stmt = stmt.order_by(self.model.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def has_pending_for_matrix(self, matrix_id: str) -> bool:
        """Check whether any in-flight instance references a matrix.

        @param matrix_id - Matrix ID
        @returns True if at least one PENDING instance uses the matrix
        """
        return await self.exists(matrix_id=matrix_id, status="PENDING")


class ApprovalHistoryRepository(BaseRepository[ApprovalHistory]):
    """Repository for ApprovalHistory database operations.

    History rows are append-only.
    """

    model = ApprovalHistory

    def _approver_query(
        self,
        approver_id: str,
        status: str | None,
        start_date: datetime | None,
        end_date: datetime | None,
    ):
        stmt = select(self.model).where(self.model.approver_id == approver_id)
        if status:
            stmt = stmt.where(self.model.status == status)
        if start_date:
            stmt = stmt.where(self.model.timestamp >= start_date)
        if end_date:
            stmt = stmt.where(self.model.timestamp <= end_date)
        return stmt

    async def get_by_approver(
        self,
        approver_id: str,
        *,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[ApprovalHistory]:
        """Get history entries recorded for an approver, newest first.

        @param approver_id - Approver user ID
        @param status - Optional history status filter
        @param start_date - Optional lower bound on timestamp
        @param end_date - Optional upper bound on timestamp
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns List of history entries
        """
        stmt = self._approver_query(approver_id, status, start_date, end_date)
        stmt = stmt.order_by(desc(self.model.timestamp)).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_by_approver(
        self,
        approver_id: str,
        *,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> int:
        """Count history entries recorded for an approver.

        @param approver_id - Approver user ID
        @param status - Optional history status filter
        @param start_date - Optional lower bound on timestamp
        @param end_date - Optional upper bound on timestamp
        @returns Number of matching entries
        """
        base = self._approver_query(approver_id, status, start_date, end_date)
        stmt = select(func.count()).select_from(base.subquery())
        result = await self.session.execute(stmt)
        return result.scalar() or 0
