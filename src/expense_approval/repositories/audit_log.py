"""Repository for audit log operations."""

from typing import Sequence

from sqlalchemy import desc, select

from expense_approval.models.audit import AuditLog
from expense_approval.repositories.base import BaseRepository


class AuditLogRepository(BaseRepository[AuditLog]):
    """Repository for AuditLog database operations.

    Handles audit trail queries including:
    - Finding logs by resource
    - Finding logs by actor
    """

    model = AuditLog

    async def get_by_resource(
        self,
        resource_type: str,
        resource_id: str | None = None,
        *,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[AuditLog]:
        """Get logs by resource, oldest first.

        @param resource_type - Resource type
        @param resource_id - Optional specific resource ID
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns List of audit logs
        """
        stmt = select(self.model).where(self.model.resource_type == resource_type)
        if resource_id:
            stmt = stmt.where(self.model.resource_id == resource_id)
        stmt = stmt.order_by(self.model.id).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_by_actor(
        self,
        actor_id: str,
        *,
        action: str | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[AuditLog]:
        """Get logs by actor, newest first.

        @param actor_id - Actor user ID
        @param action - Optional action filter
        @param skip - Pagination offset
        @param limit - Maximum results
        @returns List of audit logs
        """
        stmt = select(self.model).where(self.model.actor_id == actor_id)
        if action:
            stmt = stmt.where(self.model.action == action)
        stmt = stmt.order_by(desc(self.model.id)).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()
