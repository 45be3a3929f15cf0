"""Approval matrix administration.

Matrices are validated on every write. A matrix referenced by in-flight
instances is never edited in place: the edit produces a new version and
the old row stays behind for the instances still routing through it.
"""

import logging
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from expense_approval.infrastructure.database.session import AsyncSessionLocal
from expense_approval.models.base import generate_id, utcnow
from expense_approval.models.matrix import ApprovalLevel, ApprovalMatrix
from expense_approval.repositories.audit_log import AuditLogRepository
from expense_approval.repositories.instance import ApprovalInstanceRepository
from expense_approval.repositories.matrix import ApprovalMatrixRepository
from expense_approval.services.approval.exceptions import (
    InvalidMatrix,
    MatrixNotFound,
    NoActiveMatrix,
)
from expense_approval.services.approval.resolver import approver_refs
from expense_approval.services.approval.schemas import (
    ApprovalType,
    LevelConfig,
    MatrixCreate,
    MatrixDetail,
    MatrixLevelsUpdate,
)

logger = logging.getLogger(__name__)


def validate_levels(levels: list[LevelConfig]) -> None:
    """Validate a level list before it is stored.

    @param levels - Levels as submitted
    @raises InvalidMatrix on the first violation found
    """
    numbers = [level.level_number for level in levels]
    if len(numbers) != len(set(numbers)):
        raise InvalidMatrix("Level numbers must be unique")

    enabled = [level for level in levels if level.enabled]
    if not enabled:
        raise InvalidMatrix("At least one level must be enabled")

    enabled_numbers = [level.level_number for level in enabled]
    if enabled_numbers != sorted(enabled_numbers):
        raise InvalidMatrix("Enabled levels must be listed in increasing order")

    for level in enabled:
        if not approver_refs(level):
            raise InvalidMatrix(
                f"Level {level.level_number} has no approver users or roles"
            )
        if level.approval_type == ApprovalType.PARALLEL and level.parallel_rule is None:
            raise InvalidMatrix(
                f"Level {level.level_number} is PARALLEL but has no parallel_rule"
            )
        if level.approval_type == ApprovalType.SEQUENTIAL and level.parallel_rule:
            raise InvalidMatrix(
                f"Level {level.level_number} is SEQUENTIAL; parallel_rule must be empty"
            )


def build_levels(levels: list[LevelConfig]) -> list[ApprovalLevel]:
    return [
        ApprovalLevel(
            id=generate_id(),
            level_number=level.level_number,
            enabled=level.enabled,
            approval_type=level.approval_type.value,
            parallel_rule=level.parallel_rule.value if level.parallel_rule else None,
            approver_user_ids=list(level.approver_user_ids),
            approver_role_ids=list(level.approver_role_ids),
            conditions=[c.model_dump(mode="json") for c in level.conditions],
            skip_allowed=level.skip_allowed,
        )
        for level in levels
    ]


class MatrixService:
    """Create, version and activate approval matrices."""

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None):
        """Initialize matrix service.

        @param session_factory - Factory for database sessions
        """
        self._session_factory = session_factory or AsyncSessionLocal

    async def _log_audit(
        self,
        session: AsyncSession,
        matrix_id: str,
        action: str,
        actor_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        await AuditLogRepository(session).create({
            "action": f"matrix.{action.lower()}",
            "resource_type": "approval_matrix",
            "resource_id": matrix_id,
            "actor_id": actor_id,
            "new_value": details,
        })

    async def create_matrix(
        self,
        company_id: str,
        data: MatrixCreate,
        actor_id: str | None = None,
    ) -> MatrixDetail:
        """Create a matrix, optionally making it the company's active one.

        @param company_id - Company ID
        @param data - Matrix definition
        @param actor_id - Administrator creating the matrix
        @returns Created matrix
        @raises InvalidMatrix
        """
        validate_levels(data.levels)

        async with self._session_factory() as session:
            repo = ApprovalMatrixRepository(session)
            matrix = await repo.create(
                ApprovalMatrix(
                    id=generate_id(),
                    company_id=company_id,
                    name=data.name,
                    description=data.description,
                    is_active=data.activate,
                    version=1,
                    levels=build_levels(data.levels),
                )
            )
            deactivated = 0
            if data.activate:
                deactivated = await repo.deactivate_others(company_id, matrix.id)

            await self._log_audit(
                session,
                matrix.id,
                "CREATED",
                actor_id,
                {"name": data.name, "levels": len(data.levels), "active": data.activate},
            )
            await session.commit()

            logger.info(
                f"Created approval matrix {matrix.id} for company {company_id} "
                f"(active={data.activate}, deactivated {deactivated})"
            )
            return MatrixDetail.model_validate(matrix)

    async def get_matrix(self, matrix_id: str) -> MatrixDetail:
        async with self._session_factory() as session:
            matrix = await ApprovalMatrixRepository(session).get_by_id(matrix_id)
            if matrix is None:
                raise MatrixNotFound(matrix_id)
            return MatrixDetail.model_validate(matrix)

    async def get_active_matrix(self, company_id: str) -> MatrixDetail:
        """Get the company's active matrix.

        @raises NoActiveMatrix
        """
        async with self._session_factory() as session:
            matrix = await ApprovalMatrixRepository(session).get_active(company_id)
            if matrix is None:
                raise NoActiveMatrix(company_id)
            return MatrixDetail.model_validate(matrix)

    async def list_matrices(self, company_id: str) -> list[MatrixDetail]:
        async with self._session_factory() as session:
            matrices = await ApprovalMatrixRepository(session).list_for_company(company_id)
            return [MatrixDetail.model_validate(m) for m in matrices]

    async def activate_matrix(
        self, matrix_id: str, actor_id: str | None = None
    ) -> MatrixDetail:
        """Make a matrix its company's active matrix.

        @param matrix_id - Matrix ID
        @param actor_id - Administrator
        @returns Activated matrix
        """
        async with self._session_factory() as session:
            repo = ApprovalMatrixRepository(session)
            matrix = await repo.get_by_id(matrix_id)
            if matrix is None:
                raise MatrixNotFound(matrix_id)

            matrix.is_active = True
            await session.flush()
            await repo.deactivate_others(matrix.company_id, matrix.id)
            await self._log_audit(session, matrix.id, "ACTIVATED", actor_id)
            await session.commit()

            logger.info(f"Activated approval matrix {matrix.id}")
            return MatrixDetail.model_validate(matrix)

    async def update_levels(
        self,
        matrix_id: str,
        data: MatrixLevelsUpdate,
        actor_id: str | None = None,
    ) -> MatrixDetail:
        """Replace a matrix's levels.

        If pending instances route through the matrix, a new version is
        created (and activated when the old one was active); otherwise the
        levels are replaced in place.

        @param matrix_id - Matrix ID
        @param data - New levels
        @param actor_id - Administrator
        @returns The edited matrix or its new version
        @raises MatrixNotFound, InvalidMatrix
        """
        validate_levels(data.levels)

        async with self._session_factory() as session:
            repo = ApprovalMatrixRepository(session)
            matrix = await repo.get_by_id(matrix_id)
            if matrix is None:
                raise MatrixNotFound(matrix_id)

            in_use = await ApprovalInstanceRepository(session).has_pending_for_matrix(
                matrix_id
            )
            if not in_use:
                matrix.levels = build_levels(data.levels)
                matrix.updated_at = utcnow()
                await self._log_audit(
                    session, matrix.id, "UPDATED", actor_id, {"levels": len(data.levels)}
                )
                await session.commit()
                logger.info(f"Replaced levels of approval matrix {matrix.id} in place")
                return MatrixDetail.model_validate(matrix)

            successor = await repo.create(
                ApprovalMatrix(
                    id=generate_id(),
                    company_id=matrix.company_id,
                    name=matrix.name,
                    description=matrix.description,
                    is_active=matrix.is_active,
                    version=matrix.version + 1,
                    previous_version_id=matrix.id,
                    levels=build_levels(data.levels),
                )
            )
            if matrix.is_active:
                await repo.deactivate_others(matrix.company_id, successor.id)

            await self._log_audit(
                session,
                successor.id,
                "VERSIONED",
                actor_id,
                {"previous_version_id": matrix.id, "version": successor.version},
            )
            await session.commit()

            logger.info(
                f"Approval matrix {matrix.id} has pending instances; created "
                f"version {successor.version} as {successor.id}"
            )
            return MatrixDetail.model_validate(successor)


# Singleton instance
_matrix_service: MatrixService | None = None


def get_matrix_service() -> MatrixService:
    """Get or create matrix service singleton."""
    global _matrix_service
    if _matrix_service is None:
        _matrix_service = MatrixService()
    return _matrix_service
