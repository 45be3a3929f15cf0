"""Repositories for companies, users and roles."""

from typing import Iterable, Sequence

from sqlalchemy import select

from expense_approval.models.directory import Company, Role, User, user_roles
from expense_approval.repositories.base import BaseRepository


class CompanyRepository(BaseRepository[Company]):
    """Repository for Company database operations."""

    model = Company

    async def get_self_approval_policy(self, company_id: str) -> str | None:
        """Get the self-approval policy configured for a company.

        @param company_id - Company ID
        @returns SKIP_SELF / ALLOW_SELF, or None if the company is unknown
        """
        stmt = select(self.model.self_approval_policy).where(self.model.id == company_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class RoleRepository(BaseRepository[Role]):
    """Repository for Role database operations."""

    model = Role


class UserRepository(BaseRepository[User]):
    """Repository for User database operations.

    Handles the directory lookups used by approver resolution:
    - Active users by id within a company
    - Active users holding any of a set of roles
    """

    model = User

    async def get_active_by_ids(
        self, company_id: str, user_ids: Iterable[str]
    ) -> Sequence[User]:
        """Get active company users among the given ids.

        @param company_id - Company ID
        @param user_ids - Candidate user IDs
        @returns Matching active users
        """
        ids = list(user_ids)
        if not ids:
            return []
        stmt = select(self.model).where(
            self.model.id.in_(ids),
            self.model.company_id == company_id,
            self.model.status == "ACTIVE",
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def get_active_by_roles(
        self, company_id: str, role_ids: Iterable[str]
    ) -> Sequence[User]:
        """Get active company users holding any of the given roles.

        @param company_id - Company ID
        @param role_ids - Role IDs
        @returns Matching active users (roles eagerly loaded)
        """
        ids = list(role_ids)
        if not ids:
            return []
        stmt = (
            select(self.model)
            .join(user_roles, user_roles.c.user_id == self.model.id)
            .where(
                user_roles.c.role_id.in_(ids),
                self.model.company_id == company_id,
                self.model.status == "ACTIVE",
            )
            .distinct()
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
