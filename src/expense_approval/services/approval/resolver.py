"""Approver resolution.

Turns a level's approver configuration into the concrete set of active
users allowed to act on it.

Lookup order for a level is an explicit list of tagged references:

- ``approver_user_ids`` set: ``UserRef(user ids)`` first. If no active user
  matches, a fallback ``RoleRef`` follows, built from ``approver_role_ids``
  or, when those are empty, from the user ids themselves. Older data stored
  role ids in the user-id field; the fallback recovers those levels and is
  always logged.
- Otherwise ``approver_role_ids``: ``RoleRef(role ids)``.

The user list wins whenever both lists are populated.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from expense_approval.repositories.directory import UserRepository
from expense_approval.services.approval.schemas import AdditionalApprover

logger = logging.getLogger(__name__)


class ApproverSource(str, Enum):
    """Which reference produced the resolved approvers."""

    USER = "USER"
    ROLE = "ROLE"
    ROLE_FALLBACK = "ROLE_FALLBACK"
    ADDITIONAL = "ADDITIONAL"


@dataclass(frozen=True)
class UserRef:
    """Direct user references."""

    user_ids: tuple[str, ...]


@dataclass(frozen=True)
class RoleRef:
    """Role references; ``fallback`` marks the recovery path."""

    role_ids: tuple[str, ...]
    fallback: bool = False


ApproverRef = Union[UserRef, RoleRef]


class LevelApprovers(Protocol):
    """Anything carrying a level's approver configuration."""

    level_number: int
    approver_user_ids: list[str]
    approver_role_ids: list[str]


@dataclass
class ResolvedApprovers:
    """Active users authorised to act on a level."""

    user_ids: list[str]
    source: ApproverSource
    # Configured roles with at least one active holder (role-based levels)
    role_ids: list[str] = field(default_factory=list)
    # user id -> configured roles the user holds (role-based levels)
    roles_by_user: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_role_based(self) -> bool:
        return self.source in (ApproverSource.ROLE, ApproverSource.ROLE_FALLBACK)

    @property
    def is_empty(self) -> bool:
        return not self.user_ids

    def __contains__(self, user_id: object) -> bool:
        return user_id in self.user_ids


def _unique(values: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


def approver_refs(level: LevelApprovers) -> list[ApproverRef]:
    """Build the ordered reference list for a level.

    @param level - Level configuration
    @returns References in lookup order
    """
    user_ids = _unique(level.approver_user_ids or [])
    role_ids = _unique(level.approver_role_ids or [])

    if user_ids:
        return [UserRef(user_ids), RoleRef(role_ids or user_ids, fallback=True)]
    if role_ids:
        return [RoleRef(role_ids)]
    return []


class ApproverResolver:
    """Resolves approver references against the company directory."""

    def __init__(self, session: AsyncSession):
        """Initialize resolver.

        @param session - Database session of the calling operation
        """
        self.users = UserRepository(session)

    async def resolve(self, level: LevelApprovers, company_id: str) -> ResolvedApprovers:
        """Resolve the approvers of a matrix level.

        @param level - Level configuration
        @param company_id - Company the approvers must belong to
        @returns Resolved approvers (empty when nothing resolves)
        """
        refs = approver_refs(level)
        for ref in refs:
            if isinstance(ref, UserRef):
                resolved = await self._resolve_users(ref, company_id)
                if not resolved.is_empty:
                    return resolved
                logger.info(
                    f"Level {level.level_number}: approver user ids {list(ref.user_ids)} "
                    f"matched no active user in company {company_id}; "
                    "falling back to role resolution"
                )
                continue

            resolved = await self._resolve_roles(ref, company_id)
            if ref.fallback:
                logger.info(
                    f"Level {level.level_number}: role fallback via {list(ref.role_ids)} "
                    f"resolved {len(resolved.user_ids)} approver(s)"
                )
            return resolved

        if not refs:
            logger.warning(f"Level {level.level_number} has no approver references")
        return ResolvedApprovers(user_ids=[], source=ApproverSource.USER)

    async def resolve_additional(
        self, approver: AdditionalApprover, company_id: str
    ) -> ResolvedApprovers:
        """Resolve an additional-approver level to its designated user.

        @param approver - Additional approver entry
        @param company_id - Company the approver must belong to
        @returns The user if active, otherwise an empty result
        """
        users = await self.users.get_active_by_ids(company_id, [approver.user_id])
        return ResolvedApprovers(
            user_ids=[user.id for user in users],
            source=ApproverSource.ADDITIONAL,
        )

    async def _resolve_users(self, ref: UserRef, company_id: str) -> ResolvedApprovers:
        users = await self.users.get_active_by_ids(company_id, ref.user_ids)
        active = {user.id for user in users}
        return ResolvedApprovers(
            user_ids=[uid for uid in ref.user_ids if uid in active],
            source=ApproverSource.USER,
        )

    async def _resolve_roles(self, ref: RoleRef, company_id: str) -> ResolvedApprovers:
        users = await self.users.get_active_by_roles(company_id, ref.role_ids)
        wanted = set(ref.role_ids)

        roles_by_user: dict[str, list[str]] = {}
        for user in sorted(users, key=lambda u: u.id):
            held = [role.id for role in user.roles if role.id in wanted]
            roles_by_user[user.id] = [rid for rid in ref.role_ids if rid in held]

        held_roles = {rid for roles in roles_by_user.values() for rid in roles}
        return ResolvedApprovers(
            user_ids=list(roles_by_user),
            source=ApproverSource.ROLE_FALLBACK if ref.fallback else ApproverSource.ROLE,
            role_ids=[rid for rid in ref.role_ids if rid in held_roles],
            roles_by_user=roles_by_user,
        )
