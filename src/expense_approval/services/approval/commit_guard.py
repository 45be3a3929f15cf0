"""Validation of approvers before an instance is parked at a level."""

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from expense_approval.models.instance import ApprovalInstance
from expense_approval.repositories.directory import UserRepository
from expense_approval.services.approval.exceptions import ApproversInvalid

logger = logging.getLogger(__name__)


class AtomicCommitGuard:
    """Checks resolved approvers inside the caller's transaction.

    An instance may only become (or stay) PENDING at a newly entered level
    if every approver id belongs to an existing, active user of the
    company. On failure the guard raises and the caller's session is left
    uncommitted, so nothing of the transition persists.
    """

    async def validate(
        self,
        session: AsyncSession,
        instance: ApprovalInstance,
        approver_ids: Iterable[str],
        company_id: str | None = None,
        level_number: int | None = None,
    ) -> list[str]:
        """Validate approvers for the level the instance is about to enter.

        @param session - Session holding the open transaction
        @param instance - Instance being parked
        @param approver_ids - Resolved approver user IDs
        @param company_id - Company (defaults to the instance's company)
        @param level_number - Level being entered (defaults to current level)
        @returns Validated approver IDs
        @raises ApproversInvalid if the set is empty or any id is unusable
        """
        company_id = company_id or instance.company_id
        level_number = level_number or instance.current_level
        ids = list(dict.fromkeys(approver_ids))

        if not ids:
            logger.error(
                f"Instance {instance.id}: no approvers resolved for level "
                f"{level_number} (company {company_id})"
            )
            raise ApproversInvalid(level_number)

        users = await UserRepository(session).get_active_by_ids(company_id, ids)
        found = {user.id for user in users}
        invalid = [uid for uid in ids if uid not in found]
        if invalid:
            logger.error(
                f"Instance {instance.id}: approvers {invalid} for level "
                f"{level_number} are missing or inactive in company {company_id}"
            )
            raise ApproversInvalid(level_number, invalid)

        return ids
