"""Evaluation of additional-approver rules."""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from expense_approval.models.rule import ApprovalRule
from expense_approval.repositories.directory import RoleRepository, UserRepository
from expense_approval.repositories.rule import ApprovalRuleRepository
from expense_approval.services.approval.schemas import (
    AdditionalApprover,
    RequestSnapshot,
)

logger = logging.getLogger(__name__)

REPORT_AMOUNT_EXCEEDS = "REPORT_AMOUNT_EXCEEDS"


class AdditionalApproverRules:
    """Computes additional approvers for a request from company rules.

    Only REPORT_AMOUNT_EXCEEDS is evaluated here. Budget triggers need
    project and cost-centre budgets that live in another system; they are
    logged and ignored.
    """

    def __init__(self, session: AsyncSession):
        self.rules = ApprovalRuleRepository(session)
        self.users = UserRepository(session)
        self.roles = RoleRepository(session)

    async def evaluate(self, snapshot: RequestSnapshot) -> list[AdditionalApprover]:
        """Evaluate active rules against a request.

        Levels on the returned entries are left at 0; the routing engine
        places them after the matrix chain.

        @param snapshot - Request being routed
        @returns Additional approvers, one per distinct user
        """
        rules = await self.rules.get_active_for_company(snapshot.company_id)
        approvers: list[AdditionalApprover] = []
        seen: set[str] = set()

        for rule in rules:
            if rule.trigger_type != REPORT_AMOUNT_EXCEEDS:
                logger.info(
                    f"Rule {rule.id} ({rule.trigger_type}) needs budget data; "
                    f"not evaluated for request {snapshot.request_id}"
                )
                continue
            if snapshot.total_amount <= Decimal(rule.threshold_value):
                continue

            approver = await self._approver_for(rule, snapshot)
            if approver is None or approver.user_id in seen:
                continue
            seen.add(approver.user_id)
            approvers.append(approver)

        if approvers:
            logger.info(
                f"Request {snapshot.request_id}: {len(approvers)} additional "
                f"approver(s) from rules"
            )
        return approvers

    async def _approver_for(
        self, rule: ApprovalRule, snapshot: RequestSnapshot
    ) -> AdditionalApprover | None:
        reason = (
            f"Report amount {snapshot.total_amount} {snapshot.currency} exceeds "
            f"{rule.threshold_value}"
        )

        if rule.approver_user_id:
            return AdditionalApprover(
                level=0,
                user_id=rule.approver_user_id,
                trigger_reason=reason,
                rule_id=rule.id,
            )

        holders = await self.users.get_active_by_roles(
            snapshot.company_id, [rule.approver_role_id]
        )
        if not holders:
            logger.warning(
                f"Rule {rule.id}: role {rule.approver_role_id} has no active holder"
            )
            return None

        role = await self.roles.get_by_id(rule.approver_role_id)
        holder = sorted(holders, key=lambda u: u.id)[0]
        return AdditionalApprover(
            level=0,
            user_id=holder.id,
            role=role.name if role else None,
            trigger_reason=reason,
            rule_id=rule.id,
        )
