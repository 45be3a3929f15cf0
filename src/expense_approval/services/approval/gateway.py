"""Collaborator gateway.

Narrow interface between the routing engine and everything it does not own:
request data, additional-approver rules, company policy, notifications and
financial side effects.

Read methods take the engine's session so they see the open transaction.
Notification and side-effect methods run only after a transition has been
committed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from expense_approval.core.config import Settings, get_settings
from expense_approval.models.instance import ApprovalInstance
from expense_approval.models.report import ExpenseReport
from expense_approval.repositories.directory import CompanyRepository
from expense_approval.repositories.report import ExpenseReportRepository
from expense_approval.services.approval.rules import AdditionalApproverRules
from expense_approval.services.approval.schemas import (
    AdditionalApprover,
    RequestSnapshot,
    SelfApprovalPolicy,
)
from expense_approval.tasks.notification_tasks import (
    send_approval_required_notification,
    send_status_changed_notification,
)

logger = logging.getLogger(__name__)


class CollaboratorGateway(ABC):
    """Contracts the routing engine consumes."""

    @abstractmethod
    async def load_request_data(
        self, session: AsyncSession, request_id: str
    ) -> RequestSnapshot | None:
        """Fetch the routing-relevant view of a request."""

    @abstractmethod
    async def resolve_additional_approvers(
        self, session: AsyncSession, snapshot: RequestSnapshot
    ) -> list[AdditionalApprover]:
        """Compute approvers to insert after the matrix chain."""

    @abstractmethod
    async def get_company_self_approval_policy(
        self, session: AsyncSession, company_id: str
    ) -> SelfApprovalPolicy:
        """Get the company's self-approval policy."""

    @abstractmethod
    async def notify_approval_required(
        self,
        instance: ApprovalInstance,
        level_number: int,
        approver_ids: list[str],
        snapshot: RequestSnapshot,
    ) -> None:
        """Tell approvers a request is waiting for them."""

    @abstractmethod
    async def notify_status_changed(
        self,
        instance: ApprovalInstance,
        snapshot: RequestSnapshot,
        status: str,
        comments: str | None = None,
    ) -> None:
        """Tell the submitter the request reached a new status."""

    @abstractmethod
    async def apply_post_approval_effects(self, request_id: str) -> None:
        """Apply holds/deductions once a request is fully approved."""

    @abstractmethod
    async def reverse_holds_on_rejection(
        self, request_id: str, actor_id: str, reason: str | None
    ) -> None:
        """Release holds applied against a rejected request."""


def snapshot_from_report(report: ExpenseReport) -> RequestSnapshot:
    """Build a request snapshot from an expense report row.

    @param report - Expense report
    @returns RequestSnapshot
    """
    return RequestSnapshot(
        request_id=report.id,
        company_id=report.company_id,
        submitter_id=report.submitter_id,
        name=report.name,
        total_amount=report.total_amount,
        currency=report.currency,
        project_id=report.project_id,
        cost_centre_id=report.cost_centre_id,
        approvers=[AdditionalApprover.model_validate(a) for a in report.approvers or []],
        additional_approvers_resolved=report.additional_approvers_resolved,
    )


class DefaultCollaboratorGateway(CollaboratorGateway):
    """Gateway backed by the local database, Celery and the ledger service."""

    def __init__(self, settings: Settings | None = None):
        """Initialize gateway.

        @param settings - Application settings (defaults to cached settings)
        """
        self.settings = settings or get_settings()

    async def load_request_data(
        self, session: AsyncSession, request_id: str
    ) -> RequestSnapshot | None:
        report = await ExpenseReportRepository(session).get_by_id(request_id)
        if report is None:
            return None
        return snapshot_from_report(report)

    async def resolve_additional_approvers(
        self, session: AsyncSession, snapshot: RequestSnapshot
    ) -> list[AdditionalApprover]:
        return await AdditionalApproverRules(session).evaluate(snapshot)

    async def get_company_self_approval_policy(
        self, session: AsyncSession, company_id: str
    ) -> SelfApprovalPolicy:
        policy = await CompanyRepository(session).get_self_approval_policy(company_id)
        return SelfApprovalPolicy(policy or self.settings.default_self_approval_policy)

    async def notify_approval_required(
        self,
        instance: ApprovalInstance,
        level_number: int,
        approver_ids: list[str],
        snapshot: RequestSnapshot,
    ) -> None:
        send_approval_required_notification.delay(
            instance_id=instance.id,
            request_id=instance.request_id,
            level_number=level_number,
            approver_ids=approver_ids,
            request_name=snapshot.name,
            total_amount=str(snapshot.total_amount),
            currency=snapshot.currency,
        )

    async def notify_status_changed(
        self,
        instance: ApprovalInstance,
        snapshot: RequestSnapshot,
        status: str,
        comments: str | None = None,
    ) -> None:
        send_status_changed_notification.delay(
            instance_id=instance.id,
            request_id=instance.request_id,
            status=status,
            submitter_id=snapshot.submitter_id,
            comments=comments,
            resolution=instance.resolution,
        )

    async def apply_post_approval_effects(self, request_id: str) -> None:
        await self._call_ledger("/holds/apply", {"request_id": request_id})

    async def reverse_holds_on_rejection(
        self, request_id: str, actor_id: str, reason: str | None
    ) -> None:
        await self._call_ledger(
            "/holds/reverse",
            {"request_id": request_id, "actor_id": actor_id, "reason": reason},
        )

    async def _call_ledger(self, path: str, payload: dict[str, Any]) -> None:
        """POST to the ledger service; raises on transport or HTTP errors.

        @param path - Endpoint path
        @param payload - JSON body
        """
        base_url = self.settings.ledger_service_url
        if not base_url:
            logger.info(f"Ledger service not configured; skipping {path} for {payload}")
            return

        async with httpx.AsyncClient(
            base_url=base_url, timeout=self.settings.ledger_service_timeout
        ) as client:
            response = await client.post(path, json=payload)
            response.raise_for_status()
        logger.info(f"Ledger call {path} succeeded for {payload.get('request_id')}")
