"""Tests for additional approvers placed after the matrix chain."""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import update

from expense_approval.models import ExpenseReport
from expense_approval.services.approval import NotAuthorized
from expense_approval.services.approval.schemas import HistoryStatus, InstanceStatus


@pytest_asyncio.fixture
async def single_level(make_matrix, directory):
    return await make_matrix([
        {"level_number": 1, "approver_user_ids": [directory.manager_1]},
    ])


class TestRuleTriggeredApprover:

    @pytest.mark.asyncio
    async def test_amount_rule_adds_level_after_matrix(
        self, engine, gateway, make_matrix, make_report, add_rule, fetch_report, directory
    ):
        d = directory
        await make_matrix([{"level_number": 1, "approver_user_ids": [d.manager_1]}])
        rule_id = await add_rule("1000", user_id=d.cfo)
        report_id = await make_report("5000")

        detail = await engine.initiate_approval(d.company_id, report_id)
        assert detail.current_level == 1

        detail = await engine.process_action(detail.id, d.manager_1, "APPROVE")
        assert detail.status == InstanceStatus.PENDING
        assert detail.current_level == 2
        assert gateway.approval_required[-1] == (detail.id, 2, [d.cfo])

        report = await fetch_report(report_id)
        assert report.additional_approvers_resolved is True
        assert len(report.approvers) == 1
        entry = report.approvers[0]
        assert entry["level"] == 2
        assert entry["user_id"] == d.cfo
        assert entry["rule_id"] == rule_id
        assert entry["is_additional_approval"] is True
        assert entry["decided_at"] is None

        detail = await engine.process_action(detail.id, d.cfo, "APPROVE", "ok for Q3")
        assert detail.status == InstanceStatus.APPROVED
        assert detail.history[-1].is_additional is True
        assert detail.history[-1].level_number == 2

        entry = (await fetch_report(report_id)).approvers[0]
        assert entry["decided_at"] is not None
        assert entry["action"] == "APPROVE"
        assert entry["comment"] == "ok for Q3"

    @pytest.mark.asyncio
    async def test_amount_below_threshold_adds_nothing(
        self, engine, single_level, make_report, add_rule, fetch_report, directory
    ):
        await add_rule("1000", user_id=directory.cfo)
        report_id = await make_report("500")

        detail = await engine.initiate_approval(directory.company_id, report_id)
        detail = await engine.process_action(detail.id, directory.manager_1, "APPROVE")

        assert detail.status == InstanceStatus.APPROVED
        report = await fetch_report(report_id)
        assert report.approvers == []
        assert report.additional_approvers_resolved is True

    @pytest.mark.asyncio
    async def test_role_rule_routes_to_role_holder(
        self, engine, single_level, make_report, add_rule, fetch_report, directory
    ):
        await add_rule("1000", role_id=directory.cfo_role)
        report_id = await make_report("2500")

        detail = await engine.initiate_approval(directory.company_id, report_id)
        detail = await engine.process_action(detail.id, directory.manager_1, "APPROVE")

        assert detail.current_level == 2
        entry = (await fetch_report(report_id)).approvers[0]
        assert entry["user_id"] == directory.cfo
        assert entry["role"] == "CFO"

    @pytest.mark.asyncio
    async def test_only_designated_user_may_act(
        self, engine, single_level, make_report, add_rule, directory
    ):
        await add_rule("1000", user_id=directory.cfo)
        detail = await engine.initiate_approval(directory.company_id, await make_report("5000"))
        detail = await engine.process_action(detail.id, directory.manager_1, "APPROVE")

        with pytest.raises(NotAuthorized):
            await engine.process_action(detail.id, directory.finance, "APPROVE")

    @pytest.mark.asyncio
    async def test_reject_at_additional_level(
        self, engine, gateway, single_level, make_report, add_rule, fetch_report, directory
    ):
        await add_rule("1000", user_id=directory.cfo)
        report_id = await make_report("5000")
        detail = await engine.initiate_approval(directory.company_id, report_id)
        detail = await engine.process_action(detail.id, directory.manager_1, "APPROVE")

        detail = await engine.process_action(detail.id, directory.cfo, "REJECT", "no budget")

        assert detail.status == InstanceStatus.REJECTED
        report = await fetch_report(report_id)
        assert report.status == "REJECTED"
        assert report.approvers[0]["action"] == "REJECT"
        assert gateway.holds_reversed == [(report_id, directory.cfo, "no budget")]


class TestAttachedApprovers:

    @pytest.mark.asyncio
    async def test_attached_and_rule_approvers_run_in_order(
        self, engine, single_level, make_report, add_rule, fetch_report, directory
    ):
        d = directory
        await add_rule("1000", user_id=d.cfo)
        report_id = await make_report(
            "5000",
            approvers=[
                {"user_id": d.director, "trigger_reason": "Client entertainment"},
            ],
        )
        detail = await engine.initiate_approval(d.company_id, report_id)

        detail = await engine.process_action(detail.id, d.manager_1, "APPROVE")
        assert detail.current_level == 2

        detail = await engine.process_action(detail.id, d.director, "APPROVE")
        assert detail.current_level == 3

        detail = await engine.process_action(detail.id, d.cfo, "APPROVE")
        assert detail.status == InstanceStatus.APPROVED

        levels = [(a["user_id"], a["level"]) for a in (await fetch_report(report_id)).approvers]
        assert levels == [(d.director, 2), (d.cfo, 3)]

    @pytest.mark.asyncio
    async def test_rule_does_not_duplicate_attached_user(
        self, engine, single_level, make_report, add_rule, fetch_report, directory
    ):
        d = directory
        await add_rule("1000", user_id=d.cfo)
        report_id = await make_report(
            "5000", approvers=[{"user_id": d.cfo, "trigger_reason": "Manual"}]
        )
        detail = await engine.initiate_approval(d.company_id, report_id)
        await engine.process_action(detail.id, d.manager_1, "APPROVE")

        report = await fetch_report(report_id)
        assert [a["user_id"] for a in report.approvers] == [d.cfo]


class TestAdditionalSelfApproval:

    @pytest.mark.asyncio
    async def test_submitter_additional_level_is_skipped(
        self, engine, gateway, single_level, make_report, add_rule, directory
    ):
        d = directory
        await add_rule("1000", user_id=d.cfo)
        report_id = await make_report("5000", submitter=d.cfo)
        detail = await engine.initiate_approval(d.company_id, report_id)

        detail = await engine.process_action(detail.id, d.manager_1, "APPROVE")

        assert detail.status == InstanceStatus.APPROVED
        # Auto-approval marks only initiation-time skip chains
        assert detail.resolution is None
        skipped = detail.history[-1]
        assert skipped.status == HistoryStatus.SKIPPED
        assert skipped.is_additional is True
        assert skipped.approver_id == d.cfo
        assert gateway.effects_applied == [report_id]


class TestResubmission:
    """Each approval cycle starts with fresh additional approvers."""

    @pytest.mark.asyncio
    async def test_rules_run_again_after_amount_change(
        self, engine, gateway, single_level, make_report, add_rule, fetch_report,
        session_factory, directory
    ):
        d = directory
        await add_rule("1000", user_id=d.cfo)
        await add_rule("5000", user_id=d.director)
        report_id = await make_report("2000")

        first = await engine.initiate_approval(d.company_id, report_id)
        first = await engine.process_action(first.id, d.manager_1, "APPROVE")
        assert gateway.approval_required[-1] == (first.id, 2, [d.cfo])
        first = await engine.process_action(first.id, d.cfo, "REQUEST_CHANGES", "split it")
        assert first.status == InstanceStatus.CHANGES_REQUESTED

        async with session_factory() as session:
            await session.execute(
                update(ExpenseReport)
                .where(ExpenseReport.id == report_id)
                .values(total_amount=Decimal("9000"))
            )
            await session.commit()

        second = await engine.initiate_approval(d.company_id, report_id)
        assert second.id != first.id
        second = await engine.process_action(second.id, d.manager_1, "APPROVE")

        routed = []
        while second.status == InstanceStatus.PENDING:
            approver = gateway.approval_required[-1][2][0]
            routed.append(approver)
            second = await engine.process_action(second.id, approver, "APPROVE")

        assert second.status == InstanceStatus.APPROVED
        assert sorted(routed) == sorted([d.cfo, d.director])
        report = await fetch_report(report_id)
        assert {a["user_id"] for a in report.approvers} == {d.cfo, d.director}
        assert all(a["action"] == "APPROVE" for a in report.approvers)

    @pytest.mark.asyncio
    async def test_attached_approver_decision_is_cleared(
        self, engine, single_level, make_report, fetch_report, directory
    ):
        d = directory
        report_id = await make_report(
            approvers=[{"user_id": d.cfo, "trigger_reason": "Manual", "level": 2}]
        )

        first = await engine.initiate_approval(d.company_id, report_id)
        first = await engine.process_action(first.id, d.manager_1, "APPROVE")
        first = await engine.process_action(first.id, d.cfo, "REJECT", "no receipts")
        assert first.status == InstanceStatus.REJECTED
        assert (await fetch_report(report_id)).approvers[0]["action"] == "REJECT"

        second = await engine.initiate_approval(d.company_id, report_id)

        entry = (await fetch_report(report_id)).approvers[0]
        assert entry["user_id"] == d.cfo
        assert entry["level"] == 2
        assert entry["decided_at"] is None
        assert entry["action"] is None

        second = await engine.process_action(second.id, d.manager_1, "APPROVE")
        assert second.status == InstanceStatus.PENDING
        assert second.current_level == 2
