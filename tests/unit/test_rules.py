"""Tests for additional-approver rule evaluation."""

from decimal import Decimal

import pytest
from sqlalchemy import update

from expense_approval.models import ApprovalRule, User
from expense_approval.services.approval.rules import AdditionalApproverRules
from expense_approval.services.approval.schemas import RequestSnapshot


def _snapshot(amount: str, company_id: str = "co-acme") -> RequestSnapshot:
    return RequestSnapshot(
        request_id="rep-1",
        company_id=company_id,
        submitter_id="u-emp",
        total_amount=Decimal(amount),
        currency="INR",
    )


async def _evaluate(session_factory, snapshot):
    async with session_factory() as session:
        return await AdditionalApproverRules(session).evaluate(snapshot)


class TestAdditionalApproverRules:

    @pytest.mark.asyncio
    async def test_amount_must_exceed_threshold(self, session_factory, add_rule, directory):
        await add_rule("1000", user_id=directory.cfo)

        assert await _evaluate(session_factory, _snapshot("1000")) == []
        approvers = await _evaluate(session_factory, _snapshot("1000.01"))

        assert [a.user_id for a in approvers] == [directory.cfo]
        assert approvers[0].level == 0
        assert approvers[0].is_additional_approval is True
        assert "1000.01" in approvers[0].trigger_reason

    @pytest.mark.asyncio
    async def test_one_entry_per_user(self, session_factory, add_rule, directory):
        await add_rule("500", user_id=directory.cfo)
        await add_rule("1000", user_id=directory.cfo)
        await add_rule("2000", user_id=directory.director)

        approvers = await _evaluate(session_factory, _snapshot("5000"))

        assert [a.user_id for a in approvers] == [directory.cfo, directory.director]

    @pytest.mark.asyncio
    async def test_role_rule_picks_active_holder(self, session_factory, add_rule, directory):
        rule_id = await add_rule("100", role_id=directory.finance_role)

        approvers = await _evaluate(session_factory, _snapshot("150"))

        # u-dir sorts before u-fin
        assert approvers[0].user_id == directory.director
        assert approvers[0].role == "Finance"
        assert approvers[0].rule_id == rule_id

    @pytest.mark.asyncio
    async def test_vacant_role_rule_is_dropped(self, session_factory, add_rule, directory):
        await add_rule("100", role_id=directory.empty_role)

        assert await _evaluate(session_factory, _snapshot("150")) == []

    @pytest.mark.asyncio
    async def test_budget_triggers_are_not_evaluated(
        self, session_factory, add_rule, directory
    ):
        await add_rule("0", user_id=directory.cfo, trigger_type="PROJECT_BUDGET_EXCEEDS")

        assert await _evaluate(session_factory, _snapshot("99999")) == []

    @pytest.mark.asyncio
    async def test_inactive_rules_and_other_companies(
        self, session_factory, add_rule, directory
    ):
        rule_id = await add_rule("100", user_id=directory.cfo)
        async with session_factory() as session:
            await session.execute(
                update(ApprovalRule).where(ApprovalRule.id == rule_id).values(active=False)
            )
            await session.commit()

        assert await _evaluate(session_factory, _snapshot("500")) == []

        await add_rule("100", user_id=directory.cfo)
        other = _snapshot("500", company_id=directory.other_company_id)
        assert await _evaluate(session_factory, other) == []

    @pytest.mark.asyncio
    async def test_inactive_holder_not_chosen(self, session_factory, add_rule, directory):
        async with session_factory() as session:
            await session.execute(
                update(User).where(User.id == directory.cfo).values(status="INACTIVE")
            )
            await session.commit()
        await add_rule("100", role_id=directory.cfo_role)

        assert await _evaluate(session_factory, _snapshot("500")) == []
