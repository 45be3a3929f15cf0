"""Tests for approver validation before parking an instance."""

import pytest

from expense_approval.models import ApprovalInstance
from expense_approval.services.approval import ApproversInvalid, AtomicCommitGuard


def _instance(company_id: str) -> ApprovalInstance:
    return ApprovalInstance(
        id="inst-1",
        company_id=company_id,
        matrix_id="m-1",
        request_id="rep-1",
        current_level=2,
        status="PENDING",
    )


class TestAtomicCommitGuard:

    @pytest.mark.asyncio
    async def test_accepts_active_company_users(self, session_factory, directory):
        d = directory
        async with session_factory() as session:
            ids = await AtomicCommitGuard().validate(
                session, _instance(d.company_id), [d.manager_1, d.finance, d.manager_1]
            )

        assert ids == [d.manager_1, d.finance]

    @pytest.mark.asyncio
    async def test_empty_set(self, session_factory, directory):
        async with session_factory() as session:
            with pytest.raises(ApproversInvalid) as exc_info:
                await AtomicCommitGuard().validate(
                    session, _instance(directory.company_id), []
                )

        assert exc_info.value.level_number == 2
        assert exc_info.value.invalid_ids == []

    @pytest.mark.asyncio
    async def test_inactive_missing_and_foreign_users(self, session_factory, directory):
        d = directory
        async with session_factory() as session:
            with pytest.raises(ApproversInvalid) as exc_info:
                await AtomicCommitGuard().validate(
                    session,
                    _instance(d.company_id),
                    [d.manager_1, d.inactive, "u-ghost", d.outsider],
                    level_number=4,
                )

        assert exc_info.value.invalid_ids == [d.inactive, "u-ghost", d.outsider]
        assert exc_info.value.level_number == 4
        assert exc_info.value.status_code == 422
