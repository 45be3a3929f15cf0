"""Tests for approval matrix administration."""

import pytest

from expense_approval.services.approval import (
    InvalidMatrix,
    MatrixNotFound,
    NoActiveMatrix,
)
from expense_approval.services.approval.matrix import validate_levels
from expense_approval.services.approval.schemas import (
    LevelConfig,
    MatrixCreate,
    MatrixLevelsUpdate,
)


def _levels(*raw):
    return [LevelConfig.model_validate(level) for level in raw]


class TestValidateLevels:
    """Matrix level validation."""

    def test_valid_levels_pass(self):
        validate_levels(_levels(
            {"level_number": 1, "approver_user_ids": ["u-1"]},
            {
                "level_number": 2,
                "approver_role_ids": ["r-1"],
                "approval_type": "PARALLEL",
                "parallel_rule": "ALL",
            },
        ))

    def test_duplicate_level_numbers(self):
        with pytest.raises(InvalidMatrix, match="unique"):
            validate_levels(_levels(
                {"level_number": 1, "approver_user_ids": ["u-1"]},
                {"level_number": 1, "approver_user_ids": ["u-2"]},
            ))

    def test_no_enabled_level(self):
        with pytest.raises(InvalidMatrix, match="enabled"):
            validate_levels(_levels(
                {"level_number": 1, "approver_user_ids": ["u-1"], "enabled": False},
            ))

    def test_enabled_levels_out_of_order(self):
        with pytest.raises(InvalidMatrix, match="increasing"):
            validate_levels(_levels(
                {"level_number": 2, "approver_user_ids": ["u-1"]},
                {"level_number": 1, "approver_user_ids": ["u-2"]},
            ))

    def test_level_without_approvers(self):
        with pytest.raises(InvalidMatrix, match="no approver"):
            validate_levels(_levels({"level_number": 1}))

    def test_disabled_level_may_be_empty(self):
        validate_levels(_levels(
            {"level_number": 1, "enabled": False},
            {"level_number": 2, "approver_user_ids": ["u-1"]},
        ))

    def test_parallel_needs_rule(self):
        with pytest.raises(InvalidMatrix, match="parallel_rule"):
            validate_levels(_levels(
                {"level_number": 1, "approver_user_ids": ["u-1"], "approval_type": "PARALLEL"},
            ))

    def test_sequential_rejects_rule(self):
        with pytest.raises(InvalidMatrix, match="SEQUENTIAL"):
            validate_levels(_levels(
                {"level_number": 1, "approver_user_ids": ["u-1"], "parallel_rule": "ANY"},
            ))

    def test_level_number_must_be_positive(self):
        with pytest.raises(ValueError):
            LevelConfig(level_number=0, approver_user_ids=["u-1"])


class TestMatrixService:
    """MatrixService against the test database."""

    LEVELS = [{"level_number": 1, "approver_user_ids": ["u-mgr1"]}]

    @pytest.mark.asyncio
    async def test_create_and_get_active(self, matrix_service, directory):
        created = await matrix_service.create_matrix(
            directory.company_id, MatrixCreate(name="Default", levels=self.LEVELS)
        )

        assert created.is_active is True
        assert created.version == 1
        assert created.levels[0].approver_user_ids == ["u-mgr1"]

        active = await matrix_service.get_active_matrix(directory.company_id)
        assert active.id == created.id

    @pytest.mark.asyncio
    async def test_invalid_matrix_is_not_stored(self, matrix_service, directory):
        with pytest.raises(InvalidMatrix):
            await matrix_service.create_matrix(
                directory.company_id,
                MatrixCreate(name="Broken", levels=[{"level_number": 1}]),
            )

        assert await matrix_service.list_matrices(directory.company_id) == []

    @pytest.mark.asyncio
    async def test_no_active_matrix(self, matrix_service, directory):
        await matrix_service.create_matrix(
            directory.company_id,
            MatrixCreate(name="Draft", levels=self.LEVELS, activate=False),
        )

        with pytest.raises(NoActiveMatrix):
            await matrix_service.get_active_matrix(directory.company_id)

    @pytest.mark.asyncio
    async def test_activation_deactivates_others(self, matrix_service, directory):
        first = await matrix_service.create_matrix(
            directory.company_id, MatrixCreate(name="First", levels=self.LEVELS)
        )
        second = await matrix_service.create_matrix(
            directory.company_id, MatrixCreate(name="Second", levels=self.LEVELS)
        )

        assert (await matrix_service.get_matrix(first.id)).is_active is False
        assert (await matrix_service.get_active_matrix(directory.company_id)).id == second.id

        await matrix_service.activate_matrix(first.id)

        matrices = await matrix_service.list_matrices(directory.company_id)
        assert [m.id for m in matrices if m.is_active] == [first.id]

    @pytest.mark.asyncio
    async def test_unknown_matrix(self, matrix_service):
        with pytest.raises(MatrixNotFound):
            await matrix_service.get_matrix("missing")
        with pytest.raises(MatrixNotFound):
            await matrix_service.activate_matrix("missing")

    @pytest.mark.asyncio
    async def test_update_in_place_when_unused(self, matrix_service, directory):
        matrix = await matrix_service.create_matrix(
            directory.company_id, MatrixCreate(name="Default", levels=self.LEVELS)
        )

        updated = await matrix_service.update_levels(
            matrix.id,
            MatrixLevelsUpdate(levels=[
                {"level_number": 1, "approver_user_ids": ["u-mgr2"]},
                {"level_number": 2, "approver_user_ids": ["u-fin"]},
            ]),
        )

        assert updated.id == matrix.id
        assert updated.version == 1
        stored = await matrix_service.get_matrix(matrix.id)
        assert [level.approver_user_ids for level in stored.levels] == [["u-mgr2"], ["u-fin"]]

    @pytest.mark.asyncio
    async def test_update_versions_matrix_in_use(
        self, matrix_service, engine, make_report, directory
    ):
        d = directory
        matrix = await matrix_service.create_matrix(
            d.company_id,
            MatrixCreate(name="Default", levels=[
                {"level_number": 1, "approver_user_ids": [d.manager_1]},
                {"level_number": 2, "approver_user_ids": [d.finance]},
            ]),
        )
        in_flight = await engine.initiate_approval(d.company_id, await make_report())

        successor = await matrix_service.update_levels(
            matrix.id,
            MatrixLevelsUpdate(levels=[{"level_number": 1, "approver_user_ids": [d.cfo]}]),
        )

        assert successor.id != matrix.id
        assert successor.version == 2
        assert successor.previous_version_id == matrix.id
        assert successor.is_active is True
        old = await matrix_service.get_matrix(matrix.id)
        assert old.is_active is False
        assert len(old.levels) == 2

        # The in-flight instance keeps routing through the matrix it started on
        detail = await engine.process_action(in_flight.id, d.manager_1, "APPROVE")
        assert detail.matrix_id == matrix.id
        assert detail.current_level == 2

        fresh = await engine.initiate_approval(d.company_id, await make_report())
        assert fresh.matrix_id == successor.id
