"""Pytest configuration and fixtures."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

from expense_approval.core.config import Settings
from expense_approval.infrastructure.database.session import create_session_factory
from expense_approval.models import (
    ApprovalRule,
    Base,
    Company,
    ExpenseReport,
    Role,
    User,
)
from expense_approval.services.approval import (
    ApprovalRoutingEngine,
    DefaultCollaboratorGateway,
    MatrixService,
)
from expense_approval.services.approval.schemas import MatrixCreate


@dataclass(frozen=True)
class Directory:
    """Ids of the seeded company directory."""

    company_id: str = "co-acme"
    other_company_id: str = "co-other"
    submitter: str = "u-emp"
    manager_1: str = "u-mgr1"
    manager_2: str = "u-mgr2"
    finance: str = "u-fin"
    director: str = "u-dir"
    cfo: str = "u-cfo"
    inactive: str = "u-gone"
    outsider: str = "u-out"
    manager_role: str = "r-manager"
    finance_role: str = "r-finance"
    cfo_role: str = "r-cfo"
    empty_role: str = "r-empty"


class FakeGateway(DefaultCollaboratorGateway):
    """Database-backed reads with recorded notifications and side effects."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.approval_required: list[tuple[str, int, list[str]]] = []
        self.status_changed: list[tuple[str, str, str | None]] = []
        self.effects_applied: list[str] = []
        self.holds_reversed: list[tuple[str, str, str | None]] = []
        self.fail_effects = False
        self.fail_notifications = False

    async def notify_approval_required(self, instance, level_number, approver_ids, snapshot):
        if self.fail_notifications:
            raise ConnectionError("notification transport down")
        self.approval_required.append((instance.id, level_number, list(approver_ids)))

    async def notify_status_changed(self, instance, snapshot, status, comments=None):
        if self.fail_notifications:
            raise ConnectionError("notification transport down")
        self.status_changed.append((instance.id, status, comments))

    async def apply_post_approval_effects(self, request_id):
        if self.fail_effects:
            raise RuntimeError("ledger unavailable")
        self.effects_applied.append(request_id)

    async def reverse_holds_on_rejection(self, request_id, actor_id, reason):
        self.holds_reversed.append((request_id, actor_id, reason))


@pytest.fixture(scope="function")
def settings():
    """Create settings instance for testing."""
    return Settings(environment="testing", approval_max_retries=3)


@pytest.fixture
def directory() -> Directory:
    return Directory()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine so every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'approvals.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine, directory):
    """Session factory over a database seeded with the company directory."""
    factory = create_session_factory(db_engine)
    d = directory

    async with factory() as session:
        session.add_all([
            Company(id=d.company_id, name="Acme", self_approval_policy="SKIP_SELF"),
            Company(id=d.other_company_id, name="Other", self_approval_policy="ALLOW_SELF"),
        ])
        await session.flush()

        manager = Role(id=d.manager_role, company_id=d.company_id, name="Manager")
        finance = Role(id=d.finance_role, company_id=d.company_id, name="Finance")
        cfo = Role(id=d.cfo_role, company_id=d.company_id, name="CFO")
        empty = Role(id=d.empty_role, company_id=d.company_id, name="Vacant")
        session.add_all([manager, finance, cfo, empty])
        await session.flush()

        def user(uid: str, roles: list[Role], status: str = "ACTIVE", company: str | None = None):
            return User(
                id=uid,
                company_id=company or d.company_id,
                email=f"{uid}@example.com",
                name=uid,
                status=status,
                roles=roles,
            )

        session.add_all([
            user(d.submitter, []),
            user(d.manager_1, [manager]),
            user(d.manager_2, [manager]),
            user(d.finance, [finance]),
            user(d.director, [manager, finance]),
            user(d.cfo, [cfo]),
            user(d.inactive, [manager], status="INACTIVE"),
            user(d.outsider, [], company=d.other_company_id),
        ])
        await session.commit()

    return factory


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings)


@pytest.fixture
def engine(session_factory, gateway, settings):
    """Routing engine wired to the test database and fake gateway."""
    return ApprovalRoutingEngine(
        session_factory=session_factory, gateway=gateway, settings=settings
    )


@pytest.fixture
def matrix_service(session_factory):
    return MatrixService(session_factory)


@pytest.fixture
def make_matrix(matrix_service, directory):
    """Create (and by default activate) a matrix from level dicts."""

    async def _make(levels: list[dict[str, Any]], name: str = "Default", **kwargs):
        data = MatrixCreate(name=name, levels=levels, **kwargs)
        return await matrix_service.create_matrix(directory.company_id, data)

    return _make


@pytest.fixture
def make_report(session_factory, directory):
    """Create an expense report and return its id."""
    counter = {"n": 0}

    async def _make(
        amount: str = "100.00",
        submitter: str | None = None,
        company_id: str | None = None,
        approvers: list[dict[str, Any]] | None = None,
    ) -> str:
        counter["n"] += 1
        report_id = f"rep-{counter['n']}"
        async with session_factory() as session:
            session.add(
                ExpenseReport(
                    id=report_id,
                    company_id=company_id or directory.company_id,
                    submitter_id=submitter or directory.submitter,
                    name=f"Report {counter['n']}",
                    total_amount=Decimal(amount),
                    currency="INR",
                    status="SUBMITTED",
                    approvers=approvers or [],
                )
            )
            await session.commit()
        return report_id

    return _make


@pytest.fixture
def set_policy(session_factory, directory):
    """Change the seeded company's self-approval policy."""

    async def _set(policy: str) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Company)
                .where(Company.id == directory.company_id)
                .values(self_approval_policy=policy)
            )
            await session.commit()

    return _set


@pytest.fixture
def add_rule(session_factory, directory):
    """Create an additional-approver rule."""

    async def _add(threshold: str, user_id: str | None = None, role_id: str | None = None,
                   trigger_type: str = "REPORT_AMOUNT_EXCEEDS") -> str:
        async with session_factory() as session:
            rule = ApprovalRule(
                company_id=directory.company_id,
                trigger_type=trigger_type,
                threshold_value=Decimal(threshold),
                approver_user_id=user_id,
                approver_role_id=role_id,
            )
            session.add(rule)
            await session.commit()
            return rule.id

    return _add


@pytest.fixture
def fetch_report(session_factory):
    """Read an expense report in a fresh session."""

    async def _fetch(report_id: str) -> ExpenseReport:
        async with session_factory() as session:
            return await session.get(ExpenseReport, report_id)

    return _fetch
