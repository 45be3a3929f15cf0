"""Tests for the collaborator gateway and notification tasks."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from expense_approval.core.config import Settings
from expense_approval.models import ApprovalInstance
from expense_approval.services.approval.gateway import (
    DefaultCollaboratorGateway,
    snapshot_from_report,
)
from expense_approval.services.approval.schemas import RequestSnapshot, SelfApprovalPolicy
from expense_approval.tasks import notification_tasks


def _mock_client_factory(handler):
    """Build httpx.AsyncClient instances that answer through handler."""
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    return factory


@pytest.fixture
def instance():
    return ApprovalInstance(
        id="inst-1",
        company_id="co-acme",
        matrix_id="m-1",
        request_id="rep-1",
        current_level=2,
        status="APPROVED",
        resolution="AUTO_APPROVED",
    )


@pytest.fixture
def snapshot():
    return RequestSnapshot(
        request_id="rep-1",
        company_id="co-acme",
        submitter_id="u-emp",
        name="Client visit",
        total_amount=Decimal("250.00"),
        currency="EUR",
    )


class TestGatewayReads:

    @pytest.mark.asyncio
    async def test_load_request_data(self, session_factory, make_report, directory):
        report_id = await make_report(
            "75.10",
            approvers=[{"user_id": directory.cfo, "trigger_reason": "Manual", "level": 3}],
        )
        gateway = DefaultCollaboratorGateway(Settings())

        async with session_factory() as session:
            snapshot = await gateway.load_request_data(session, report_id)
            missing = await gateway.load_request_data(session, "nope")

        assert missing is None
        assert snapshot.submitter_id == directory.submitter
        assert snapshot.total_amount == Decimal("75.10")
        assert snapshot.approvers[0].user_id == directory.cfo
        assert snapshot.approvers[0].level == 3
        assert snapshot.additional_approvers_resolved is False

    @pytest.mark.asyncio
    async def test_policy_falls_back_to_settings(self, session_factory, directory):
        gateway = DefaultCollaboratorGateway(Settings(default_self_approval_policy="ALLOW_SELF"))

        async with session_factory() as session:
            acme = await gateway.get_company_self_approval_policy(session, directory.company_id)
            unknown = await gateway.get_company_self_approval_policy(session, "co-missing")

        assert acme == SelfApprovalPolicy.SKIP_SELF
        assert unknown == SelfApprovalPolicy.ALLOW_SELF

    def test_snapshot_from_report_handles_empty_approvers(self):
        report = MagicMock(
            id="rep-9",
            company_id="co-acme",
            submitter_id="u-emp",
            total_amount=Decimal("10"),
            currency="INR",
            project_id=None,
            cost_centre_id="cc-1",
            approvers=None,
            additional_approvers_resolved=False,
        )
        report.name = "Taxi"

        snapshot = snapshot_from_report(report)

        assert snapshot.approvers == []
        assert snapshot.cost_centre_id == "cc-1"
        assert snapshot.name == "Taxi"


class TestGatewayNotifications:

    @pytest.mark.asyncio
    async def test_approval_required_enqueues_task(self, instance, snapshot):
        gateway = DefaultCollaboratorGateway(Settings())

        with patch(
            "expense_approval.services.approval.gateway.send_approval_required_notification"
        ) as task:
            await gateway.notify_approval_required(instance, 2, ["u-fin"], snapshot)

        task.delay.assert_called_once_with(
            instance_id="inst-1",
            request_id="rep-1",
            level_number=2,
            approver_ids=["u-fin"],
            request_name="Client visit",
            total_amount="250.00",
            currency="EUR",
        )

    @pytest.mark.asyncio
    async def test_status_changed_enqueues_task(self, instance, snapshot):
        gateway = DefaultCollaboratorGateway(Settings())

        with patch(
            "expense_approval.services.approval.gateway.send_status_changed_notification"
        ) as task:
            await gateway.notify_status_changed(instance, snapshot, "APPROVED", "done")

        task.delay.assert_called_once_with(
            instance_id="inst-1",
            request_id="rep-1",
            status="APPROVED",
            submitter_id="u-emp",
            comments="done",
            resolution="AUTO_APPROVED",
        )


class TestGatewayLedger:

    @pytest.mark.asyncio
    async def test_ledger_not_configured_is_noop(self):
        gateway = DefaultCollaboratorGateway(Settings(ledger_service_url=None))

        with patch("httpx.AsyncClient") as client:
            await gateway.apply_post_approval_effects("rep-1")

        client.assert_not_called()

    @pytest.mark.asyncio
    async def test_apply_and_reverse_post_to_ledger(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True})

        gateway = DefaultCollaboratorGateway(
            Settings(ledger_service_url="http://ledger.test")
        )
        with patch("httpx.AsyncClient", _mock_client_factory(handler)):
            await gateway.apply_post_approval_effects("rep-1")
            await gateway.reverse_holds_on_rejection("rep-2", "u-mgr1", "duplicate")

        assert calls == [
            ("/holds/apply", {"request_id": "rep-1"}),
            (
                "/holds/reverse",
                {"request_id": "rep-2", "actor_id": "u-mgr1", "reason": "duplicate"},
            ),
        ]

    @pytest.mark.asyncio
    async def test_ledger_error_propagates(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        gateway = DefaultCollaboratorGateway(
            Settings(ledger_service_url="http://ledger.test")
        )
        with patch("httpx.AsyncClient", _mock_client_factory(handler)):
            with pytest.raises(httpx.HTTPStatusError):
                await gateway.apply_post_approval_effects("rep-1")


class TestNotificationTasks:

    @pytest.mark.asyncio
    async def test_post_event_skipped_without_webhook(self):
        with patch.object(
            notification_tasks, "get_settings", return_value=Settings()
        ):
            result = await notification_tasks._post_event("approval.required", {})

        assert result["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_post_event_sends_json(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        settings = Settings(notification_webhook_url="http://hooks.test/approvals")
        with patch.object(notification_tasks, "get_settings", return_value=settings), \
                patch.object(notification_tasks, "_get_http_client", AsyncMock(return_value=client)):
            result = await notification_tasks._post_event(
                "approval.status_changed", {"instance_id": "inst-1"}
            )
        await client.aclose()

        assert result == {"status": "success", "status_code": 202}
        assert received[0]["event"] == "approval.status_changed"
        assert received[0]["instance_id"] == "inst-1"
        assert "sent_at" in received[0]

    @pytest.mark.asyncio
    async def test_status_task_builds_payload(self):
        task = notification_tasks.send_status_changed_notification
        post = AsyncMock(return_value={"status": "success"})

        # Await the coroutine behind the Celery wrapper
        with patch.object(notification_tasks, "_post_event", post):
            result = await task.run.__wrapped__(
                task,
                instance_id="inst-1",
                request_id="rep-1",
                status="REJECTED",
                submitter_id="u-emp",
                comments="over budget",
            )

        assert result == {"status": "success"}
        event, payload = post.await_args.args
        assert event == "approval.status_changed"
        assert payload["recipients"] == ["u-emp"]
        assert payload["comments"] == "over budget"
        assert payload["resolution"] is None
