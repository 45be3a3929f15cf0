"""Approval notification delivery tasks.

The routing engine enqueues these after a transition has been committed and
never waits for delivery. Each task posts a JSON event to the configured
notification webhook; transport failures are retried by RetryableTask.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from expense_approval.core.config import get_settings
from expense_approval.tasks.base import async_task, get_task_logger

logger = get_task_logger("notification_tasks")


_http_client: httpx.AsyncClient | None = None


async def _get_http_client() -> httpx.AsyncClient:
    """Get or create HTTP client."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=30.0)
    return _http_client


async def _post_event(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Post an approval event to the notification webhook.

    @param event - Event name
    @param payload - Event body
    @returns Delivery result
    """
    url = get_settings().notification_webhook_url
    if not url:
        logger.debug(f"No notification webhook configured; dropping {event}")
        return {"status": "skipped", "reason": "webhook not configured"}

    body = {
        "event": event,
        "sent_at": datetime.now(timezone.utc).isoformat(),
        **payload,
    }
    client = await _get_http_client()
    response = await client.post(url, json=body)
    response.raise_for_status()
    return {"status": "success", "status_code": response.status_code}


@async_task(queue="high")
async def send_approval_required_notification(
    self,
    instance_id: str,
    request_id: str,
    level_number: int,
    approver_ids: list[str],
    request_name: str | None = None,
    total_amount: str | None = None,
    currency: str | None = None,
) -> dict[str, Any]:
    """Tell approvers that a request is waiting at their level.

    @param instance_id - Approval instance ID
    @param request_id - Request ID
    @param level_number - Level now pending
    @param approver_ids - Users who may act
    @param request_name - Request title
    @param total_amount - Request total as string
    @param currency - Currency code
    @returns Delivery result
    """
    logger.info(
        "Sending approval-required notification",
        extra={"instance_id": instance_id, "level": level_number},
    )
    return await _post_event(
        "approval.required",
        {
            "instance_id": instance_id,
            "request_id": request_id,
            "level_number": level_number,
            "recipients": approver_ids,
            "request_name": request_name,
            "total_amount": total_amount,
            "currency": currency,
        },
    )


@async_task(queue="high")
async def send_status_changed_notification(
    self,
    instance_id: str,
    request_id: str,
    status: str,
    submitter_id: str | None,
    comments: str | None = None,
    resolution: str | None = None,
) -> dict[str, Any]:
    """Tell the submitter that their request changed status.

    @param instance_id - Approval instance ID
    @param request_id - Request ID
    @param status - New instance status
    @param submitter_id - Submitting user
    @param comments - Comments left with the deciding action
    @param resolution - Resolution marker (e.g. AUTO_APPROVED)
    @returns Delivery result
    """
    logger.info(
        "Sending status-changed notification",
        extra={"instance_id": instance_id, "status": status},
    )
    return await _post_event(
        "approval.status_changed",
        {
            "instance_id": instance_id,
            "request_id": request_id,
            "status": status,
            "recipients": [submitter_id] if submitter_id else [],
            "comments": comments,
            "resolution": resolution,
        },
    )
