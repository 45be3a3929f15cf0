"""Approval routing API endpoints."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from expense_approval.services.approval import (
    ApprovalInstanceDetail,
    ApprovalRoutingEngine,
    HistoryStatus,
    InstanceNotFound,
    RequestNotFound,
    get_approval_routing_engine,
)
from expense_approval.services.approval.schemas import (
    ApprovalActionRequest,
    ApprovalHistoryListResponse,
    InitiateApprovalRequest,
    PendingApprovalListResponse,
)
from expense_approval.services.auth import AuthenticatedUser, CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/approvals", tags=["Approvals"])

Engine = Annotated[ApprovalRoutingEngine, Depends(get_approval_routing_engine)]


def _ensure_company(detail: ApprovalInstanceDetail, user: AuthenticatedUser) -> None:
    # Instances of other companies are reported as missing
    if detail.company_id != user.company_id:
        raise InstanceNotFound(detail.id)


@router.post(
    "/requests/{request_id}",
    response_model=ApprovalInstanceDetail,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_approval(
    request_id: str,
    request: InitiateApprovalRequest,
    user: CurrentUser,
    engine: Engine,
) -> ApprovalInstanceDetail:
    """Start approval routing for a submitted request.

    Re-submitting a request that is still pending returns its instance.
    """
    return await engine.initiate_approval(
        company_id=user.company_id,
        request_id=request_id,
        request_type=request.request_type,
        request_data=request.request_data,
    )


@router.get("/requests/{request_id}", response_model=ApprovalInstanceDetail)
async def get_request_instance(
    request_id: str,
    user: CurrentUser,
    engine: Engine,
) -> ApprovalInstanceDetail:
    """Get the latest approval instance of a request."""
    detail = await engine.get_instance_by_request(request_id)
    if detail is None or detail.company_id != user.company_id:
        raise RequestNotFound(request_id)
    return detail


@router.get("/pending", response_model=PendingApprovalListResponse)
async def list_pending_for_user(
    user: CurrentUser,
    engine: Engine,
    start_date: datetime | None = Query(None, description="Submitted on or after"),
    end_date: datetime | None = Query(None, description="Submitted on or before"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int | None = Query(None, ge=1, le=100, description="Items per page"),
) -> PendingApprovalListResponse:
    """List instances waiting for the current user's decision."""
    return await engine.get_pending_for_user(
        user_id=user.user_id,
        company_id=user.company_id,
        page=page,
        page_size=page_size,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/history", response_model=ApprovalHistoryListResponse)
async def list_my_history(
    user: CurrentUser,
    engine: Engine,
    action_type: HistoryStatus | None = Query(None, description="Filter by status"),
    start_date: datetime | None = Query(None, description="Entries on or after"),
    end_date: datetime | None = Query(None, description="Entries on or before"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApprovalHistoryListResponse:
    """List the approval actions the current user has taken."""
    return await engine.get_approval_history(
        user_id=user.user_id,
        action_type=action_type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )


@router.get("/{instance_id}", response_model=ApprovalInstanceDetail)
async def get_instance_detail(
    instance_id: str,
    user: CurrentUser,
    engine: Engine,
) -> ApprovalInstanceDetail:
    """Get an approval instance with its full history."""
    detail = await engine.get_instance(instance_id)
    if detail is None:
        raise InstanceNotFound(instance_id)
    _ensure_company(detail, user)
    return detail


@router.post("/{instance_id}/action")
async def process_approval_action(
    instance_id: str,
    request: ApprovalActionRequest,
    user: CurrentUser,
    engine: Engine,
) -> dict:
    """Approve, reject or request changes on an instance.

    Actions:
    - APPROVE: Sign off the current level (may need further approvers)
    - REJECT: End the approval as rejected
    - REQUEST_CHANGES: Send the request back to the submitter
    """
    existing = await engine.get_instance(instance_id)
    if existing is None:
        raise InstanceNotFound(instance_id)
    _ensure_company(existing, user)

    detail = await engine.process_action(
        instance_id=instance_id,
        user_id=user.user_id,
        action=request.action,
        comments=request.comments,
    )
    return {
        "success": True,
        "instance_id": instance_id,
        "action": request.action.value,
        "new_status": detail.status.value,
        "current_level": detail.current_level,
        "message": f"Action {request.action.value} processed successfully",
    }
