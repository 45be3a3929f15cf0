"""Approval matrix administration endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from expense_approval.services.approval import (
    MatrixDetail,
    MatrixNotFound,
    MatrixService,
    get_matrix_service,
)
from expense_approval.services.approval.schemas import MatrixCreate, MatrixLevelsUpdate
from expense_approval.services.auth import AdminUser, AuthenticatedUser, CurrentUser

router = APIRouter(prefix="/matrices", tags=["Approval Matrices"])

Service = Annotated[MatrixService, Depends(get_matrix_service)]


async def _owned_matrix(
    service: MatrixService, matrix_id: str, user: AuthenticatedUser
) -> MatrixDetail:
    matrix = await service.get_matrix(matrix_id)
    if matrix.company_id != user.company_id:
        raise MatrixNotFound(matrix_id)
    return matrix


@router.post("", response_model=MatrixDetail, status_code=status.HTTP_201_CREATED)
async def create_matrix(
    data: MatrixCreate,
    user: AdminUser,
    service: Service,
) -> MatrixDetail:
    """Create an approval matrix for the caller's company.

    Requires: admin role
    """
    return await service.create_matrix(user.company_id, data, actor_id=user.user_id)


@router.get("", response_model=list[MatrixDetail])
async def list_matrices(user: CurrentUser, service: Service) -> list[MatrixDetail]:
    """List the company's matrices, newest first."""
    return await service.list_matrices(user.company_id)


@router.get("/active", response_model=MatrixDetail)
async def get_active_matrix(user: CurrentUser, service: Service) -> MatrixDetail:
    return await service.get_active_matrix(user.company_id)


@router.get("/{matrix_id}", response_model=MatrixDetail)
async def get_matrix(matrix_id: str, user: CurrentUser, service: Service) -> MatrixDetail:
    return await _owned_matrix(service, matrix_id, user)


@router.put("/{matrix_id}/levels", response_model=MatrixDetail)
async def update_matrix_levels(
    matrix_id: str,
    data: MatrixLevelsUpdate,
    user: AdminUser,
    service: Service,
) -> MatrixDetail:
    """Replace a matrix's levels.

    A matrix with pending approvals is versioned instead of edited; the
    response is then the new version.

    Requires: admin role
    """
    await _owned_matrix(service, matrix_id, user)
    return await service.update_levels(matrix_id, data, actor_id=user.user_id)


@router.post("/{matrix_id}/activate", response_model=MatrixDetail)
async def activate_matrix(
    matrix_id: str,
    user: AdminUser,
    service: Service,
) -> MatrixDetail:
    """Make a matrix the company's active matrix.

    Requires: admin role
    """
    await _owned_matrix(service, matrix_id, user)
    return await service.activate_matrix(matrix_id, actor_id=user.user_id)
