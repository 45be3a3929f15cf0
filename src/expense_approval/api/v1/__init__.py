"""API v1 module."""

from fastapi import APIRouter

from expense_approval.api.v1.endpoints import approvals, matrices

api_router = APIRouter()

# Include routers
api_router.include_router(approvals.router)
api_router.include_router(matrices.router)
