"""Repository layer for database operations.

Async repository implementations using SQLAlchemy 2.x. Repositories flush
but never commit; services own the transaction boundary.
"""

from expense_approval.repositories.audit_log import AuditLogRepository
from expense_approval.repositories.base import BaseRepository
from expense_approval.repositories.directory import (
    CompanyRepository,
    RoleRepository,
    UserRepository,
)
from expense_approval.repositories.instance import (
    ApprovalHistoryRepository,
    ApprovalInstanceRepository,
)
from expense_approval.repositories.matrix import ApprovalMatrixRepository
from expense_approval.repositories.report import ExpenseReportRepository
from expense_approval.repositories.rule import ApprovalRuleRepository

__all__ = [
    "BaseRepository",
    "CompanyRepository",
    "RoleRepository",
    "UserRepository",
    "ApprovalMatrixRepository",
    "ApprovalInstanceRepository",
    "ApprovalHistoryRepository",
    "ExpenseReportRepository",
    "ApprovalRuleRepository",
    "AuditLogRepository",
]
