"""Database models for the expense approval engine."""

from expense_approval.models.audit import AuditLog
from expense_approval.models.base import Base, TimestampMixin
from expense_approval.models.directory import Company, Role, User, user_roles
from expense_approval.models.instance import ApprovalHistory, ApprovalInstance
from expense_approval.models.matrix import ApprovalLevel, ApprovalMatrix
from expense_approval.models.report import ExpenseReport
from expense_approval.models.rule import ApprovalRule

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Directory
    "Company",
    "Role",
    "User",
    "user_roles",
    # Approval models
    "ApprovalMatrix",
    "ApprovalLevel",
    "ApprovalInstance",
    "ApprovalHistory",
    "ApprovalRule",
    # Request records
    "ExpenseReport",
    # Monitoring models
    "AuditLog",
]
