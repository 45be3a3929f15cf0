"""Expense report model (the request record routed through approvals)."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import Mapped, mapped_column

from expense_approval.models.base import Base, TimestampMixin, generate_id


class ExpenseReport(Base, TimestampMixin):
    """Expense report table.

    Only the fields the approval engine reads or writes are modelled here;
    line items and receipts live elsewhere.
    """

    __tablename__ = "expense_reports"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False, index=True
    )
    submitter_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("users.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cost_centre_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Denormalised approval state
    status: Mapped[str] = mapped_column(
        String(30), default="DRAFT", nullable=False, index=True
    )
    approval_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Additional approvers inserted after the matrix chain
    approvers: Mapped[list[dict]] = mapped_column(
        MutableList.as_mutable(JSON), default=list, nullable=False
    )
    additional_approvers_resolved: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'PENDING_APPROVAL', 'APPROVED', "
            "'REJECTED', 'CHANGES_REQUESTED')",
            name="report_status",
        ),
    )
