"""Additional-approver rule model."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from expense_approval.models.base import Base, TimestampMixin, generate_id


class ApprovalRule(Base, TimestampMixin):
    """Rule that adds an approver after the matrix chain when triggered."""

    __tablename__ = "approval_rules"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False
    )
    trigger_type: Mapped[str] = mapped_column(String(40), nullable=False)
    threshold_value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    approver_user_id: Mapped[Optional[str]] = mapped_column(
        String(50), ForeignKey("users.id"), nullable=True
    )
    approver_role_id: Mapped[Optional[str]] = mapped_column(
        String(50), ForeignKey("roles.id"), nullable=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_rule_company_active", "company_id", "active"),
        CheckConstraint(
            "trigger_type IN ('REPORT_AMOUNT_EXCEEDS', 'PROJECT_BUDGET_EXCEEDS', "
            "'COST_CENTRE_BUDGET_EXCEEDS')",
            name="rule_trigger_type",
        ),
        CheckConstraint(
            "approver_user_id IS NOT NULL OR approver_role_id IS NOT NULL",
            name="rule_approver",
        ),
        CheckConstraint("threshold_value >= 0", name="rule_threshold"),
    )
