"""Approval matrix and level models."""

from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_approval.models.base import Base, TimestampMixin, generate_id


class ApprovalMatrix(Base, TimestampMixin):
    """Approval matrix table (one active row per company)."""

    __tablename__ = "approval_matrices"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Versioning: edits of an in-use matrix produce a new row
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    previous_version_id: Mapped[Optional[str]] = mapped_column(
        String(50), ForeignKey("approval_matrices.id"), nullable=True
    )

    levels: Mapped[list["ApprovalLevel"]] = relationship(
        "ApprovalLevel",
        back_populates="matrix",
        lazy="selectin",
        order_by="ApprovalLevel.level_number",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_matrix_company_active", "company_id", "is_active"),)

    @property
    def enabled_levels(self) -> list["ApprovalLevel"]:
        """Enabled levels in ascending level order."""
        return sorted(
            (level for level in self.levels if level.enabled),
            key=lambda level: level.level_number,
        )

    def get_enabled_level(self, level_number: int) -> Optional["ApprovalLevel"]:
        """Get enabled level by number."""
        for level in self.levels:
            if level.level_number == level_number and level.enabled:
                return level
        return None

    @property
    def max_enabled_level(self) -> int:
        """Highest enabled level number (0 when no level is enabled)."""
        enabled = self.enabled_levels
        return enabled[-1].level_number if enabled else 0


class ApprovalLevel(Base):
    """Approval level table."""

    __tablename__ = "approval_levels"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    matrix_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("approval_matrices.id"), nullable=False, index=True
    )
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    approval_type: Mapped[str] = mapped_column(String(20), nullable=False)
    parallel_rule: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Approver references; user list takes precedence over role list
    approver_user_ids: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    approver_role_ids: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )

    conditions: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)
    skip_allowed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    matrix: Mapped["ApprovalMatrix"] = relationship(
        "ApprovalMatrix", back_populates="levels"
    )

    __table_args__ = (
        CheckConstraint(
            "approval_type IN ('SEQUENTIAL', 'PARALLEL')", name="level_approval_type"
        ),
        CheckConstraint(
            "parallel_rule IN ('ALL', 'ANY') OR parallel_rule IS NULL",
            name="level_parallel_rule",
        ),
    )
