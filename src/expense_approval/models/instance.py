"""Approval instance and history models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_approval.models.base import Base, TimestampMixin, generate_id, utcnow


class ApprovalInstance(Base, TimestampMixin):
    """Approval instance table (one per request submission)."""

    __tablename__ = "approval_instances"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False
    )
    matrix_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("approval_matrices.id"), nullable=False
    )
    request_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(
        String(30), default="EXPENSE_REPORT", nullable=False
    )
    submitter_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # State
    current_level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="PENDING", nullable=False, index=True
    )
    resolution: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_action_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Optimistic lock counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    history: Mapped[list["ApprovalHistory"]] = relationship(
        "ApprovalHistory",
        back_populates="instance",
        lazy="selectin",
        order_by="ApprovalHistory.sequence",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_instance_company_status", "company_id", "status"),
        # At most one in-flight instance per request
        Index(
            "uq_instance_request_pending",
            "request_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CHANGES_REQUESTED')",
            name="instance_status",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        """Whether no further actions are accepted."""
        return self.status != "PENDING"


class ApprovalHistory(Base):
    """Append-only approval history table."""

    __tablename__ = "approval_history"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    instance_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("approval_instances.id"), nullable=False, index=True
    )
    # Position within the instance's history
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    approver_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True
    )
    role_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_additional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    instance: Mapped["ApprovalInstance"] = relationship(
        "ApprovalInstance", back_populates="history"
    )

    __table_args__ = (
        UniqueConstraint(
            "instance_id", "level_number", "approver_id", name="uq_history_actor_level"
        ),
        UniqueConstraint("instance_id", "sequence", name="uq_history_sequence"),
        CheckConstraint(
            "status IN ('APPROVED', 'REJECTED', 'CHANGES_REQUESTED', 'SKIPPED')",
            name="history_status",
        ),
    )
