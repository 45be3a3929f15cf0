"""Company, user and role models."""

from sqlalchemy import Column, ForeignKey, String, Table, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from expense_approval.models.base import Base, TimestampMixin, generate_id

user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(50), ForeignKey("users.id"), primary_key=True),
    Column("role_id", String(50), ForeignKey("roles.id"), primary_key=True),
)


class Company(Base, TimestampMixin):
    """Company table holding company-wide approval settings."""

    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    self_approval_policy: Mapped[str] = mapped_column(
        String(20), default="SKIP_SELF", nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "self_approval_policy IN ('SKIP_SELF', 'ALLOW_SELF')",
            name="company_self_approval_policy",
        ),
    )


class Role(Base, TimestampMixin):
    """Role table."""

    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class User(Base, TimestampMixin):
    """User table."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=generate_id)
    company_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("companies.id"), nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="ACTIVE", nullable=False, index=True
    )

    roles: Mapped[list["Role"]] = relationship(
        "Role", secondary=user_roles, lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("status IN ('ACTIVE', 'INACTIVE')", name="user_status"),
    )
