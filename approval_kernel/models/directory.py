"""
Module: approval_kernel.models.directory
Responsibility: ORM persistence for the tenant user directory consulted by
    ApproverResolver.

Architecture position: Kernel > Models.

Users are owned by the host application; this table is the engine's read
model of who holds which role and department.  ``created_at`` is the
deterministic tie-breaker when several active users match a role.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Identity


class DirectoryUserModel(Base):
    """A tenant user eligible to act as an approver."""

    __tablename__ = "directory_users"

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_directory_users_user"),
        Index("ix_directory_users_role", "tenant_id", "role", "is_active"),
        Index("ix_directory_users_department", "tenant_id", "department", "is_active"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_department_head: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DirectoryUser {self.user_id} role={self.role} active={self.is_active}>"

    def to_identity(self) -> Identity:
        from approval_kernel.domain.workflow import Identity

        return Identity(
            user_id=self.user_id,
            role=self.role,
            name=self.name,
            email=self.email,
            department=self.department,
        )
