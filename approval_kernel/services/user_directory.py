"""
SqlUserDirectory -- the ``UserDirectory`` read model over ``directory_users``.

Architecture position:
    Kernel > Services.  Consumed by ApproverResolver.

Ordering contract:
    Every lookup returns active users earliest-created first, ties broken by
    user id.  Users with no company are tenant-wide and match every company.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from approval_kernel.domain.workflow import Identity
from approval_kernel.models.directory import DirectoryUserModel


class SqlUserDirectory:
    """``UserDirectory`` over the ``directory_users`` table."""

    def __init__(self, session: Session):
        self._session = session

    def _active(self, tenant_id: str, company_id: str | None):
        stmt = select(DirectoryUserModel).where(
            DirectoryUserModel.tenant_id == tenant_id,
            DirectoryUserModel.is_active.is_(True),
        )
        if company_id is not None:
            # Tenant-wide users (no company) serve every company.
            stmt = stmt.where(
                or_(
                    DirectoryUserModel.company_id == company_id,
                    DirectoryUserModel.company_id.is_(None),
                )
            )
        return stmt.order_by(DirectoryUserModel.created_at, DirectoryUserModel.user_id)

    def get_active_user(self, tenant_id: str, user_id: str) -> Identity | None:
        row = self._session.execute(
            select(DirectoryUserModel).where(
                DirectoryUserModel.tenant_id == tenant_id,
                DirectoryUserModel.user_id == user_id,
                DirectoryUserModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        return row.to_identity() if row else None

    def find_by_role(
        self,
        tenant_id: str,
        company_id: str | None,
        role: str,
    ) -> tuple[Identity, ...]:
        rows = self._session.execute(
            self._active(tenant_id, company_id).where(DirectoryUserModel.role == role)
        ).scalars().all()
        return tuple(r.to_identity() for r in rows)

    def find_by_department(
        self,
        tenant_id: str,
        company_id: str | None,
        department: str,
        heads_only: bool = False,
    ) -> tuple[Identity, ...]:
        stmt = self._active(tenant_id, company_id).where(
            DirectoryUserModel.department == department,
        )
        if heads_only:
            stmt = stmt.where(DirectoryUserModel.is_department_head.is_(True))
        rows = self._session.execute(stmt).scalars().all()
        return tuple(r.to_identity() for r in rows)

    def register_user(
        self,
        tenant_id: str,
        user_id: str,
        created_at: datetime,
        *,
        company_id: str | None = None,
        role: str | None = None,
        department: str | None = None,
        is_department_head: bool = False,
        is_active: bool = True,
        name: str | None = None,
        email: str | None = None,
    ) -> DirectoryUserModel:
        """Add or refresh a directory entry.  Flushes; caller commits."""
        row = self._session.execute(
            select(DirectoryUserModel).where(
                DirectoryUserModel.tenant_id == tenant_id,
                DirectoryUserModel.user_id == user_id,
            )
        ).scalar_one_or_none()
        if row is None:
            row = DirectoryUserModel(
                tenant_id=tenant_id, user_id=user_id, created_at=created_at,
            )
            self._session.add(row)
        row.company_id = company_id
        row.role = role
        row.department = department
        row.is_department_head = is_department_head
        row.is_active = is_active
        row.name = name
        row.email = email
        self._session.flush()
        return row
