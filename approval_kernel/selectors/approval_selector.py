"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read side of the approval engine: inboxes, request lookup,
    entity history, stalled-request and overdue queues, dashboard counts.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - An approval is "pending" for an assignee only while it is actionable:
      its decision is pending, its request is active (pending/escalated),
      and it sits at the request's current order.  Sibling approvals left
      pending on a rejected request never appear.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from approval_kernel.domain.workflow import (
    ACTIVE_REQUEST_STATUSES,
    Approval,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalRequestStatus,
    ApprovalStatistics,
)
from approval_kernel.models.approval import ApprovalModel, ApprovalRequestModel
from approval_kernel.selectors.base import BaseSelector

_ACTIVE = tuple(s.value for s in ACTIVE_REQUEST_STATUSES)


def _actionable():
    """Join condition + filters shared by inbox and overdue queries."""
    return and_(
        ApprovalModel.decision == ApprovalDecision.PENDING.value,
        ApprovalRequestModel.status.in_(_ACTIVE),
        ApprovalModel.step_order == ApprovalRequestModel.current_step_order,
    )


class ApprovalSelector(BaseSelector):
    """Read-only queries over approval requests and approvals."""

    def list_pending_approvals(
        self,
        tenant_id: str,
        assignee_id: str,
        company_id: str | None = None,
    ) -> list[Approval]:
        """Actionable approvals assigned to ``assignee_id``, oldest first."""
        stmt = (
            select(ApprovalModel)
            .join(ApprovalRequestModel, ApprovalModel.request_id == ApprovalRequestModel.id)
            .where(
                ApprovalModel.tenant_id == tenant_id,
                ApprovalModel.approver_id == assignee_id,
                _actionable(),
            )
            .order_by(ApprovalModel.created_at, ApprovalModel.step_key)
        )
        if company_id is not None:
            stmt = stmt.where(ApprovalRequestModel.company_id == company_id)
        return [a.to_dto() for a in self.session.execute(stmt).scalars().all()]

    def list_overdue_approvals(
        self,
        now: datetime,
        tenant_id: str | None = None,
        limit: int | None = None,
        after: tuple[datetime, UUID] | None = None,
    ) -> list[Approval]:
        """Actionable approvals whose ``due_at`` is strictly before ``now``.

        Ordered by ``(due_at, id)``.  ``after`` is the key of the last row of
        the previous page; only rows sorting after it are returned.
        """
        stmt = (
            select(ApprovalModel)
            .join(ApprovalRequestModel, ApprovalModel.request_id == ApprovalRequestModel.id)
            .where(
                _actionable(),
                ApprovalModel.due_at.is_not(None),
                ApprovalModel.due_at < now,
            )
            .order_by(ApprovalModel.due_at, ApprovalModel.id)
        )
        if tenant_id is not None:
            stmt = stmt.where(ApprovalModel.tenant_id == tenant_id)
        if after is not None:
            last_due, last_id = after
            stmt = stmt.where(
                or_(
                    ApprovalModel.due_at > last_due,
                    and_(ApprovalModel.due_at == last_due, ApprovalModel.id > last_id),
                )
            )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [a.to_dto() for a in self.session.execute(stmt).scalars().all()]

    def get_request(self, tenant_id: str, request_id: UUID) -> ApprovalRequest | None:
        row = self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.tenant_id == tenant_id,
                ApprovalRequestModel.id == request_id,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def get_approval(self, tenant_id: str, approval_id: UUID) -> Approval | None:
        row = self.session.execute(
            select(ApprovalModel).where(
                ApprovalModel.tenant_id == tenant_id,
                ApprovalModel.id == approval_id,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def find_active_request(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
    ) -> ApprovalRequest | None:
        """The entity's single non-terminal request, if any."""
        row = self.session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.tenant_id == tenant_id,
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.status.in_(_ACTIVE),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def list_requests_for_entity(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[ApprovalRequest]:
        """Approval history for one entity, oldest first."""
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.tenant_id == tenant_id,
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
            )
            .order_by(ApprovalRequestModel.created_at)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def list_stalled_requests(
        self,
        tenant_id: str,
        company_id: str | None = None,
    ) -> list[ApprovalRequest]:
        """Active requests left without an approver, for operator attention."""
        stmt = (
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.tenant_id == tenant_id,
                ApprovalRequestModel.status.in_(_ACTIVE),
                ApprovalRequestModel.stalled_reason.is_not(None),
            )
            .order_by(ApprovalRequestModel.created_at)
        )
        if company_id is not None:
            stmt = stmt.where(ApprovalRequestModel.company_id == company_id)
        return [r.to_dto() for r in self.session.execute(stmt).scalars().all()]

    def get_statistics(
        self,
        tenant_id: str,
        company_id: str | None = None,
    ) -> ApprovalStatistics:
        """Approval counts by decision and request counts by status.

        ``pending`` counts actionable approvals only, matching the inboxes:
        siblings left on rejected requests or behind a satisfied order are
        excluded.
        """
        pending_stmt = (
            select(func.count())
            .select_from(ApprovalModel)
            .join(ApprovalRequestModel, ApprovalModel.request_id == ApprovalRequestModel.id)
            .where(ApprovalModel.tenant_id == tenant_id, _actionable())
        )
        decision_stmt = (
            select(ApprovalModel.decision, func.count())
            .join(ApprovalRequestModel, ApprovalModel.request_id == ApprovalRequestModel.id)
            .where(ApprovalModel.tenant_id == tenant_id)
            .group_by(ApprovalModel.decision)
        )
        status_stmt = (
            select(ApprovalRequestModel.status, func.count())
            .where(ApprovalRequestModel.tenant_id == tenant_id)
            .group_by(ApprovalRequestModel.status)
        )
        stalled_stmt = select(func.count()).select_from(ApprovalRequestModel).where(
            ApprovalRequestModel.tenant_id == tenant_id,
            ApprovalRequestModel.status.in_(_ACTIVE),
            ApprovalRequestModel.stalled_reason.is_not(None),
        )
        if company_id is not None:
            pending_stmt = pending_stmt.where(ApprovalRequestModel.company_id == company_id)
            decision_stmt = decision_stmt.where(ApprovalRequestModel.company_id == company_id)
            status_stmt = status_stmt.where(ApprovalRequestModel.company_id == company_id)
            stalled_stmt = stalled_stmt.where(ApprovalRequestModel.company_id == company_id)

        by_decision = dict(self.session.execute(decision_stmt).all())
        by_status = {
            status.value: 0 for status in ApprovalRequestStatus
        }
        by_status.update(dict(self.session.execute(status_stmt).all()))

        return ApprovalStatistics(
            pending=self.session.execute(pending_stmt).scalar_one(),
            approved=by_decision.get(ApprovalDecision.APPROVED.value, 0),
            rejected=by_decision.get(ApprovalDecision.REJECTED.value, 0),
            escalated=by_decision.get(ApprovalDecision.ESCALATED.value, 0),
            requests_by_status=by_status,
            stalled_requests=self.session.execute(stalled_stmt).scalar_one(),
        )
