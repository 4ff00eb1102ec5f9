"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests and their decision
    records (approvals).

Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain layer only.

Invariants enforced:
    - At most one non-terminal request per (tenant, entity_type, entity_id):
      partial unique index over ``status IN ('pending', 'escalated')``.
      StepOrchestrator checks first and raises DuplicateActiveRequestError;
      the index catches the race between two creators.
    - An approval leaves ``pending`` exactly once.  The orchestrator issues a
      conditional UPDATE (``WHERE decision = 'pending'``); rows are never
      deleted.
    - ``definition_snapshot`` is the workflow as it was when the request was
      created.  Later definition edits never change in-flight requests.

Failure modes:
    - IntegrityError on a racing duplicate active request.
    - ImmutabilityViolationError on any approval DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import Approval, ApprovalRequest


_ACTIVE_WHERE = text("status IN ('pending', 'escalated')")


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions follow ``REQUEST_TRANSITIONS``.  Terminal statuses
        (approved, rejected, completed) are never changed once set.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'escalated', 'completed')",
            name="ck_approval_requests_valid_status",
        ),
        Index(
            "ix_approval_requests_active_unique",
            "tenant_id", "entity_type", "entity_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        Index(
            "ix_approval_requests_entity",
            "tenant_id", "entity_type", "entity_id", "created_at",
        ),
        Index("ix_approval_requests_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_workflows.id"),
        nullable=False,
    )
    workflow_version: Mapped[int] = mapped_column(nullable=False, default=1)
    definition_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    current_step_order: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    request_metadata: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    stalled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    approvals: Mapped[list["ApprovalModel"]] = relationship(
        "ApprovalModel",
        back_populates="request",
        order_by=lambda: [
            ApprovalModel.step_order,
            ApprovalModel.created_at,
            ApprovalModel.is_escalation,
            ApprovalModel.step_key,
        ],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} {self.entity_type}:{self.entity_id} "
            f"status={self.status} order={self.current_step_order}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import (
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalRequestStatus,
        )

        return ApprovalRequestDTO(
            request_id=self.id,
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            entity_type=self.entity_type,
            entity_sub_type=self.entity_sub_type,
            entity_id=self.entity_id,
            workflow_id=self.workflow_id,
            workflow_version=self.workflow_version,
            current_step_order=self.current_step_order,
            status=ApprovalRequestStatus(self.status),
            requested_by=self.requested_by,
            metadata=dict(self.request_metadata or {}),
            auto_approved=self.auto_approved,
            stalled_reason=self.stalled_reason,
            created_at=self.created_at,
            resolved_at=self.resolved_at,
            approvals=tuple(a.to_dto() for a in self.approvals),
        )


class ApprovalModel(Base):
    """Persistent decision record for one approver on one step.

    Contract:
        Created ``pending``.  Mutated exactly once to a terminal decision via
        a conditional UPDATE.  Never deleted.
    """

    __tablename__ = "approvals"

    __table_args__ = (
        CheckConstraint(
            "decision IN ('pending', 'approved', 'rejected', 'escalated')",
            name="ck_approvals_valid_decision",
        ),
        Index("ix_approvals_request", "request_id", "step_order"),
        Index("ix_approvals_assignee", "tenant_id", "approver_id", "decision"),
        Index("ix_approvals_due", "decision", "due_at"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    step_key: Mapped[str] = mapped_column(String(100), nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    step_order: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_escalation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    escalated_from_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("approvals.id"),
        nullable=True,
    )
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="approvals",
    )

    def __repr__(self) -> str:
        return (
            f"<Approval {self.id} request={self.request_id} "
            f"step={self.step_key} approver={self.approver_id} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> Approval:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.workflow import Approval as ApprovalDTO
        from approval_kernel.domain.workflow import ApprovalDecision

        return ApprovalDTO(
            approval_id=self.id,
            request_id=self.request_id,
            tenant_id=self.tenant_id,
            step_key=self.step_key,
            step_name=self.step_name,
            step_order=self.step_order,
            approver_id=self.approver_id,
            decision=ApprovalDecision(self.decision),
            is_required=self.is_required,
            is_escalation=self.is_escalation,
            escalated_from_id=self.escalated_from_id,
            comments=self.comments,
            escalation_reason=self.escalation_reason,
            created_at=self.created_at,
            due_at=self.due_at,
            processed_at=self.processed_at,
        )


# =============================================================================
# Decision records are never deleted
# =============================================================================


@event.listens_for(ApprovalModel, "before_delete")
def prevent_approval_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="Approval",
        entity_id=str(target.id),
        reason="Approval records are never deleted",
    )
