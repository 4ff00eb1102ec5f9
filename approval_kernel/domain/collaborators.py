"""
Collaborator protocols consumed by the approval orchestrator.

Architecture position:
    Kernel > Domain.  Pure interface definitions; implementations live in
    ``approval_kernel.services`` or outside this package entirely.
"""

from __future__ import annotations

from typing import Any, Protocol

from approval_kernel.domain.workflow import ApprovalNotice, Identity, WorkflowOutcome


class NotificationDispatcher(Protocol):
    """Fire-and-forget delivery of approval notices (email, Slack, webhook)."""

    def notify(self, identity: Identity, notice: ApprovalNotice) -> None:
        ...


class EntityStatusCallback(Protocol):
    """The orchestrator's only write into foreign domain objects."""

    def on_workflow_resolved(
        self,
        entity_type: str,
        entity_id: str,
        outcome: WorkflowOutcome,
    ) -> None:
        ...


class AuditSink(Protocol):
    """Records every create/approve/reject/escalate."""

    def record(
        self,
        tenant_id: str,
        actor_id: str,
        action: str,
        metadata: dict[str, Any],
    ) -> None:
        ...


class UserDirectory(Protocol):
    """Lookup of active users for approver resolution.

    Implementations return identities in a stable order: earliest-created
    first, ties broken by user id.
    """

    def get_active_user(self, tenant_id: str, user_id: str) -> Identity | None:
        ...

    def find_by_role(
        self,
        tenant_id: str,
        company_id: str | None,
        role: str,
    ) -> tuple[Identity, ...]:
        ...

    def find_by_department(
        self,
        tenant_id: str,
        company_id: str | None,
        department: str,
        heads_only: bool = False,
    ) -> tuple[Identity, ...]:
        ...


class EntityGuard(Protocol):
    """Optional check that the entity under approval exists."""

    def __call__(self, tenant_id: str, entity_type: str, entity_id: str) -> bool:
        ...
