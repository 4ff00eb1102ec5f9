"""ORM models for the approval kernel."""

from approval_kernel.models.approval import ApprovalModel, ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.models.directory import DirectoryUserModel
from approval_kernel.models.sequence import SequenceCounter
from approval_kernel.models.workflow import WorkflowDefinitionModel

__all__ = [
    "ApprovalModel",
    "ApprovalRequestModel",
    "AuditAction",
    "AuditEvent",
    "DirectoryUserModel",
    "SequenceCounter",
    "WorkflowDefinitionModel",
]
