"""Services for the approval kernel (write side)."""

from approval_kernel.services.auditor_service import AuditorService, AuditTrace
from approval_kernel.services.entity_status import EntityStatusRegistry
from approval_kernel.services.notifications import LoggingNotificationDispatcher
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.user_directory import SqlUserDirectory

__all__ = [
    "AuditTrace",
    "AuditorService",
    "EntityStatusRegistry",
    "LoggingNotificationDispatcher",
    "SequenceService",
    "SqlUserDirectory",
]
