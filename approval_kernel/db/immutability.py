"""
ORM-level immutability enforcement for the audit trail.

SQLAlchemy fires ``before_update``/``before_delete`` before SQL reaches the
database.  The listeners here raise ImmutabilityViolationError for any
attempt to modify or delete an AuditEvent, aborting the flush.

Usage:
    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

Approval decision records carry their own delete guard in
``approval_kernel.models.approval``.  Their single pending -> decided update
is a conditional UPDATE issued by StepOrchestrator.
"""

from sqlalchemy import event

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_audit_event_immutability(mapper, connection, target):
    """Prevent any updates to AuditEvent records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEvent",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    """Prevent deletion of AuditEvent records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditEvent",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once.
    """
    from approval_kernel.models.audit_event import AuditEvent

    if not event.contains(AuditEvent, "before_update", _check_audit_event_immutability):
        event.listen(AuditEvent, "before_update", _check_audit_event_immutability)
    if not event.contains(AuditEvent, "before_delete", _check_audit_event_delete):
        event.listen(AuditEvent, "before_delete", _check_audit_event_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests.
    """
    from approval_kernel.models.audit_event import AuditEvent

    _safe_remove_listener(AuditEvent, "before_update", _check_audit_event_immutability)
    _safe_remove_listener(AuditEvent, "before_delete", _check_audit_event_delete)
