"""
Fail-soft wrappers around the audit sink and notification dispatcher.

Audit and notification failures are logged and never roll back or block
the approval transition that triggered them.  Audit writes run inside a
SAVEPOINT so a failed insert leaves the caller's transaction usable.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from approval_kernel.domain.collaborators import AuditSink, NotificationDispatcher
from approval_kernel.domain.workflow import ApprovalNotice, Identity


def record_audit(
    session: Session,
    audit: AuditSink | None,
    logger: logging.Logger,
    tenant_id: str,
    actor_id: str,
    action: str,
    metadata: dict[str, Any],
) -> bool:
    """Record one audit entry.  Returns False (and logs) on failure."""
    if audit is None:
        return True
    try:
        with session.begin_nested():
            audit.record(tenant_id, actor_id, action, metadata)
    except Exception as exc:
        logger.error(
            "audit_record_failed",
            extra={
                "tenant_id": tenant_id,
                "actor_id": actor_id,
                "action": action,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        return False
    return True


def send_notification(
    dispatcher: NotificationDispatcher | None,
    logger: logging.Logger,
    identity: Identity,
    notice: ApprovalNotice,
) -> bool:
    """Dispatch one notice.  Returns False (and logs) on failure."""
    if dispatcher is None:
        return True
    try:
        dispatcher.notify(identity, notice)
    except Exception as exc:
        logger.warning(
            "notification_failed",
            extra={
                "tenant_id": notice.tenant_id,
                "recipient_id": identity.user_id,
                "approval_id": str(notice.approval_id),
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        return False
    return True
