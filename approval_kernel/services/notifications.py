"""
Notification dispatch for new pending approvals.

Transport (email, Slack, webhook) lives outside the engine.  The default
dispatcher only logs the notice so deployments without a transport still
leave a trail of who was asked to act.
"""

from __future__ import annotations

from approval_kernel.domain.workflow import ApprovalNotice, Identity
from approval_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class LoggingNotificationDispatcher:
    """``NotificationDispatcher`` that emits one ``approval_notice`` log record."""

    def notify(self, identity: Identity, notice: ApprovalNotice) -> None:
        logger.info(
            "approval_notice",
            extra={
                "tenant_id": notice.tenant_id,
                "recipient_id": identity.user_id,
                "recipient_email": identity.email,
                "entity_type": notice.entity_type,
                "entity_id": notice.entity_id,
                "request_id": str(notice.request_id),
                "approval_id": str(notice.approval_id),
                "step_name": notice.step_name,
                "due_by": notice.due_by.isoformat() if notice.due_by else None,
                "is_escalation": notice.is_escalation,
                "channels": list(notice.notification_channels),
            },
        )
