"""
Tests for the default collaborators and the wiring helper.

- EntityStatusRegistry dispatches outcomes per entity type
- LoggingNotificationDispatcher leaves an approval_notice log record
- build_orchestrator composes a working orchestrator over one session
"""

import pytest

from approval_kernel.domain.workflow import (
    ApprovalAction,
    ApprovalRequestStatus,
    WorkflowOutcome,
)
from approval_kernel.exceptions import EntityNotFoundError
from approval_kernel.services.entity_status import EntityStatusRegistry
from approval_kernel.services.notifications import LoggingNotificationDispatcher
from approval_services.wiring import build_orchestrator

TENANT = "acme"


class TestEntityStatusRegistry:

    def test_dispatches_to_registered_handler(self):
        seen = []
        registry = EntityStatusRegistry({"invoice": lambda eid, outcome: seen.append((eid, outcome))})

        registry.on_workflow_resolved("invoice", "INV-1", WorkflowOutcome.APPROVED)

        assert seen == [("INV-1", WorkflowOutcome.APPROVED)]

    def test_register_adds_entity_type(self):
        registry = EntityStatusRegistry()
        registry.register("bill", lambda eid, outcome: None)
        registry.register("expense", lambda eid, outcome: None)

        assert registry.entity_types == ("bill", "expense")

    def test_unknown_entity_type_is_logged_and_ignored(self, captured_logs):
        registry = EntityStatusRegistry()

        registry.on_workflow_resolved("purchase_order", "PO-7", WorkflowOutcome.REJECTED)

        records = [r for r in captured_logs() if r["message"] == "entity_status_handler_missing"]
        assert len(records) == 1
        assert records[0]["entity_id"] == "PO-7"
        assert records[0]["outcome"] == "rejected"

    def test_handler_error_propagates_through_approval(
        self, make_orchestrator, create_workflow, start_request, add_user, builders,
    ):
        def missing(entity_id, outcome):
            raise EntityNotFoundError("invoice", entity_id)

        add_user("mgr-1", role="manager")
        create_workflow()
        registry = EntityStatusRegistry({"invoice": missing})
        orchestrator = make_orchestrator(entity_status=registry)
        request = start_request().request
        approval = request.approvals[0]

        with pytest.raises(EntityNotFoundError):
            orchestrator.process_approval_action(
                TENANT, approval.approval_id, "mgr-1", ApprovalAction.APPROVE,
            )


class TestLoggingNotificationDispatcher:

    def test_notice_logged_for_each_pending_approval(
        self, make_orchestrator, create_workflow, add_user, captured_logs,
    ):
        add_user("mgr-1", role="manager")
        create_workflow()
        orchestrator = make_orchestrator(notifier=LoggingNotificationDispatcher())

        result = orchestrator.create_approval_request(
            TENANT, "acme-us", "invoice", "INV-2001", "clerk-1", {"amount": 500},
        )

        notices = [r for r in captured_logs() if r["message"] == "approval_notice"]
        assert len(notices) == 1
        assert notices[0]["recipient_id"] == "mgr-1"
        assert notices[0]["recipient_email"] == "mgr-1@example.com"
        assert notices[0]["approval_id"] == str(result.request.approvals[0].approval_id)
        assert notices[0]["is_escalation"] is False


class TestBuildOrchestrator:

    def test_end_to_end_over_sql_directory(
        self, session, create_workflow, add_user, deterministic_clock, entity_status, notifier,
    ):
        add_user("mgr-1", role="manager")
        create_workflow()
        orchestrator = build_orchestrator(
            session,
            clock=deterministic_clock,
            notifier=notifier,
            entity_status=entity_status,
        )

        result = orchestrator.create_approval_request(
            TENANT, "acme-us", "invoice", "INV-3001", "clerk-1", {"amount": 900},
        )
        approval = result.request.approvals[0]
        final = orchestrator.process_approval_action(
            TENANT, approval.approval_id, "mgr-1", ApprovalAction.APPROVE,
        )

        assert final.status == ApprovalRequestStatus.COMPLETED
        assert notifier.recipients == ["mgr-1"]
        assert entity_status.calls == [("invoice", "INV-3001", WorkflowOutcome.APPROVED)]

    def test_without_audit(self, session, create_workflow, add_user, deterministic_clock):
        add_user("mgr-1", role="manager")
        create_workflow()
        orchestrator = build_orchestrator(session, clock=deterministic_clock, audit=False)

        result = orchestrator.create_approval_request(
            TENANT, "acme-us", "invoice", "INV-3002", "clerk-1", {"amount": 900},
        )

        assert result.approval_required is True
        assert result.request.status == ApprovalRequestStatus.PENDING
