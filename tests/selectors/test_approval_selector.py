"""
Tests for ApprovalSelector -- the approval read side.

Covers:
- Inbox: only actionable approvals, oldest first, company filter
- Overdue queue: strict deadline comparison, tenant filter, limit
- Entity history and stalled-request queue
- Dashboard statistics, pending counted as the inboxes see it
"""

from datetime import timedelta

import pytest

from approval_config.settings import EngineSettings
from approval_kernel.domain.workflow import (
    ApprovalAction,
    ApprovalRequestStatus,
    ParallelApprovalPolicy,
)
from approval_kernel.selectors.approval_selector import ApprovalSelector

TENANT = "acme"


@pytest.fixture
def selector(session):
    return ApprovalSelector(session)


@pytest.fixture
def timed_workflow(add_user, create_workflow, builders):
    add_user("mgr-1", role="manager")
    add_user("cfo-1", role="cfo")
    return create_workflow(steps=(
        builders.role_step("manager", "manager", order=0, escalation_hours=24),
        builders.role_step("cfo", "cfo", order=1),
    ))


class TestInbox:

    def test_lists_actionable_approvals_oldest_first(
        self, timed_workflow, start_request, selector, deterministic_clock,
    ):
        first = start_request(entity_id="INV-1").request
        deterministic_clock.advance(60)
        second = start_request(entity_id="INV-2").request

        inbox = selector.list_pending_approvals(TENANT, "mgr-1")
        assert [a.request_id for a in inbox] == [first.request_id, second.request_id]

    def test_later_order_absent_until_reached(self, timed_workflow, start_request, selector):
        start_request()
        assert selector.list_pending_approvals(TENANT, "cfo-1") == []

    def test_company_filter(self, timed_workflow, start_request, selector):
        start_request(entity_id="INV-1")
        assert selector.list_pending_approvals(TENANT, "mgr-1", company_id="acme-eu") == []
        assert len(selector.list_pending_approvals(TENANT, "mgr-1", company_id="acme-us")) == 1


class TestOverdueQueue:

    def test_strictly_after_due(self, timed_workflow, start_request, selector, deterministic_clock):
        start_request()
        due = deterministic_clock.now() + timedelta(hours=24)
        assert selector.list_overdue_approvals(due) == []
        assert len(selector.list_overdue_approvals(due + timedelta(seconds=1))) == 1

    def test_steps_without_deadline_never_listed(
        self, timed_workflow, start_request, orchestrator, selector, deterministic_clock,
    ):
        request = start_request().request
        orchestrator.process_approval_action(
            TENANT, request.pending_approvals[0].approval_id, "mgr-1", ApprovalAction.APPROVE,
        )
        far_future = deterministic_clock.now() + timedelta(days=365)
        assert selector.list_overdue_approvals(far_future) == []

    def test_limit_and_tenant_filter(self, timed_workflow, start_request, selector,
                                     deterministic_clock):
        for n in range(3):
            start_request(entity_id=f"INV-{n}")
        later = deterministic_clock.now() + timedelta(days=2)
        assert len(selector.list_overdue_approvals(later, limit=2)) == 2
        assert selector.list_overdue_approvals(later, tenant_id="globex") == []

    def test_keyset_pages_cover_queue_once(self, timed_workflow, start_request, selector,
                                           deterministic_clock):
        for n in range(3):
            start_request(entity_id=f"INV-{n}")
            deterministic_clock.advance(60)
        later = deterministic_clock.now() + timedelta(days=2)
        everything = selector.list_overdue_approvals(later)

        first = selector.list_overdue_approvals(later, limit=2)
        rest = selector.list_overdue_approvals(
            later, limit=2, after=(first[-1].due_at, first[-1].approval_id),
        )
        assert [a.approval_id for a in first + rest] == [a.approval_id for a in everything]
        assert len(rest) == 1


class TestHistoryAndStalls:

    def test_history_for_entity(self, timed_workflow, start_request, orchestrator, selector,
                                deterministic_clock):
        request = start_request().request
        orchestrator.process_approval_action(
            TENANT, request.pending_approvals[0].approval_id, "mgr-1", ApprovalAction.REJECT,
        )
        deterministic_clock.advance(60)
        start_request()
        history = selector.list_requests_for_entity(TENANT, "invoice", "INV-1001")
        assert [r.status for r in history] == [
            ApprovalRequestStatus.REJECTED, ApprovalRequestStatus.PENDING,
        ]

    def test_stalled_queue(self, create_workflow, start_request, selector):
        create_workflow()
        stalled = start_request().request
        assert [r.request_id for r in selector.list_stalled_requests(TENANT)] == [stalled.request_id]

    def test_find_active_request(self, timed_workflow, start_request, selector):
        request = start_request().request
        found = selector.find_active_request(TENANT, "invoice", "INV-1001")
        assert found.request_id == request.request_id
        assert selector.find_active_request(TENANT, "invoice", "INV-9") is None


class TestStatistics:

    def test_counts(self, timed_workflow, create_workflow, start_request, orchestrator, selector,
                    builders):
        create_workflow(name="POs", entity_type="purchase_order",
                        steps=(builders.role_step("buyer", "buyer"),))
        approved = start_request(entity_id="INV-1").request
        orchestrator.process_approval_action(
            TENANT, approved.pending_approvals[0].approval_id, "mgr-1", ApprovalAction.APPROVE,
        )
        start_request(entity_id="INV-2")
        start_request(entity_id="PO-1", entity_type="purchase_order")

        stats = selector.get_statistics(TENANT)
        assert stats.approved == 1
        assert stats.pending == 2
        assert stats.rejected == 0
        assert stats.requests_by_status["pending"] == 3
        assert stats.requests_by_status["completed"] == 0
        assert stats.stalled_requests == 1

    @pytest.mark.parametrize("policy, action", [
        (ParallelApprovalPolicy.ALL_REQUIRED, ApprovalAction.REJECT),
        (ParallelApprovalPolicy.FIRST_RESPONSE, ApprovalAction.APPROVE),
    ])
    def test_inert_siblings_not_counted_pending(
        self, timed_workflow, create_workflow, start_request, make_orchestrator, selector,
        builders, policy, action,
    ):
        create_workflow(name="Bills", entity_type="bill", steps=(
            builders.role_step("manager", "manager"),
            builders.role_step("cfo", "cfo"),
        ))
        orchestrator = make_orchestrator(settings=EngineSettings(parallel_policy=policy))
        request = orchestrator.create_approval_request(
            TENANT, "acme-us", "bill", "BILL-1", "clerk-1", {"amount": 100},
        ).request
        manager = next(a for a in request.pending_approvals if a.approver_id == "mgr-1")
        orchestrator.process_approval_action(TENANT, manager.approval_id, "mgr-1", action)

        stats = selector.get_statistics(TENANT)
        assert stats.pending == 0
        assert selector.list_pending_approvals(TENANT, "cfo-1") == []
