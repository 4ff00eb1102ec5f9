"""
Tests for EscalationScheduler -- the overdue-approval sweep.

Covers:
- Sweep escalates overdue approvals and commits
- Exactly-once: repeated and fresh-instance sweeps never re-escalate
- Approvals not yet due, or without a deadline, are left alone
- Per-approval isolation: one failure does not roll back the others
- Approvals without an escalation target never hide later overdue ones
- Background thread start/stop
"""

import time
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from approval_batch.scheduler import EscalationScheduler
from approval_kernel.domain.workflow import ApprovalRequestStatus
from approval_kernel.models.approval import ApprovalModel, ApprovalRequestModel
from approval_services.wiring import build_orchestrator

TENANT = "acme"


@pytest.fixture
def seeded(session, add_user, create_workflow, start_request, builders):
    """Two requests whose manager approvals fall due after 24h; committed."""
    add_user("mgr-1", role="manager")
    add_user("dir-1", role="director")
    create_workflow(
        steps=(builders.role_step("manager", "manager", escalation_hours=24),),
        escalation_rules=(builders.escalation_rule("manager", "director"),),
    )
    requests = [start_request(entity_id=f"INV-{n}").request for n in range(2)]
    session.commit()
    return requests


@pytest.fixture
def make_scheduler(session_factory, deterministic_clock, settings):

    def _make(orchestrator_factory=None, **kwargs):
        return EscalationScheduler(
            session_factory=session_factory,
            orchestrator_factory=orchestrator_factory or (
                lambda s: build_orchestrator(s, settings=settings, clock=deterministic_clock)
            ),
            clock=deterministic_clock,
            **kwargs,
        )

    return _make


def _escalation_count(session) -> int:
    session.expire_all()
    return session.execute(
        select(func.count()).select_from(ApprovalModel).where(ApprovalModel.is_escalation.is_(True))
    ).scalar_one()


class TestTick:

    def test_nothing_due(self, seeded, make_scheduler, session):
        assert make_scheduler().tick() == 0
        assert _escalation_count(session) == 0

    def test_overdue_approvals_escalated(self, seeded, make_scheduler, deterministic_clock, session):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler()

        assert scheduler.tick() == 2
        assert scheduler.last_result.examined == 2
        assert _escalation_count(session) == 2
        statuses = session.execute(select(ApprovalRequestModel.status)).scalars().all()
        assert set(statuses) == {ApprovalRequestStatus.ESCALATED.value}

    def test_explicit_now(self, seeded, make_scheduler, deterministic_clock):
        later = deterministic_clock.now() + timedelta(hours=30)
        assert make_scheduler().tick(now=later) == 2

    def test_repeated_sweeps_escalate_once(self, seeded, make_scheduler, deterministic_clock,
                                           session):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler()
        assert scheduler.tick() == 2
        assert scheduler.tick() == 0

        deterministic_clock.advance_hours(200)
        assert make_scheduler().tick() == 0
        assert _escalation_count(session) == 2

    def test_fresh_instance_finds_pending_work(self, seeded, make_scheduler, deterministic_clock):
        make_scheduler()
        deterministic_clock.advance_hours(25)
        # Eligibility lives in the database, not in the first instance.
        assert make_scheduler().tick() == 2

    def test_batch_size_limits_one_sweep(self, seeded, make_scheduler, deterministic_clock):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(batch_size=1)
        assert scheduler.tick() == 1
        assert scheduler.tick() == 1
        assert scheduler.tick() == 0

    def test_tenant_filter(self, seeded, make_scheduler, deterministic_clock):
        deterministic_clock.advance_hours(25)
        assert make_scheduler(tenant_id="globex").tick() == 0

    def test_one_failure_does_not_block_the_rest(
        self, seeded, make_scheduler, deterministic_clock, settings, session, captured_logs,
    ):
        poisoned = seeded[0].pending_approvals[0].approval_id

        class Flaky:
            def __init__(self, inner):
                self._inner = inner

            def escalate_overdue(self, tenant_id, approval_id, now=None):
                result = self._inner.escalate_overdue(tenant_id, approval_id, now=now)
                if approval_id == poisoned:
                    raise RuntimeError("directory timeout")
                return result

        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(
            orchestrator_factory=lambda s: Flaky(
                build_orchestrator(s, settings=settings, clock=deterministic_clock)
            ),
        )
        assert scheduler.tick() == 1
        assert scheduler.last_result.failed == 1
        # The failed escalation was rolled back to its savepoint.
        assert _escalation_count(session) == 1
        assert any(r["message"] == "escalation_failed" for r in captured_logs())

    def test_sweep_logged(self, seeded, make_scheduler, deterministic_clock, captured_logs):
        deterministic_clock.advance_hours(25)
        make_scheduler().tick()
        completed = [r for r in captured_logs() if r["message"] == "escalation_sweep_completed"]
        assert completed and completed[-1]["escalated"] == 2


class TestBlockedApprovals:
    """Approvals with no escalation target stay pending at the head of the queue."""

    @pytest.fixture
    def blocked_first(self, session, add_user, create_workflow, start_request, builders):
        add_user("mgr-1", role="manager")
        add_user("dir-1", role="director")
        create_workflow(
            name="Expense approval",
            entity_type="expense",
            steps=(builders.role_step("manager", "manager", escalation_hours=12),),
            escalation_rules=(builders.escalation_rule("manager", "vp"),),
        )
        create_workflow(
            steps=(builders.role_step("manager", "manager", escalation_hours=24),),
            escalation_rules=(builders.escalation_rule("manager", "director"),),
        )
        blocked = start_request(entity_id="EXP-1", entity_type="expense").request
        eligible = start_request(entity_id="INV-1").request
        session.commit()
        return blocked, eligible

    def test_later_approval_escalated_past_blocked_one(
        self, blocked_first, make_scheduler, deterministic_clock, session,
    ):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(batch_size=1)

        assert scheduler.tick() == 1
        assert scheduler.last_result.skipped == 1
        assert scheduler.last_result.examined == 2
        assert _escalation_count(session) == 1

        _, eligible = blocked_first
        escalation = session.execute(
            select(ApprovalModel).where(ApprovalModel.is_escalation.is_(True))
        ).scalar_one()
        assert escalation.request_id == eligible.request_id
        assert escalation.approver_id == "dir-1"

    def test_repeated_sweeps_never_starve(
        self, blocked_first, make_scheduler, deterministic_clock, session,
    ):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(batch_size=1)

        assert [scheduler.tick() for _ in range(3)] == [1, 0, 0]
        assert scheduler.last_result.skipped == 1
        assert _escalation_count(session) == 1

    def test_blocked_approval_escalates_once_target_exists(
        self, blocked_first, make_scheduler, deterministic_clock, session, add_user,
    ):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(batch_size=1)
        scheduler.tick()

        add_user("vp-1", role="vp")
        session.commit()

        assert scheduler.tick() == 1
        assert _escalation_count(session) == 2


class TestBackgroundLoop:

    def test_start_and_stop(self, seeded, make_scheduler, deterministic_clock):
        deterministic_clock.advance_hours(25)
        scheduler = make_scheduler(tick_interval_seconds=60)
        scheduler.start()
        try:
            deadline = time.monotonic() + 5
            while scheduler.last_result is None and time.monotonic() < deadline:
                time.sleep(0.05)
        finally:
            scheduler.stop(timeout=5)

        assert scheduler.last_result.escalated == 2
        assert not scheduler.is_running
