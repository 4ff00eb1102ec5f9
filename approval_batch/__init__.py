"""
approval_batch -- Time-driven processing for the approval engine.

Provides the escalation sweep: a polling scheduler that finds pending
approvals past their deadline and escalates each through the
orchestrator on behalf of the system.

Architecture:
    approval_batch/ is a top-level package.  Nothing in kernel/,
    engines/, config/ or services/ imports from approval_batch.

Invariants:
    - Eligibility is derived from persisted ``due_at`` timestamps only;
      a restart never loses a pending escalation.
    - SAVEPOINT isolation per approval: one failed escalation never
      rolls back the rest of the sweep.
    - An approval is escalated at most once (the orchestrator's
      compare-and-set moves it out of ``pending``).
    - Graceful shutdown: the stop signal is honoured between items.
"""

from approval_batch.scheduler import EscalationScheduler, SweepResult

__all__ = ["EscalationScheduler", "SweepResult"]
