"""
EscalationScheduler -- In-process polling sweep for overdue approvals.

Contract:
    ``tick(now)`` queries actionable approvals whose ``due_at`` is before
    ``now`` and hands each to ``StepOrchestrator.escalate_overdue``.  It is
    safe to run overlapping or retried sweeps: an approval already moved
    out of ``pending`` is skipped by the orchestrator.

Architecture: approval_batch.  Reads through ApprovalSelector, writes only
    through the orchestrator.

Invariants enforced:
    - All timestamps from the injected Clock.
    - One SAVEPOINT per approval.
    - Approvals the sweep cannot escalate never hide later ones: the queue
      is paged by (due_at, id) past them.
    - ``batch_size`` bounds the escalations per sweep.
    - Graceful shutdown (respects stop signal, completes current item).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_services.orchestrator import StepOrchestrator

logger = get_logger("batch.escalation")


@dataclass(frozen=True)
class SweepResult:
    """Outcome counts for one sweep."""

    examined: int = 0
    escalated: int = 0
    skipped: int = 0
    failed: int = 0


class EscalationScheduler:
    """Polling scheduler that escalates overdue approvals.

    Contract:
        - ``tick()`` runs one sweep and commits it.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Overlapping
          sweeps are safe but do duplicate read work.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        orchestrator_factory: Callable[[Session], StepOrchestrator],
        clock: Clock | None = None,
        tick_interval_seconds: float = 300.0,
        batch_size: int = 100,
        tenant_id: str | None = None,
    ):
        self._session_factory = session_factory
        self._orchestrator_factory = orchestrator_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._batch_size = batch_size
        self._tenant_id = tenant_id
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_result: SweepResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> int:
        """Run one sweep.  Returns the number of approvals escalated."""
        now = now or self._clock.now()
        session = self._session_factory()
        try:
            result = self._sweep(session, now)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("escalation_sweep_failed")
            return 0
        finally:
            session.close()

        self.last_result = result
        logger.info(
            "escalation_sweep_completed",
            extra={
                "examined": result.examined,
                "escalated": result.escalated,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result.escalated

    def start(self) -> None:
        """Start the sweep in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _sweep(self, session: Session, now: datetime) -> SweepResult:
        """Escalate up to ``batch_size`` overdue approvals.

        The overdue queue is read in ``(due_at, id)`` pages.  Approvals that
        are skipped (no escalation target) or fail stay pending with their
        old deadline, so the sweep pages past them instead of re-reading the
        head of the queue.
        """
        selector = ApprovalSelector(session)
        orchestrator = self._orchestrator_factory(session)

        examined = escalated = skipped = failed = 0
        after = None
        while escalated < self._batch_size and not self._stop_event.is_set():
            page = selector.list_overdue_approvals(
                now, tenant_id=self._tenant_id, limit=self._batch_size, after=after,
            )
            for approval in page:
                if self._stop_event.is_set() or escalated >= self._batch_size:
                    break
                examined += 1
                try:
                    with session.begin_nested():
                        request = orchestrator.escalate_overdue(
                            approval.tenant_id, approval.approval_id, now=now,
                        )
                except Exception:
                    failed += 1
                    logger.exception(
                        "escalation_failed",
                        extra={
                            "approval_id": str(approval.approval_id),
                            "request_id": str(approval.request_id),
                        },
                    )
                    continue
                if request is None:
                    skipped += 1
                else:
                    escalated += 1

            if len(page) < self._batch_size:
                break
            after = (page[-1].due_at, page[-1].approval_id)

        return SweepResult(
            examined=examined,
            escalated=escalated,
            skipped=skipped,
            failed=failed,
        )
