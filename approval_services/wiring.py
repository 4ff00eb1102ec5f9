"""
Wiring -- constructs a fully-composed StepOrchestrator for one session.

All service wiring lives here so scripts, the escalation sweep, and tests
build the same object graph.  No service self-constructs its collaborators.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_engines.conditions import ConditionEvaluator
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.collaborators import (
    EntityGuard,
    EntityStatusCallback,
    NotificationDispatcher,
    UserDirectory,
)
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.notifications import LoggingNotificationDispatcher
from approval_kernel.services.user_directory import SqlUserDirectory
from approval_services.approver_resolver import ApproverResolver
from approval_services.orchestrator import StepOrchestrator
from approval_services.workflow_store import WorkflowDefinitionStore


def build_orchestrator(
    session: Session,
    settings: EngineSettings | None = None,
    clock: Clock | None = None,
    notifier: NotificationDispatcher | None = None,
    entity_status: EntityStatusCallback | None = None,
    entity_guard: EntityGuard | None = None,
    directory: UserDirectory | None = None,
    audit: bool = True,
) -> StepOrchestrator:
    """Compose store, resolver and orchestrator over ``session``.

    Defaults: the SQL user directory, the logging notifier, and the
    hash-chained audit trail.  Pass ``audit=False`` to skip auditing.
    """
    clock = clock or SystemClock()
    evaluator = ConditionEvaluator()
    auditor = AuditorService(session, clock) if audit else None
    store = WorkflowDefinitionStore(session, audit=auditor, clock=clock, evaluator=evaluator)
    resolver = ApproverResolver(directory or SqlUserDirectory(session))
    return StepOrchestrator(
        session,
        store,
        resolver,
        clock=clock,
        settings=settings,
        notifier=notifier or LoggingNotificationDispatcher(),
        entity_status=entity_status,
        audit=auditor,
        entity_guard=entity_guard,
        evaluator=evaluator,
    )
