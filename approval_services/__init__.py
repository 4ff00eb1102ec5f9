"""
approval_services -- Package init and public API.

Responsibility:
    Stateful approval services that compose the pure routing and condition
    engines (approval_engines/) with database sessions and the kernel's
    persistence, directory and audit infrastructure.

Architecture position:
    Services -- stateful orchestration over engines + config + kernel.

    Dependency direction:
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_config/   (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: approval_kernel and approval_engines never import
      from this package.
    - DI transparency: wiring is centralised in ``build_orchestrator``.
"""

from approval_kernel.logging_config import get_logger

logger = get_logger("services")

from approval_services.approver_resolver import ApproverResolver
from approval_services.orchestrator import StepOrchestrator
from approval_services.wiring import build_orchestrator
from approval_services.workflow_store import ImportSummary, WorkflowDefinitionStore

__all__ = [
    "ApproverResolver",
    "ImportSummary",
    "StepOrchestrator",
    "WorkflowDefinitionStore",
    "build_orchestrator",
]
