"""
EntityStatusRegistry -- per-entity-type outcome handlers.

Responsibility:
    Implements the ``EntityStatusCallback`` the orchestrator invokes when a
    request resolves.  The host application registers one handler per
    entity type (journal_entry, invoice, purchase_order, expense, bill ...)
    that flips the foreign record to its approved/rejected state.

Failure modes:
    - Unknown entity types are logged and ignored.
    - Handlers may raise EntityNotFoundError; it propagates to the caller of
      the approval action so the transition rolls back with it.
"""

from __future__ import annotations

from typing import Callable

from approval_kernel.domain.workflow import WorkflowOutcome
from approval_kernel.logging_config import get_logger

logger = get_logger("services.entity_status")

EntityStatusHandler = Callable[[str, WorkflowOutcome], None]


class EntityStatusRegistry:
    """Dispatches ``on_workflow_resolved`` to the handler for the entity type."""

    def __init__(self, handlers: dict[str, EntityStatusHandler] | None = None):
        self._handlers: dict[str, EntityStatusHandler] = dict(handlers or {})

    def register(self, entity_type: str, handler: EntityStatusHandler) -> None:
        self._handlers[entity_type] = handler

    @property
    def entity_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def on_workflow_resolved(
        self,
        entity_type: str,
        entity_id: str,
        outcome: WorkflowOutcome,
    ) -> None:
        handler = self._handlers.get(entity_type)
        if handler is None:
            logger.warning(
                "entity_status_handler_missing",
                extra={
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "outcome": outcome.value,
                },
            )
            return
        handler(entity_id, outcome)
        logger.info(
            "entity_status_updated",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "outcome": outcome.value,
            },
        )
