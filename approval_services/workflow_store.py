"""
WorkflowDefinitionStore -- owns workflow definitions and selects the one
that applies to a request.

Responsibility:
    Admin path (create, update, deactivate, delete, get, list, import) and
    the runtime read path ``find_applicable``.  Definitions are read-only
    to the orchestrator; only this store writes them.

Architecture position:
    Services layer.  May import from approval_engines/ (condition
    evaluation), approval_config/ (validation) and approval_kernel/.

Invariants enforced:
    - Every stored definition passes ``validate_definition``.
    - ``version`` starts at 1 and increments on every update.
    - A definition referenced by any approval request cannot be deleted
      (deactivate it instead).
    - Selection is deterministic: highest priority, then most specific
      (sub-type and company scoped beats unscoped), then earliest created,
      then name.

Failure modes:
    - WorkflowDefinitionError: invalid definition or duplicate name.
    - WorkflowNotFoundError: unknown id for the tenant.
    - WorkflowInUseError: delete of a referenced definition.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from approval_config.loader import WorkflowFile
from approval_config.validator import validate_definition
from approval_engines.conditions import ConditionEvaluator
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.collaborators import AuditSink
from approval_kernel.domain.serialization import definition_to_dict
from approval_kernel.domain.workflow import WorkflowDefinition
from approval_kernel.exceptions import (
    WorkflowDefinitionError,
    WorkflowInUseError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.utils.hashing import hash_definition
from approval_services._fail_soft import record_audit

logger = get_logger("services.workflow_store")


@dataclass(frozen=True)
class ImportSummary:
    """Outcome of importing a workflow file."""

    created: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()


def _specificity(definition: WorkflowDefinition) -> int:
    return int(definition.entity_sub_type is not None) + int(
        definition.company_id is not None
    )


def _selection_key(definition: WorkflowDefinition):
    # created_at may be None for definitions built in memory
    created = definition.created_at.isoformat() if definition.created_at else ""
    return (-definition.priority, -_specificity(definition), created, definition.name)


class WorkflowDefinitionStore:
    """
    Persistence-backed store of workflow definitions.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        audit: AuditSink | None = None,
        clock: Clock | None = None,
        evaluator: ConditionEvaluator | None = None,
    ):
        self._session = session
        self._audit = audit
        self._clock = clock or SystemClock()
        self._evaluator = evaluator or ConditionEvaluator()

    # =========================================================================
    # Runtime read path
    # =========================================================================

    def find_applicable(
        self,
        tenant_id: str,
        entity_type: str,
        entity_sub_type: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        company_id: str | None = None,
    ) -> WorkflowDefinition | None:
        """
        Select the definition governing a request, or None.

        Active definitions for ``(tenant_id, entity_type)`` whose sub-type
        and company scopes are unset or equal compete.  The best whose
        conditions all hold wins.  Failing that, the best definition flagged
        ``is_default`` applies regardless of its conditions.
        """
        candidates = [
            d for d in self._active_for(tenant_id, entity_type)
            if d.entity_sub_type in (None, entity_sub_type)
            and d.company_id in (None, company_id)
        ]
        candidates.sort(key=_selection_key)

        for definition in candidates:
            if self._evaluator.evaluate(definition.conditions, metadata):
                logger.info(
                    "workflow_selected",
                    extra={
                        "tenant_id": tenant_id,
                        "entity_type": entity_type,
                        "workflow_id": str(definition.workflow_id),
                        "workflow_name": definition.name,
                        "priority": definition.priority,
                    },
                )
                return definition

        for definition in candidates:
            if definition.is_default:
                logger.info(
                    "workflow_default_selected",
                    extra={
                        "tenant_id": tenant_id,
                        "entity_type": entity_type,
                        "workflow_id": str(definition.workflow_id),
                        "workflow_name": definition.name,
                    },
                )
                return definition

        logger.info(
            "workflow_not_applicable",
            extra={
                "tenant_id": tenant_id,
                "entity_type": entity_type,
                "entity_sub_type": entity_sub_type,
                "candidates": len(candidates),
            },
        )
        return None

    def _active_for(self, tenant_id: str, entity_type: str) -> list[WorkflowDefinition]:
        rows = self._session.execute(
            select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.tenant_id == tenant_id,
                WorkflowDefinitionModel.entity_type == entity_type,
                WorkflowDefinitionModel.is_active.is_(True),
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]

    # =========================================================================
    # Admin path
    # =========================================================================

    def get_workflow(self, tenant_id: str, workflow_id: UUID) -> WorkflowDefinition:
        return self._get_model(tenant_id, workflow_id).to_dto()

    def list_workflows(
        self,
        tenant_id: str,
        entity_type: str | None = None,
        include_inactive: bool = False,
    ) -> list[WorkflowDefinition]:
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.tenant_id == tenant_id,
        )
        if entity_type is not None:
            stmt = stmt.where(WorkflowDefinitionModel.entity_type == entity_type)
        if not include_inactive:
            stmt = stmt.where(WorkflowDefinitionModel.is_active.is_(True))
        stmt = stmt.order_by(
            WorkflowDefinitionModel.entity_type,
            WorkflowDefinitionModel.priority.desc(),
            WorkflowDefinitionModel.name,
        )
        return [r.to_dto() for r in self._session.execute(stmt).scalars().all()]

    def create_workflow(
        self,
        definition: WorkflowDefinition,
        actor_id: str,
    ) -> WorkflowDefinition:
        """Validate and store a new definition at version 1."""
        validate_definition(definition)
        if self._find_by_name(definition.tenant_id, definition.name) is not None:
            raise WorkflowDefinitionError(
                definition.name, ["a workflow with this name already exists"],
            )

        model = WorkflowDefinitionModel.from_dto(
            replace(definition, version=1),
            created_by=actor_id,
            created_at=self._clock.now(),
        )
        model.checksum = hash_definition(definition_to_dict(definition))
        self._session.add(model)
        self._session.flush()

        logger.info(
            "workflow_created",
            extra={
                "tenant_id": model.tenant_id,
                "workflow_id": str(model.id),
                "workflow_name": model.name,
                "entity_type": model.entity_type,
                "step_count": len(model.steps),
            },
        )
        self._audit_change(model, actor_id, AuditAction.WORKFLOW_CREATED)
        return model.to_dto()

    def update_workflow(
        self,
        tenant_id: str,
        workflow_id: UUID,
        definition: WorkflowDefinition,
        actor_id: str,
    ) -> WorkflowDefinition:
        """Replace a definition's content and bump its version.

        In-flight requests keep the snapshot they were created with.
        """
        validate_definition(definition)
        model = self._get_model(tenant_id, workflow_id)
        clash = self._find_by_name(tenant_id, definition.name)
        if clash is not None and clash.id != model.id:
            raise WorkflowDefinitionError(
                definition.name, ["a workflow with this name already exists"],
            )

        model.apply_dto(definition)
        model.version = model.version + 1
        model.checksum = hash_definition(definition_to_dict(definition))
        model.updated_by = actor_id
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "workflow_updated",
            extra={
                "tenant_id": tenant_id,
                "workflow_id": str(model.id),
                "version": model.version,
            },
        )
        self._audit_change(model, actor_id, AuditAction.WORKFLOW_UPDATED)
        return model.to_dto()

    def deactivate_workflow(
        self,
        tenant_id: str,
        workflow_id: UUID,
        actor_id: str,
    ) -> WorkflowDefinition:
        model = self._get_model(tenant_id, workflow_id)
        if model.is_active:
            model.is_active = False
            model.updated_by = actor_id
            model.updated_at = self._clock.now()
            self._session.flush()
            logger.info(
                "workflow_deactivated",
                extra={"tenant_id": tenant_id, "workflow_id": str(model.id)},
            )
            self._audit_change(model, actor_id, AuditAction.WORKFLOW_DEACTIVATED)
        return model.to_dto()

    def delete_workflow(
        self,
        tenant_id: str,
        workflow_id: UUID,
        actor_id: str,
    ) -> None:
        """Delete an unreferenced definition.

        Raises:
            WorkflowInUseError: if any approval request references it.
        """
        model = self._get_model(tenant_id, workflow_id)
        in_use = self._session.execute(
            select(func.count())
            .select_from(ApprovalRequestModel)
            .where(ApprovalRequestModel.workflow_id == model.id)
        ).scalar_one()
        if in_use:
            raise WorkflowInUseError(str(model.id), in_use)

        self._audit_change(model, actor_id, AuditAction.WORKFLOW_DELETED)
        self._session.delete(model)
        self._session.flush()
        logger.info(
            "workflow_deleted",
            extra={"tenant_id": tenant_id, "workflow_id": str(workflow_id)},
        )

    def import_workflows(self, workflow_file: WorkflowFile, actor_id: str) -> ImportSummary:
        """Upsert every definition of a loaded YAML file by name.

        Definitions whose content checksum is unchanged are left alone, so
        re-importing the same file is a no-op.
        """
        created: list[str] = []
        updated: list[str] = []
        unchanged: list[str] = []

        for definition in workflow_file.definitions:
            existing = self._find_by_name(workflow_file.tenant_id, definition.name)
            if existing is None:
                self.create_workflow(definition, actor_id)
                created.append(definition.name)
                continue
            checksum = hash_definition(definition_to_dict(definition))
            if existing.checksum == checksum:
                unchanged.append(definition.name)
                continue
            self.update_workflow(workflow_file.tenant_id, existing.id, definition, actor_id)
            updated.append(definition.name)

        logger.info(
            "workflows_imported",
            extra={
                "tenant_id": workflow_file.tenant_id,
                "source": workflow_file.source,
                "checksum": workflow_file.checksum,
                "created_count": len(created),
                "updated_count": len(updated),
                "unchanged_count": len(unchanged),
            },
        )
        return ImportSummary(tuple(created), tuple(updated), tuple(unchanged))

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_model(self, tenant_id: str, workflow_id: UUID) -> WorkflowDefinitionModel:
        model = self._session.execute(
            select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.tenant_id == tenant_id,
                WorkflowDefinitionModel.id == workflow_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise WorkflowNotFoundError(str(workflow_id))
        return model

    def _find_by_name(self, tenant_id: str, name: str) -> WorkflowDefinitionModel | None:
        return self._session.execute(
            select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.tenant_id == tenant_id,
                WorkflowDefinitionModel.name == name,
            )
        ).scalar_one_or_none()

    def _audit_change(
        self,
        model: WorkflowDefinitionModel,
        actor_id: str,
        action: AuditAction,
    ) -> None:
        record_audit(
            self._session,
            self._audit,
            logger,
            tenant_id=model.tenant_id,
            actor_id=actor_id,
            action=action.value,
            metadata={
                "workflow_id": str(model.id),
                "workflow_name": model.name,
                "entity_type": model.entity_type,
                "version": model.version,
                "checksum": model.checksum,
            },
        )
