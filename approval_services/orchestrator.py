"""
StepOrchestrator -- the approval state machine.

Responsibility:
    Creates approval requests, activates step orders, applies approve /
    reject / escalate actions, detects completion, and reports the outcome
    to the owning entity.  The only writer of ``ApprovalRequest`` and
    ``Approval`` state.

Architecture position:
    Services layer.  Thin coordinator: step routing and gating math are
    delegated to ``approval_engines.routing``, definition selection to
    WorkflowDefinitionStore, identity resolution to ApproverResolver.

Request lifecycle::

    create --> [auto-approval] ----------------------------> COMPLETED
       |
       v
    PENDING(order k) --approve (order satisfied)--> PENDING(order k+1) ...
       |    ^                                          |
       |    | escalation decided                       +--> COMPLETED
       |    |
       +--> ESCALATED(order k)
       |
       +--reject (required)--> REJECTED

Invariants enforced:
    - Uniqueness: at most one active (pending/escalated) request per entity.
      Checked before insert; a partial unique index catches the race.
    - Ordering: approvals for the next order are created only after the
      current order is satisfied (all required approvals approved under
      ALL_REQUIRED).
    - Rejection terminality: a required rejection ends the request at once.
      Sibling approvals keep their ``pending`` record but are no longer
      actionable because the request is terminal.
    - Compare-and-set: every approval transition is a conditional UPDATE
      ``WHERE decision = 'pending'``.  Losing the race raises
      InvalidTransitionError.  The owning request row is read FOR UPDATE.
    - Stalling: a required step with no resolvable approver leaves the
      request pending at that order with no approvals and a
      ``stalled_reason``.  It is never silently advanced.
    - Escalation approvals carry no deadline, so the sweep escalates any
      approval at most once.

Failure modes:
    - DuplicateActiveRequestError, EntityNotFoundError on creation.
    - ApprovalNotFoundError, InvalidTransitionError,
      UnauthorizedApproverError on actions (surfaced, never retried).
    - NoApproverFoundError on a human escalate with no escalation target.
    - Notification and audit failures are logged and swallowed.
    - Entity-status callback errors propagate so the caller's transaction
      rolls back with them.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_engines.conditions import ConditionEvaluator
from approval_engines.routing import (
    auto_approval_applies,
    compute_due_at,
    first_order,
    next_order,
    order_is_satisfied,
    steps_to_activate,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.collaborators import (
    AuditSink,
    EntityGuard,
    EntityStatusCallback,
    NotificationDispatcher,
)
from approval_kernel.domain.serialization import definition_from_dict, definition_to_dict
from approval_kernel.domain.workflow import (
    ACTIVE_REQUEST_STATUSES,
    SYSTEM_IDENTITY,
    Approval,
    ApprovalAction,
    ApprovalDecision,
    ApprovalNotice,
    ApprovalRequest,
    ApprovalRequestStatus,
    Identity,
    Step,
    WorkflowDefinition,
    WorkflowOutcome,
    WorkflowStartResult,
)
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    ApprovalRequestNotFoundError,
    DuplicateActiveRequestError,
    EntityNotFoundError,
    InvalidTransitionError,
    NoApproverFoundError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import ApprovalModel, ApprovalRequestModel
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.utils.hashing import json_safe
from approval_services._fail_soft import record_audit, send_notification
from approval_services.approver_resolver import ApproverResolver
from approval_services.workflow_store import WorkflowDefinitionStore

logger = get_logger("services.orchestrator")

AUTO_APPROVAL_COMMENT = "Auto-approved based on workflow rules"
AUTO_STEP_COMMENT = "Step auto-approved by workflow configuration"

_ACTIVE = {s.value for s in ACTIVE_REQUEST_STATUSES}


class StepOrchestrator:
    """
    Approval state machine over persisted requests and approvals.

    Contract:
        ``create_approval_request`` never raises resolution errors: a
        missing workflow returns ``approval_required=False`` and a missing
        approver stalls the request.  ``process_approval_action`` surfaces
        every transition error to the caller.
    """

    def __init__(
        self,
        session: Session,
        store: WorkflowDefinitionStore,
        resolver: ApproverResolver,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        notifier: NotificationDispatcher | None = None,
        entity_status: EntityStatusCallback | None = None,
        audit: AuditSink | None = None,
        entity_guard: EntityGuard | None = None,
        evaluator: ConditionEvaluator | None = None,
    ):
        self._session = session
        self._store = store
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._notifier = notifier
        self._entity_status = entity_status
        self._audit = audit
        self._entity_guard = entity_guard
        self._evaluator = evaluator or ConditionEvaluator()
        self._selector = ApprovalSelector(session)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_approval_request(
        self,
        tenant_id: str,
        company_id: str,
        entity_type: str,
        entity_id: str,
        requested_by: str,
        metadata: Mapping[str, Any] | None = None,
        entity_sub_type: str | None = None,
    ) -> WorkflowStartResult:
        """
        Start approval for an entity.

        Returns ``approval_required=False`` when no workflow applies.
        Otherwise the request is auto-approved (completed), active at its
        first order, or stalled.

        Raises:
            DuplicateActiveRequestError: the entity already has an active request.
            EntityNotFoundError: the configured entity guard rejects the id.
        """
        metadata = dict(metadata or {})
        with LogContext.bind(tenant_id=tenant_id, actor_id=requested_by):
            if self._entity_guard is not None and not self._entity_guard(
                tenant_id, entity_type, entity_id,
            ):
                logger.warning(
                    "approval_entity_not_found",
                    extra={"entity_type": entity_type, "entity_id": entity_id},
                )
                raise EntityNotFoundError(entity_type, entity_id)

            existing = self._selector.find_active_request(tenant_id, entity_type, entity_id)
            if existing is not None:
                raise DuplicateActiveRequestError(
                    entity_type, entity_id, str(existing.request_id),
                )

            definition = self._store.find_applicable(
                tenant_id,
                entity_type,
                entity_sub_type=entity_sub_type,
                metadata=metadata,
                company_id=company_id,
            )
            if definition is None:
                logger.info(
                    "approval_not_required",
                    extra={"entity_type": entity_type, "entity_id": entity_id},
                )
                return WorkflowStartResult(
                    approval_required=False,
                    reason=f"No approval workflow applies to {entity_type}",
                )

            now = self._clock.now()
            request = ApprovalRequestModel(
                id=uuid4(),
                tenant_id=tenant_id,
                company_id=company_id,
                entity_type=entity_type,
                entity_sub_type=entity_sub_type,
                entity_id=entity_id,
                workflow_id=definition.workflow_id,
                workflow_version=definition.version,
                definition_snapshot=definition_to_dict(definition),
                current_step_order=first_order(definition) or 0,
                status=ApprovalRequestStatus.PENDING.value,
                requested_by=requested_by,
                request_metadata=json_safe(metadata),
                created_at=now,
            )
            self._insert_request(request)

            with LogContext.bind(request_id=str(request.id)):
                logger.info(
                    "approval_request_created",
                    extra={
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "workflow_id": str(definition.workflow_id),
                        "workflow_version": definition.version,
                    },
                )
                self._audit_request(request, requested_by, AuditAction.APPROVAL_REQUESTED, {
                    "workflow_id": str(definition.workflow_id),
                    "workflow_name": definition.name,
                    "workflow_version": definition.version,
                })

                if auto_approval_applies(
                    definition, metadata, evaluate=self._evaluator_fn,
                ):
                    self._auto_approve(request, definition, now)
                else:
                    self._activate_from(request, definition, request.current_step_order)

                self._session.flush()
                return WorkflowStartResult(
                    approval_required=True,
                    request=request.to_dto(),
                    reason=(
                        "Auto-approved" if request.auto_approved
                        else f"Workflow '{definition.name}' applies"
                    ),
                )

    def _evaluator_fn(self, conditions, metadata) -> bool:
        return self._evaluator.evaluate(conditions, metadata)

    def _insert_request(self, request: ApprovalRequestModel) -> None:
        try:
            with self._session.begin_nested():
                self._session.add(request)
                self._session.flush()
        except IntegrityError:
            # Lost the race against a concurrent creator.
            existing = self._selector.find_active_request(
                request.tenant_id, request.entity_type, request.entity_id,
            )
            raise DuplicateActiveRequestError(
                request.entity_type,
                request.entity_id,
                str(existing.request_id) if existing else "unknown",
            ) from None

    def _auto_approve(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        now: datetime,
    ) -> None:
        order = request.current_step_order
        steps = definition.steps_at(order)
        step = steps[0] if steps else None
        request.approvals.append(
            ApprovalModel(
                id=uuid4(),
                tenant_id=request.tenant_id,
                step_key=step.key if step else "auto-approval",
                step_name=step.name if step else "Auto-approval",
                step_order=order,
                approver_id=SYSTEM_IDENTITY.user_id,
                decision=ApprovalDecision.APPROVED.value,
                is_required=True,
                comments=AUTO_APPROVAL_COMMENT,
                created_at=now,
                processed_at=now,
            )
        )
        request.auto_approved = True
        request.status = ApprovalRequestStatus.COMPLETED.value
        request.resolved_at = now
        self._session.flush()

        logger.info(
            "approval_auto_approved",
            extra={
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "workflow_id": str(definition.workflow_id),
            },
        )
        self._audit_request(
            request, SYSTEM_IDENTITY.user_id, AuditAction.APPROVAL_AUTO_APPROVED,
            {"comments": AUTO_APPROVAL_COMMENT},
        )
        self._resolve_entity(request, WorkflowOutcome.APPROVED)

    # =========================================================================
    # Step activation
    # =========================================================================

    def _activate_from(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        order: int | None,
    ) -> None:
        """Activate ``order`` and keep advancing while orders are already satisfied."""
        while order is not None:
            if not self._activate_order(request, definition, order):
                return
            if not order_is_satisfied(
                self._approvals(request), order, self._settings.parallel_policy,
            ):
                return
            order = next_order(definition, order)
        self._complete(request)

    def _activate_order(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        order: int,
    ) -> bool:
        """Create the approvals for one order.  False if the request stalled.

        Every step is resolved before anything is written, so a stall leaves
        the order with zero approvals.
        """
        metadata = request.request_metadata or {}
        group = definition.steps_at(order)
        plan: list[tuple[Step, Identity]] = []
        failures: list[NoApproverFoundError] = []

        for step in steps_to_activate(definition, order, metadata):
            if step.auto_approve:
                plan.append((step, SYSTEM_IDENTITY))
                continue
            try:
                identities = self._resolver.resolve(
                    step, request.tenant_id, request.company_id, metadata, group=group,
                )
            except NoApproverFoundError as exc:
                if step.is_required:
                    failures.append(exc)
                else:
                    logger.warning(
                        "optional_step_skipped",
                        extra={"step_key": step.key, "reason": str(exc)},
                    )
                continue
            plan.extend((step, identity) for identity in identities)

        request.current_step_order = order
        if failures:
            self._stall(request, order, failures)
            return False

        request.stalled_reason = None
        now = self._clock.now()
        created: list[tuple[ApprovalModel, Identity, Step]] = []
        for step, identity in plan:
            rule = definition.escalation_rule_for(step.key)
            approval = ApprovalModel(
                id=uuid4(),
                tenant_id=request.tenant_id,
                step_key=step.key,
                step_name=step.name,
                step_order=order,
                approver_id=identity.user_id,
                is_required=step.is_required,
                created_at=now,
            )
            if identity.is_system:
                approval.decision = ApprovalDecision.APPROVED.value
                approval.comments = AUTO_STEP_COMMENT
                approval.processed_at = now
            else:
                approval.decision = ApprovalDecision.PENDING.value
                approval.due_at = compute_due_at(now, step, rule)
                created.append((approval, identity, step))
            request.approvals.append(approval)
        self._session.flush()

        logger.info(
            "approval_step_activated",
            extra={
                "step_order": order,
                "pending_approvals": len(created),
                "system_approvals": len(plan) - len(created),
            },
        )
        for approval, identity, step in created:
            rule = definition.escalation_rule_for(step.key)
            self._notify(
                request, approval, identity,
                channels=rule.notification_channels if rule else (),
            )
        return True

    def _stall(
        self,
        request: ApprovalRequestModel,
        order: int,
        failures: list[NoApproverFoundError],
    ) -> None:
        reason = "; ".join(str(f) for f in failures)
        request.stalled_reason = reason
        request.updated_at = self._clock.now()
        self._session.flush()
        logger.error(
            "approval_stalled",
            extra={
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "step_order": order,
                "step_keys": [f.step_key for f in failures],
                "reason": reason,
            },
        )
        self._audit_request(
            request, SYSTEM_IDENTITY.user_id, AuditAction.APPROVAL_STALLED,
            {"step_order": order, "reason": reason},
        )

    def _complete(self, request: ApprovalRequestModel) -> None:
        now = self._clock.now()
        request.status = ApprovalRequestStatus.COMPLETED.value
        request.resolved_at = now
        request.updated_at = now
        self._session.flush()
        logger.info(
            "approval_request_completed",
            extra={"entity_type": request.entity_type, "entity_id": request.entity_id},
        )
        self._audit_request(request, SYSTEM_IDENTITY.user_id, AuditAction.REQUEST_COMPLETED, {})
        self._resolve_entity(request, WorkflowOutcome.APPROVED)

    # =========================================================================
    # Actions
    # =========================================================================

    def process_approval_action(
        self,
        tenant_id: str,
        approval_id: UUID,
        assignee_id: str,
        action: ApprovalAction | str,
        comments: str | None = None,
        escalation_reason: str | None = None,
    ) -> ApprovalRequest:
        """
        Apply an assignee's decision to a pending approval.

        Raises:
            ApprovalNotFoundError: unknown approval for the tenant.
            InvalidTransitionError: approval already decided, request
                terminal, or approval not at the request's current order.
            UnauthorizedApproverError: ``assignee_id`` is not the approver.
            NoApproverFoundError: escalate with no resolvable target.
        """
        action = ApprovalAction(action)
        with LogContext.bind(
            tenant_id=tenant_id, actor_id=assignee_id, approval_id=str(approval_id),
        ):
            approval, request = self._load_for_action(tenant_id, approval_id)
            if approval.approver_id != assignee_id:
                logger.warning(
                    "approval_unauthorized",
                    extra={"approver_id": approval.approver_id},
                )
                raise UnauthorizedApproverError(str(approval_id), assignee_id)

            with LogContext.bind(request_id=str(request.id)):
                definition = self._snapshot(request)
                if action == ApprovalAction.APPROVE:
                    self._approve(request, definition, approval, assignee_id, comments)
                elif action == ApprovalAction.REJECT:
                    self._reject(request, approval, assignee_id, comments)
                else:
                    target = self._escalation_target(request, definition, approval)
                    self._escalate(
                        request, definition, approval, target,
                        actor_id=assignee_id,
                        comments=comments,
                        escalation_reason=escalation_reason,
                    )
                self._session.flush()
                return request.to_dto()

    def _load_for_action(
        self,
        tenant_id: str,
        approval_id: UUID,
    ) -> tuple[ApprovalModel, ApprovalRequestModel]:
        approval = self._session.execute(
            select(ApprovalModel).where(
                ApprovalModel.tenant_id == tenant_id,
                ApprovalModel.id == approval_id,
            )
        ).scalar_one_or_none()
        if approval is None:
            raise ApprovalNotFoundError(str(approval_id))

        request = self._lock_request(tenant_id, approval.request_id)
        self._session.refresh(approval)
        self._ensure_actionable(approval, request)
        return approval, request

    def _lock_request(self, tenant_id: str, request_id: UUID) -> ApprovalRequestModel:
        request = self._session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.tenant_id == tenant_id,
                ApprovalRequestModel.id == request_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    @staticmethod
    def _ensure_actionable(approval: ApprovalModel, request: ApprovalRequestModel) -> None:
        if approval.decision != ApprovalDecision.PENDING.value:
            raise InvalidTransitionError(
                str(approval.id), approval.decision, "approval already decided",
            )
        if request.status not in _ACTIVE:
            raise InvalidTransitionError(
                str(approval.id), approval.decision,
                f"request is {request.status}",
            )
        if approval.step_order != request.current_step_order:
            raise InvalidTransitionError(
                str(approval.id), approval.decision,
                "approval is not at the request's current step",
            )

    def _decide(
        self,
        approval: ApprovalModel,
        decision: ApprovalDecision,
        comments: str | None,
        escalation_reason: str | None = None,
    ) -> None:
        """Compare-and-set ``pending -> decision``.  Single writer wins."""
        result = self._session.execute(
            update(ApprovalModel)
            .where(
                ApprovalModel.id == approval.id,
                ApprovalModel.decision == ApprovalDecision.PENDING.value,
            )
            .values(
                decision=decision.value,
                comments=comments,
                escalation_reason=escalation_reason,
                processed_at=self._clock.now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self._session.refresh(approval)
            logger.warning(
                "approval_transition_conflict",
                extra={"attempted": decision.value, "current": approval.decision},
            )
            raise InvalidTransitionError(
                str(approval.id), approval.decision, "approval was decided concurrently",
            )

    def _approve(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        approval: ApprovalModel,
        actor_id: str,
        comments: str | None,
    ) -> None:
        self._decide(approval, ApprovalDecision.APPROVED, comments)
        logger.info(
            "approval_granted",
            extra={"step_key": approval.step_key, "step_order": approval.step_order},
        )
        self._audit_approval(request, approval, actor_id, AuditAction.APPROVAL_GRANTED, comments)

        order = request.current_step_order
        self._settle_escalation_status(request, order)
        if order_is_satisfied(self._approvals(request), order, self._settings.parallel_policy):
            self._activate_from(request, definition, next_order(definition, order))
        else:
            request.updated_at = self._clock.now()

    def _reject(
        self,
        request: ApprovalRequestModel,
        approval: ApprovalModel,
        actor_id: str,
        comments: str | None,
    ) -> None:
        self._decide(approval, ApprovalDecision.REJECTED, comments)
        self._audit_approval(request, approval, actor_id, AuditAction.APPROVAL_REJECTED, comments)

        if not approval.is_required:
            logger.info(
                "optional_approval_rejected",
                extra={"step_key": approval.step_key},
            )
            self._settle_escalation_status(request, request.current_step_order)
            return

        now = self._clock.now()
        request.status = ApprovalRequestStatus.REJECTED.value
        request.resolved_at = now
        request.updated_at = now
        self._session.flush()
        logger.info(
            "approval_request_rejected",
            extra={
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "step_key": approval.step_key,
                "open_siblings": sum(
                    1 for a in request.approvals
                    if a.decision == ApprovalDecision.PENDING.value
                ),
            },
        )
        self._resolve_entity(request, WorkflowOutcome.REJECTED)

    def _settle_escalation_status(self, request: ApprovalRequestModel, order: int) -> None:
        """ESCALATED -> PENDING once no escalation approval at ``order`` is open."""
        if request.status != ApprovalRequestStatus.ESCALATED.value:
            return
        open_escalations = any(
            a.is_escalation
            and a.step_order == order
            and a.decision == ApprovalDecision.PENDING.value
            for a in request.approvals
        )
        if not open_escalations:
            request.status = ApprovalRequestStatus.PENDING.value
            self._session.flush()

    # =========================================================================
    # Escalation
    # =========================================================================

    def escalate_overdue(
        self,
        tenant_id: str,
        approval_id: UUID,
        now: datetime | None = None,
    ) -> ApprovalRequest | None:
        """
        System-initiated escalation of an approval past its deadline.

        Returns None, without changes, when the approval is no longer
        eligible (already decided, request inactive, deadline not passed)
        or when no escalation target resolves.  Idempotent.
        """
        now = now or self._clock.now()
        with LogContext.bind(
            tenant_id=tenant_id,
            actor_id=SYSTEM_IDENTITY.user_id,
            approval_id=str(approval_id),
        ):
            try:
                approval, request = self._load_for_action(tenant_id, approval_id)
            except InvalidTransitionError as exc:
                logger.info("escalation_skipped", extra={"reason": exc.reason})
                return None
            if approval.due_at is None or not approval.due_at < now:
                logger.info("escalation_skipped", extra={"reason": "not overdue"})
                return None

            with LogContext.bind(request_id=str(request.id)):
                definition = self._snapshot(request)
                try:
                    target = self._escalation_target(request, definition, approval)
                except NoApproverFoundError as exc:
                    logger.error(
                        "escalation_target_missing",
                        extra={"step_key": approval.step_key, "reason": str(exc)},
                    )
                    return None

                overdue_hours = round(
                    (now - approval.created_at).total_seconds() / 3600, 2,
                )
                self._escalate(
                    request, definition, approval, target,
                    actor_id=SYSTEM_IDENTITY.user_id,
                    comments=None,
                    escalation_reason=(
                        f"No decision within the step's escalation window "
                        f"({overdue_hours}h since assignment)"
                    ),
                )
                self._session.flush()
                return request.to_dto()

    def _escalation_target(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        approval: ApprovalModel,
    ) -> Identity:
        rule = definition.escalation_rule_for(approval.step_key)
        role = rule.escalate_to_role if rule else self._settings.default_escalation_role
        identity = self._resolver.resolve_role(request.tenant_id, request.company_id, role)
        if identity is None:
            raise NoApproverFoundError(approval.step_key, "escalation", role)
        return identity

    def _escalate(
        self,
        request: ApprovalRequestModel,
        definition: WorkflowDefinition,
        approval: ApprovalModel,
        target: Identity,
        actor_id: str,
        comments: str | None,
        escalation_reason: str | None,
    ) -> None:
        self._decide(approval, ApprovalDecision.ESCALATED, comments, escalation_reason)

        escalation = ApprovalModel(
            id=uuid4(),
            tenant_id=request.tenant_id,
            step_key=approval.step_key,
            step_name=approval.step_name,
            step_order=approval.step_order,
            approver_id=target.user_id,
            decision=ApprovalDecision.PENDING.value,
            is_required=approval.is_required,
            is_escalation=True,
            escalated_from_id=approval.id,
            escalation_reason=escalation_reason,
            created_at=self._clock.now(),
        )
        request.approvals.append(escalation)
        request.status = ApprovalRequestStatus.ESCALATED.value
        request.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "approval_escalated",
            extra={
                "step_key": approval.step_key,
                "from_approver": approval.approver_id,
                "to_approver": target.user_id,
                "escalation_approval_id": str(escalation.id),
            },
        )
        self._audit_approval(
            request, approval, actor_id, AuditAction.APPROVAL_ESCALATED, comments,
            extra={
                "escalated_to": target.user_id,
                "escalation_approval_id": str(escalation.id),
                "escalation_reason": escalation_reason,
            },
        )
        rule = definition.escalation_rule_for(approval.step_key)
        self._notify(
            request, escalation, target,
            channels=rule.notification_channels if rule else (),
        )

    # =========================================================================
    # Operator recovery
    # =========================================================================

    def retry_stalled_request(
        self,
        tenant_id: str,
        request_id: UUID,
        actor_id: str,
        refresh_definition: bool = False,
    ) -> ApprovalRequest:
        """
        Re-run activation of a stalled request's current order.

        With ``refresh_definition`` the request first re-snapshots the
        latest version of its workflow.  If resolution still fails the
        request stays stalled with an updated reason.

        Raises:
            ApprovalRequestNotFoundError: unknown request for the tenant.
            InvalidTransitionError: the request is terminal or not stalled.
        """
        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id, request_id=str(request_id)):
            request = self._lock_request(tenant_id, request_id)
            if request.status not in _ACTIVE or request.stalled_reason is None:
                raise InvalidTransitionError(
                    str(request_id), request.status, "request is not stalled",
                )

            if refresh_definition:
                latest = self._store.get_workflow(tenant_id, request.workflow_id)
                request.definition_snapshot = definition_to_dict(latest)
                request.workflow_version = latest.version

            logger.info(
                "stalled_request_retry",
                extra={"step_order": request.current_step_order},
            )
            self._activate_from(request, self._snapshot(request), request.current_step_order)
            self._session.flush()
            return request.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def list_pending_approvals(self, tenant_id: str, assignee_id: str) -> list[Approval]:
        """Actionable approvals assigned to ``assignee_id``."""
        return self._selector.list_pending_approvals(tenant_id, assignee_id)

    def get_request(self, tenant_id: str, request_id: UUID) -> ApprovalRequest:
        request = self._selector.get_request(tenant_id, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _snapshot(request: ApprovalRequestModel) -> WorkflowDefinition:
        return definition_from_dict(request.definition_snapshot)

    @staticmethod
    def _approvals(request: ApprovalRequestModel) -> list[Approval]:
        return [a.to_dto() for a in request.approvals]

    def _notify(
        self,
        request: ApprovalRequestModel,
        approval: ApprovalModel,
        identity: Identity,
        channels: tuple[str, ...] = (),
    ) -> None:
        send_notification(
            self._notifier,
            logger,
            identity,
            ApprovalNotice(
                tenant_id=request.tenant_id,
                entity_type=request.entity_type,
                entity_id=request.entity_id,
                request_id=request.id,
                approval_id=approval.id,
                step_name=approval.step_name,
                due_by=approval.due_at,
                is_escalation=approval.is_escalation,
                notification_channels=tuple(channels),
            ),
        )

    def _resolve_entity(self, request: ApprovalRequestModel, outcome: WorkflowOutcome) -> None:
        if self._entity_status is None:
            return
        self._entity_status.on_workflow_resolved(
            request.entity_type, request.entity_id, outcome,
        )

    def _audit_request(
        self,
        request: ApprovalRequestModel,
        actor_id: str,
        action: AuditAction,
        extra: dict[str, Any],
    ) -> None:
        record_audit(
            self._session,
            self._audit,
            logger,
            tenant_id=request.tenant_id,
            actor_id=actor_id,
            action=action.value,
            metadata={
                "request_id": str(request.id),
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "status": request.status,
                "step_order": request.current_step_order,
                **extra,
            },
        )

    def _audit_approval(
        self,
        request: ApprovalRequestModel,
        approval: ApprovalModel,
        actor_id: str,
        action: AuditAction,
        comments: str | None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        record_audit(
            self._session,
            self._audit,
            logger,
            tenant_id=request.tenant_id,
            actor_id=actor_id,
            action=action.value,
            metadata={
                "approval_id": str(approval.id),
                "request_id": str(request.id),
                "entity_type": request.entity_type,
                "entity_id": request.entity_id,
                "step_key": approval.step_key,
                "step_order": approval.step_order,
                "comments": comments,
                **(extra or {}),
            },
        )
