"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for workflow edits and
    every approval create/approve/reject/escalate.  Implements the
    ``AuditSink`` protocol consumed by StepOrchestrator, and provides chain
    validation and per-entity trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by WorkflowDefinitionStore
    and StepOrchestrator.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match the stored hash,
      or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import AuditChainBrokenError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction, AuditEvent
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.utils.hashing import hash_audit_event, hash_payload, json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: str
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, in chain order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


def _subject(tenant_id: str, metadata: dict[str, Any]) -> tuple[str, str]:
    """Which entity an audit record is about, derived from its metadata."""
    if metadata.get("approval_id") is not None:
        return "Approval", str(metadata["approval_id"])
    if metadata.get("request_id") is not None:
        return "ApprovalRequest", str(metadata["request_id"])
    if metadata.get("workflow_id") is not None:
        return "WorkflowDefinition", str(metadata["workflow_id"])
    return "Tenant", tenant_id


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Contract:
        ``record(tenant_id, actor_id, action, metadata)`` appends one
        ``AuditEvent`` linked to its predecessor.  The subject entity is
        the approval, else the request, else the workflow named in
        ``metadata``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        action: str,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - ``event.hash == H(entity_type, entity_id, action,
              payload_hash, prev_hash)``.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "action": action,
                "seq": seq,
            },
        )
        return audit_event

    # AuditSink

    def record(
        self,
        tenant_id: str,
        actor_id: str,
        action: str | AuditAction,
        metadata: dict[str, Any],
    ) -> None:
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        entity_type, entity_id = _subject(tenant_id, metadata)
        self._create_audit_event(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action_value,
            actor_id=actor_id,
            payload=metadata,
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id), "None", events[0].prev_hash,
            )

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id), expected_prev, event.prev_hash or "None",
                    )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    # Trace queries

    def get_trace(self, entity_type: str, entity_id: str) -> AuditTrace:
        """All audit events for an entity, in chain order."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

    def get_recent_events(
        self,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        stmt = select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(limit)
        if tenant_id is not None:
            stmt = stmt.where(AuditEvent.tenant_id == tenant_id)
        return list(self._session.execute(stmt).scalars().all())
