"""
ApproverResolver -- maps a workflow step to the concrete identity who must act.

Responsibility:
    Given a ``Step`` and tenant/company context, resolve the active user
    who owns the resulting approval, read through a ``UserDirectory``
    (``approval_kernel.services.user_directory.SqlUserDirectory`` in
    production).

Architecture position:
    Services layer.  May import from approval_engines/ (pure engines) and
    approval_kernel/ (domain, services).  Reads only; never writes approval
    state.

Invariants enforced:
    - Determinism: when several active users match, the earliest-created
      wins, ties broken by user id.  Same inputs, same approver.
    - The system identity is never resolvable.  A ``user`` step naming
      ``"system"`` fails like any unknown user.
    - Amount brackets: an amount_based step resolves through the bracket
      selected from its order group (greatest threshold <= amount), by the
      bracket step's ``role``.

Failure modes:
    - NoApproverFoundError when no active identity matches.  The
      orchestrator decides whether that stalls the request.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from approval_engines.routing import request_amount, select_amount_bracket
from approval_kernel.domain.collaborators import UserDirectory
from approval_kernel.domain.workflow import (
    SYSTEM_ACTOR_ID,
    ApproverType,
    Identity,
    Step,
)
from approval_kernel.exceptions import NoApproverFoundError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.approver_resolver")


class ApproverResolver:
    """
    Resolve the identity (or identities) who must act on a step.

    Contract:
        ``resolve`` returns a non-empty tuple or raises NoApproverFoundError.
        Every strategy currently yields exactly one identity.
    """

    def __init__(self, directory: UserDirectory):
        self._directory = directory

    def resolve(
        self,
        step: Step,
        tenant_id: str,
        company_id: str | None,
        metadata: Mapping[str, Any] | None = None,
        group: Sequence[Step] | None = None,
    ) -> tuple[Identity, ...]:
        """Resolve ``step`` to its approver(s).

        ``group`` is the set of steps sharing ``step.order``; it is only
        consulted for amount_based steps (defaults to ``(step,)``).
        """
        if step.approver_type == ApproverType.ROLE:
            found = self._by_role(tenant_id, company_id, step.role)
        elif step.approver_type == ApproverType.USER:
            found = self._by_user(tenant_id, step.user_id)
        elif step.approver_type == ApproverType.DEPARTMENT:
            found = self._by_department(tenant_id, company_id, step.department)
        else:
            bracket = select_amount_bracket(
                steps=tuple(group) if group else (step,),
                amount=request_amount(metadata),
            )
            found = (
                self._by_role(tenant_id, company_id, bracket.role)
                if bracket is not None else None
            )

        if found is None:
            logger.warning(
                "approver_not_found",
                extra={
                    "tenant_id": tenant_id,
                    "company_id": company_id,
                    "step_key": step.key,
                    "approver_type": step.approver_type.value,
                    "selector": step.selector,
                },
            )
            raise NoApproverFoundError(
                step.key, step.approver_type.value, step.selector,
            )

        logger.debug(
            "approver_resolved",
            extra={
                "step_key": step.key,
                "approver_type": step.approver_type.value,
                "approver_id": found.user_id,
            },
        )
        return (found,)

    def resolve_role(
        self,
        tenant_id: str,
        company_id: str | None,
        role: str,
    ) -> Identity | None:
        """Earliest-created active holder of ``role`` (escalation targets)."""
        return self._by_role(tenant_id, company_id, role)

    # Strategies

    def _by_role(
        self,
        tenant_id: str,
        company_id: str | None,
        role: str | None,
    ) -> Identity | None:
        if not role:
            return None
        return _first_human(self._directory.find_by_role(tenant_id, company_id, role))

    def _by_user(self, tenant_id: str, user_id: str | None) -> Identity | None:
        if not user_id or user_id == SYSTEM_ACTOR_ID:
            return None
        return self._directory.get_active_user(tenant_id, user_id)

    def _by_department(
        self,
        tenant_id: str,
        company_id: str | None,
        department: str | None,
    ) -> Identity | None:
        if not department:
            return None
        head = _first_human(
            self._directory.find_by_department(
                tenant_id, company_id, department, heads_only=True,
            )
        )
        if head is not None:
            return head
        return _first_human(
            self._directory.find_by_department(tenant_id, company_id, department)
        )


def _first_human(identities: Sequence[Identity]) -> Identity | None:
    for identity in identities:
        if not identity.is_system and identity.user_id != SYSTEM_ACTOR_ID:
            return identity
    return None
