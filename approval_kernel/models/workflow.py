"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for tenant-authored workflow definitions.

Architecture position: Kernel > Models.  May import from db/base.py and
    the pure domain layer only.

Invariants enforced:
    - (tenant_id, name) is unique.
    - Steps, conditions, and escalation rules are JSON documents at rest and
      typed records at the boundary (``to_dto``).  No engine code reads the
      JSON columns directly.
    - ``version`` increments on every edit; in-flight requests keep the
      snapshot taken when they were created.

Audit relevance:
    Create/update/deactivate/delete are audited by WorkflowDefinitionStore.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base

if TYPE_CHECKING:
    from approval_kernel.domain.workflow import WorkflowDefinition


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition (``approval_workflows``)."""

    __tablename__ = "approval_workflows"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_approval_workflows_name"),
        Index(
            "ix_approval_workflows_lookup",
            "tenant_id", "entity_type", "is_active",
        ),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    auto_approval_conditions: Mapped[list] = mapped_column(
        JSON, nullable=False, default=list,
    )
    escalation_rules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    auto_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    priority: Mapped[int] = mapped_column(default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    version: Mapped[int] = mapped_column(default=1, nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.name} {self.entity_type} "
            f"v{self.version} active={self.is_active}>"
        )

    def to_dto(self) -> WorkflowDefinition:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.serialization import (
            condition_from_dict,
            escalation_rule_from_dict,
            step_from_dict,
        )
        from approval_kernel.domain.workflow import WorkflowDefinition

        return WorkflowDefinition(
            workflow_id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            description=self.description,
            entity_type=self.entity_type,
            entity_sub_type=self.entity_sub_type,
            company_id=self.company_id,
            steps=tuple(step_from_dict(s, i) for i, s in enumerate(self.steps or ())),
            conditions=tuple(condition_from_dict(c) for c in self.conditions or ()),
            auto_approval=self.auto_approval,
            auto_approval_conditions=tuple(
                condition_from_dict(c) for c in self.auto_approval_conditions or ()
            ),
            escalation_rules=tuple(
                escalation_rule_from_dict(r) for r in self.escalation_rules or ()
            ),
            priority=self.priority,
            is_active=self.is_active,
            is_default=self.is_default,
            version=self.version,
            created_at=self.created_at,
        )

    def apply_dto(self, dto: WorkflowDefinition) -> None:
        """Copy the editable fields of ``dto`` onto this row."""
        from approval_kernel.domain.serialization import (
            condition_to_dict,
            escalation_rule_to_dict,
            step_to_dict,
        )

        self.name = dto.name
        self.description = dto.description
        self.entity_type = dto.entity_type
        self.entity_sub_type = dto.entity_sub_type
        self.company_id = dto.company_id
        self.steps = [step_to_dict(s) for s in dto.steps]
        self.conditions = [condition_to_dict(c) for c in dto.conditions]
        self.auto_approval_conditions = [
            condition_to_dict(c) for c in dto.auto_approval_conditions
        ]
        self.escalation_rules = [escalation_rule_to_dict(r) for r in dto.escalation_rules]
        self.auto_approval = dto.auto_approval
        self.priority = dto.priority
        self.is_active = dto.is_active
        self.is_default = dto.is_default

    @classmethod
    def from_dto(
        cls,
        dto: WorkflowDefinition,
        created_by: str,
        created_at: datetime,
    ) -> WorkflowDefinitionModel:
        """Create ORM model from domain DTO."""
        model = cls(
            tenant_id=dto.tenant_id,
            version=dto.version,
            created_by=created_by,
            created_at=created_at,
        )
        if dto.workflow_id is not None:
            model.id = dto.workflow_id
        model.apply_dto(dto)
        return model
