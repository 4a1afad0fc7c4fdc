"""
Module: workflow_kernel.models.template
Responsibility: ORM persistence for workflow templates and their ordered steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Template names are globally unique.
    - At most one active template per module (partial unique index).
    - Step numbers are unique within a template; each step carries exactly
      one of required_role / assigned_user_id; an escalation role needs a
      timeout.  These CHECKs back up WorkflowValidator, which is the
      gate every write goes through.

Failure modes:
    - IntegrityError on duplicate name, a second active template for a
      module, or a duplicate step number.

Audit relevance:
    Templates are edited in place.  Running instances never read these
    rows after start; they carry their own snapshot (models.instance).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.domain.workflow import StepDefinition, WorkflowTemplate


class WorkflowTemplateModel(Base):
    """Persistent workflow template.

    Contract:
        ``steps`` is always ordered by step number.  Deleting a template is
        a deactivation (``is_active = False``); rows are never removed by
        the services.
    """

    __tablename__ = "workflow_templates"

    __table_args__ = (
        UniqueConstraint("name", name="uq_workflow_templates_name"),
        Index(
            "ix_workflow_templates_one_active_per_module",
            "module",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_workflow_templates_module", "module", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    steps: Mapped[list[WorkflowStepModel]] = relationship(
        "WorkflowStepModel",
        back_populates="template",
        order_by="WorkflowStepModel.step_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowTemplate {self.name!r} module={self.module} "
            f"active={self.is_active} steps={len(self.steps)}>"
        )

    def to_dto(self) -> WorkflowTemplate:
        """Convert ORM model to frozen domain DTO."""
        return WorkflowTemplate(
            template_id=self.id,
            name=self.name,
            module=self.module,
            is_active=self.is_active,
            steps=tuple(s.to_definition() for s in self.steps),
            description=self.description,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class WorkflowStepModel(Base):
    """One ordered step of a template."""

    __tablename__ = "workflow_steps"

    __table_args__ = (
        UniqueConstraint(
            "template_id", "step_number",
            name="uq_workflow_steps_template_step",
        ),
        CheckConstraint("step_number > 0", name="ck_workflow_steps_positive_number"),
        CheckConstraint(
            "(required_role IS NULL) <> (assigned_user_id IS NULL)",
            name="ck_workflow_steps_one_assignee",
        ),
        CheckConstraint(
            "timeout_days IS NULL OR timeout_days > 0",
            name="ck_workflow_steps_positive_timeout",
        ),
        CheckConstraint(
            "escalation_role IS NULL OR timeout_days IS NOT NULL",
            name="ck_workflow_steps_escalation_needs_timeout",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    required_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_mandatory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    can_delegate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delegation_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timeout_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escalation_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    template: Mapped[WorkflowTemplateModel] = relationship(
        "WorkflowTemplateModel",
        back_populates="steps",
    )

    def __repr__(self) -> str:
        assignee = self.required_role or f"user:{self.assigned_user_id}"
        return f"<WorkflowStep {self.step_number} {self.step_name!r} -> {assignee}>"

    def to_definition(self) -> StepDefinition:
        return StepDefinition(
            step_number=self.step_number,
            step_name=self.step_name,
            required_role=self.required_role,
            assigned_user_id=self.assigned_user_id,
            is_mandatory=self.is_mandatory,
            can_delegate=self.can_delegate,
            delegation_role=self.delegation_role,
            timeout_days=self.timeout_days,
            escalation_role=self.escalation_role,
            conditions=self.conditions,
            description=self.description,
        )

    @classmethod
    def from_definition(cls, step: StepDefinition) -> WorkflowStepModel:
        return cls(
            step_number=step.step_number,
            step_name=step.step_name,
            description=step.description,
            required_role=step.required_role,
            assigned_user_id=step.assigned_user_id,
            is_mandatory=step.is_mandatory,
            can_delegate=step.can_delegate,
            delegation_role=step.delegation_role,
            timeout_days=step.timeout_days,
            escalation_role=step.escalation_role,
            conditions=step.conditions,
        )
