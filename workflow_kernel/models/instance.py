"""
Module: workflow_kernel.models.instance
Responsibility: ORM persistence for workflow instances and their step
    execution history.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Template snapshot: an instance stores the template (name, steps) it
      started with plus its SHA-256, and the engine only ever reads that
      snapshot.  Editing or deactivating the template afterwards does not
      rewrite a running instance.
    - One live instance per entity: partial unique index over
      (entity_type, entity_id) for pending/active instances.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col,
      so two transactions that both read version N cannot both write.
    - One pending execution per instance: partial unique index.
    - Step executions are append-only.  A pending row may be resolved
      exactly once (status, actor, time, comments); any other UPDATE and
      every DELETE raise ImmutabilityViolationError.

Failure modes:
    - IntegrityError on a second live instance for the same entity, or a
      second pending execution for the same instance.
    - StaleDataError when the instance version moved under the writer.
    - ImmutabilityViolationError on edits to resolved executions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.domain.workflow import (
    InstanceStatus,
    StepDefinition,
    StepExecutionRecord,
    StepStatus,
    WorkflowInstance,
)
from workflow_kernel.exceptions import ImmutabilityViolationError

_LIVE_INSTANCE = "status IN ('pending', 'active')"


class WorkflowInstanceModel(Base):
    """Persistent workflow run for one submitted entity.

    Contract:
        Status follows ``INSTANCE_TRANSITIONS``.  ``entity_id`` is a plain
        business identifier, not a foreign key into module tables.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_instances_valid_status",
        ),
        Index(
            "ix_workflow_instances_live_entity",
            "entity_type", "entity_id",
            unique=True,
            postgresql_where=text(_LIVE_INSTANCE),
            sqlite_where=text(_LIVE_INSTANCE),
        ),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id", "started_at"),
        Index("ix_workflow_instances_status", "status"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id"),
        nullable=False,
    )
    template_name: Mapped[str] = mapped_column(String(100), nullable=False)
    template_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    template_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    current_step_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    initiated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    executions: Mapped[list[StepExecutionModel]] = relationship(
        "StepExecutionModel",
        back_populates="instance",
        order_by="StepExecutionModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.entity_type}/{self.entity_id} "
            f"status={self.status} step={self.current_step_number}>"
        )

    @property
    def snapshot_steps(self) -> tuple[StepDefinition, ...]:
        """Steps as captured at start time, ordered by number."""
        return tuple(
            StepDefinition.from_dict(s) for s in self.template_snapshot["steps"]
        )

    def to_dto(self) -> WorkflowInstance:
        """Convert ORM model to frozen domain DTO."""
        return WorkflowInstance(
            instance_id=self.id,
            template_id=self.template_id,
            template_name=self.template_name,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            status=InstanceStatus(self.status),
            current_step_number=self.current_step_number,
            initiated_by=self.initiated_by,
            started_at=self.started_at,
            completed_at=self.completed_at,
            template_hash=self.template_hash,
            executions=tuple(e.to_dto() for e in self.executions),
        )


class StepExecutionModel(Base):
    """One entry in an instance's step history. Append-only once resolved.

    ``sequence`` is the row's position in the instance history (1..n).
    Several rows may share a step number: skipped, escalated and
    delegated rows sit beside the row that finally resolved the step.
    """

    __tablename__ = "step_executions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'delegated', "
            "'skipped', 'escalated')",
            name="ck_step_executions_valid_status",
        ),
        UniqueConstraint(
            "instance_id", "sequence",
            name="uq_step_executions_instance_sequence",
        ),
        Index(
            "ix_step_executions_one_pending",
            "instance_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_step_executions_due", "status", "due_date"),
        Index("ix_step_executions_assignee", "status", "assigned_to_role", "assigned_to_user"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_instances.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_to_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_to_user: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    action_taken_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action_taken_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_from: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("step_executions.id"),
        nullable=True,
    )
    delegated_from: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("step_executions.id"),
        nullable=True,
    )
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)

    instance: Mapped[WorkflowInstanceModel] = relationship(
        "WorkflowInstanceModel",
        back_populates="executions",
    )

    def __repr__(self) -> str:
        assignee = self.assigned_to_role or f"user:{self.assigned_to_user}"
        return (
            f"<StepExecution #{self.sequence} step={self.step_number} "
            f"{assignee} status={self.status}>"
        )

    def to_dto(self) -> StepExecutionRecord:
        """Convert ORM model to frozen domain DTO."""
        return StepExecutionRecord(
            execution_id=self.id,
            instance_id=self.instance_id,
            step_number=self.step_number,
            step_name=self.step_name,
            status=StepStatus(self.status),
            assigned_to_role=self.assigned_to_role,
            assigned_to_user=self.assigned_to_user,
            action_taken_by=self.action_taken_by,
            action_taken_at=self.action_taken_at,
            comments=self.comments,
            escalated_from=self.escalated_from,
            delegated_from=self.delegated_from,
            started_at=self.started_at,
            due_date=self.due_date,
        )


# =============================================================================
# ORM-Level Immutability for Step Executions
# =============================================================================

_RESOLUTION_FIELDS = frozenset({
    "status",
    "action_taken_by",
    "action_taken_at",
    "comments",
})


@event.listens_for(StepExecutionModel, "before_update")
def prevent_resolved_execution_update(mapper, connection, target):
    """Allow only the single pending -> resolved write on a step execution."""
    state = inspect(target)
    status_history = state.attrs.status.history
    previous_status = (
        status_history.deleted[0] if status_history.deleted else target.status
    )

    if previous_status != StepStatus.PENDING.value:
        raise ImmutabilityViolationError(
            entity_type="StepExecution",
            entity_id=str(target.id),
            reason=f"Execution already {previous_status} -- cannot modify",
        )

    changed = {
        prop.key
        for prop in mapper.column_attrs
        if state.attrs[prop.key].history.has_changes()
    }
    illegal = changed - _RESOLUTION_FIELDS
    if illegal:
        raise ImmutabilityViolationError(
            entity_type="StepExecution",
            entity_id=str(target.id),
            reason=f"Only resolution fields may change, not {sorted(illegal)}",
        )


@event.listens_for(StepExecutionModel, "before_delete")
def prevent_execution_delete(mapper, connection, target):
    """Prevent deletion of step execution records."""
    raise ImmutabilityViolationError(
        entity_type="StepExecution",
        entity_id=str(target.id),
        reason="Step history is permanent -- cannot delete",
    )
