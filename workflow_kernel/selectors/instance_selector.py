"""
Module: workflow_kernel.selectors.instance_selector
Responsibility: Read paths over workflow instances and step history: lookup
    by id or entity, full history, the approval queue for an actor, and the
    overdue scan that feeds the escalation scheduler.
Architecture position: Kernel > Selectors.  Read-only.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select

from workflow_kernel.domain.workflow import (
    InstanceStatus,
    StepExecutionRecord,
    StepStatus,
    WorkflowInstance,
)
from workflow_kernel.models.instance import StepExecutionModel, WorkflowInstanceModel
from workflow_kernel.selectors.base import BaseSelector

_LIVE_STATUSES = (InstanceStatus.PENDING.value, InstanceStatus.ACTIVE.value)


class InstanceSelector(BaseSelector):
    """Queries over instances and step executions."""

    def get(self, instance_id: UUID) -> WorkflowInstance | None:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def get_for_entity(self, entity_type: str, entity_id: str) -> list[WorkflowInstance]:
        """All instances ever started for an entity, newest first."""
        rows = self.session.execute(
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.entity_type == entity_type,
                WorkflowInstanceModel.entity_id == entity_id,
            )
            .order_by(WorkflowInstanceModel.started_at.desc())
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def get_live_for_entity(
        self, entity_type: str, entity_id: str,
    ) -> WorkflowInstance | None:
        """The pending/active instance for an entity, if any."""
        row = self.session.execute(
            select(WorkflowInstanceModel).where(
                WorkflowInstanceModel.entity_type == entity_type,
                WorkflowInstanceModel.entity_id == entity_id,
                WorkflowInstanceModel.status.in_(_LIVE_STATUSES),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def get_history(self, instance_id: UUID) -> tuple[StepExecutionRecord, ...]:
        """Every step execution of an instance in write order."""
        rows = self.session.execute(
            select(StepExecutionModel)
            .where(StepExecutionModel.instance_id == instance_id)
            .order_by(StepExecutionModel.sequence)
        ).scalars().all()
        return tuple(r.to_dto() for r in rows)

    def approval_queue(
        self,
        user_id: str,
        roles: tuple[str, ...] | list[str],
    ) -> list[StepExecutionRecord]:
        """Pending executions the user may act on, oldest first.

        An execution is in the queue when it is assigned to the user
        directly or to any of ``roles``.
        """
        assignee = StepExecutionModel.assigned_to_user == user_id
        if roles:
            assignee = or_(assignee, StepExecutionModel.assigned_to_role.in_(list(roles)))

        rows = self.session.execute(
            select(StepExecutionModel)
            .join(WorkflowInstanceModel, StepExecutionModel.instance_id == WorkflowInstanceModel.id)
            .where(
                StepExecutionModel.status == StepStatus.PENDING.value,
                WorkflowInstanceModel.status == InstanceStatus.ACTIVE.value,
                assignee,
            )
            .order_by(StepExecutionModel.started_at)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def find_overdue(self, as_of: datetime) -> list[StepExecutionRecord]:
        """Pending executions whose due date is at or before ``as_of``."""
        rows = self.session.execute(
            select(StepExecutionModel)
            .where(
                StepExecutionModel.status == StepStatus.PENDING.value,
                StepExecutionModel.due_date.is_not(None),
                StepExecutionModel.due_date <= as_of,
            )
            .order_by(StepExecutionModel.due_date)
        ).scalars().all()
        return [r.to_dto() for r in rows]
