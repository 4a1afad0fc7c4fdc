"""
Workflow domain types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the configurable approval workflow: template and
step definitions, runtime instance and step-execution records, the two
lifecycle state machines, step actions, and the structured events handed
to the external notifier.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Instance lifecycle -- ``INSTANCE_TRANSITIONS`` defines the only valid
  status changes.  Terminal states (approved, rejected, cancelled) have
  no outgoing edges; a resubmission is a new instance.
* Step-execution lifecycle -- only a ``pending`` execution may change,
  and only once.  Every other status is final.
* Template snapshot -- ``TemplateDefinition.to_snapshot()`` is the frozen
  copy an instance runs against, so later template edits never rewrite a
  running instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


# =========================================================================
# Instance Lifecycle
# =========================================================================


class InstanceStatus(str, Enum):
    """Workflow instance lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.ACTIVE,
        InstanceStatus.APPROVED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.ACTIVE: frozenset({
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.CANCELLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.CANCELLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
})


# =========================================================================
# Step Execution Lifecycle
# =========================================================================


class StepStatus(str, Enum):
    """Status of one step execution row."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    SKIPPED = "skipped"
    ESCALATED = "escalated"


STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({
        StepStatus.APPROVED,
        StepStatus.REJECTED,
        StepStatus.DELEGATED,
        StepStatus.SKIPPED,
        StepStatus.ESCALATED,
    }),
    StepStatus.APPROVED: frozenset(),
    StepStatus.REJECTED: frozenset(),
    StepStatus.DELEGATED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
    StepStatus.ESCALATED: frozenset(),
}


class StepAction(str, Enum):
    """Actions an approver can take on the current step."""

    APPROVE = "approve"
    REJECT = "reject"
    DELEGATE = "delegate"


# =========================================================================
# Template Definitions
# =========================================================================


@dataclass(frozen=True)
class StepDefinition:
    """One position in a template's ordered sequence.

    Exactly one of ``required_role`` / ``assigned_user_id`` is set on a
    valid step.  ``escalation_role`` only takes effect with
    ``timeout_days``.  ``delegation_role`` restricts who the step may be
    delegated to; ``None`` means any active user.
    """

    step_number: int
    step_name: str
    required_role: str | None = None
    assigned_user_id: str | None = None
    is_mandatory: bool = True
    can_delegate: bool = False
    delegation_role: str | None = None
    timeout_days: int | None = None
    escalation_role: str | None = None
    conditions: dict[str, Any] | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_number": self.step_number,
            "step_name": self.step_name,
            "required_role": self.required_role,
            "assigned_user_id": self.assigned_user_id,
            "is_mandatory": self.is_mandatory,
            "can_delegate": self.can_delegate,
            "delegation_role": self.delegation_role,
            "timeout_days": self.timeout_days,
            "escalation_role": self.escalation_role,
            "conditions": self.conditions,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StepDefinition:
        """Missing or mistyped fields are left for the validator to report."""
        if not isinstance(data, Mapping):
            data = {}
        return cls(
            step_number=data.get("step_number"),
            step_name=data.get("step_name", ""),
            required_role=data.get("required_role"),
            assigned_user_id=data.get("assigned_user_id"),
            is_mandatory=data.get("is_mandatory", True),
            can_delegate=data.get("can_delegate", False),
            delegation_role=data.get("delegation_role"),
            timeout_days=data.get("timeout_days"),
            escalation_role=data.get("escalation_role"),
            conditions=data.get("conditions"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class TemplateDefinition:
    """Candidate template as submitted by an administrator or the analyzer."""

    name: str
    module: str
    steps: tuple[StepDefinition, ...] = ()
    description: str | None = None
    is_active: bool = True

    def ordered_steps(self) -> tuple[StepDefinition, ...]:
        """Steps ordered by step number, not by submission order."""
        return tuple(sorted(self.steps, key=lambda s: s.step_number))

    def to_snapshot(self) -> dict[str, Any]:
        """Frozen copy captured by an instance at start time."""
        return {
            "name": self.name,
            "module": self.module,
            "description": self.description,
            "steps": [s.to_dict() for s in self.ordered_steps()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TemplateDefinition:
        if not isinstance(data, Mapping):
            data = {}
        steps = data.get("steps")
        if not isinstance(steps, (list, tuple)):
            steps = ()
        return cls(
            name=data.get("name", ""),
            module=data.get("module", ""),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            steps=tuple(StepDefinition.from_dict(s) for s in steps),
        )


@dataclass(frozen=True)
class WorkflowTemplate:
    """Persisted template, as read back from the template store."""

    template_id: UUID
    name: str
    module: str
    is_active: bool
    steps: tuple[StepDefinition, ...]
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_definition(self) -> TemplateDefinition:
        return TemplateDefinition(
            name=self.name,
            module=self.module,
            steps=self.steps,
            description=self.description,
            is_active=self.is_active,
        )


# =========================================================================
# Runtime Records
# =========================================================================


@dataclass(frozen=True)
class StepExecutionRecord:
    """Immutable view of one step execution row."""

    execution_id: UUID
    instance_id: UUID
    step_number: int
    step_name: str
    status: StepStatus
    assigned_to_role: str | None = None
    assigned_to_user: str | None = None
    action_taken_by: str | None = None
    action_taken_at: datetime | None = None
    comments: str | None = None
    escalated_from: UUID | None = None
    delegated_from: UUID | None = None
    started_at: datetime | None = None
    due_date: datetime | None = None


@dataclass(frozen=True)
class WorkflowInstance:
    """Immutable view of one workflow run against one submitted entity."""

    instance_id: UUID
    template_id: UUID
    template_name: str
    entity_type: str
    entity_id: str
    status: InstanceStatus
    current_step_number: int | None
    initiated_by: str
    started_at: datetime
    completed_at: datetime | None = None
    template_hash: str | None = None
    executions: tuple[StepExecutionRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    @property
    def pending_execution(self) -> StepExecutionRecord | None:
        for execution in self.executions:
            if execution.status == StepStatus.PENDING:
                return execution
        return None


# =========================================================================
# Notifier Events
# =========================================================================


class WorkflowEventType(str, Enum):
    """Structured events published to the external notifier."""

    STEP_ASSIGNED = "step_assigned"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"


TERMINAL_EVENT_TYPES: dict[InstanceStatus, WorkflowEventType] = {
    InstanceStatus.APPROVED: WorkflowEventType.WORKFLOW_APPROVED,
    InstanceStatus.REJECTED: WorkflowEventType.WORKFLOW_REJECTED,
    InstanceStatus.CANCELLED: WorkflowEventType.WORKFLOW_CANCELLED,
}


@dataclass(frozen=True)
class WorkflowEvent:
    """Payload for the notifier.  The engine never composes message bodies."""

    event_type: WorkflowEventType
    instance_id: UUID
    entity_type: str
    entity_id: str
    status: InstanceStatus
    occurred_at: datetime
    actor_id: str | None = None
    comments: str | None = None
    step_number: int | None = None
    assigned_to_role: str | None = None
    assigned_to_user: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.event_type != WorkflowEventType.STEP_ASSIGNED
