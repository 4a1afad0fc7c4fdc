"""
workflow_engines.advancement -- Which step runs next.

Responsibility:
    Given a frozen template snapshot and the submitted entity's data,
    plan the move from one step position to the next: which steps are
    skipped on the way and where the workflow comes to rest.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The workflow engine
    service applies the plan to persisted rows.

Invariants enforced:
    - Mandatory steps are never skipped, whatever their conditions say.
    - Steps are visited in ascending step-number order; a skipped step
      is recorded, never silently dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Sequence

from workflow_engines.conditions import should_skip
from workflow_kernel.domain.workflow import StepDefinition


@dataclass(frozen=True)
class StepPlan:
    """Steps skipped on the way, and the step that becomes current.

    ``next_step`` is None when the walk ran off the end of the template,
    meaning the instance is approved.
    """

    skipped: tuple[StepDefinition, ...]
    next_step: StepDefinition | None

    @property
    def completes(self) -> bool:
        return self.next_step is None


def is_skippable(step: StepDefinition, entity_data: dict[str, Any]) -> bool:
    if step.is_mandatory:
        return False
    return should_skip(step.conditions, entity_data)


def plan_from(
    steps: Sequence[StepDefinition],
    start_number: int,
    entity_data: dict[str, Any],
) -> StepPlan:
    """Walk forward from ``start_number`` (inclusive) to the first step that applies."""
    skipped: list[StepDefinition] = []
    for step in sorted(steps, key=lambda s: s.step_number):
        if step.step_number < start_number:
            continue
        if is_skippable(step, entity_data):
            skipped.append(step)
            continue
        return StepPlan(skipped=tuple(skipped), next_step=step)
    return StepPlan(skipped=tuple(skipped), next_step=None)


def compute_due_date(started_at: datetime, timeout_days: int | None) -> datetime | None:
    if timeout_days is None:
        return None
    return started_at + timedelta(days=timeout_days)


def resolve_assignee(step: StepDefinition) -> tuple[str | None, str | None]:
    """(role, user) the step's pending execution is assigned to."""
    if step.assigned_user_id:
        return None, step.assigned_user_id
    return step.required_role, None
