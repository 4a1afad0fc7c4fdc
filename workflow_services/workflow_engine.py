"""
workflow_services.workflow_engine -- Runtime orchestrator for approval workflows.

Responsibility:
    Starts a workflow instance for a submitted entity, advances it on
    approve / reject / delegate actions, escalates timed-out steps, and
    cancels live instances.  Publishes a structured event to the external
    notifier whenever a step is assigned and after every terminal
    transition.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Composes
    the pure advancement planner (workflow_engines.advancement), the
    kernel models and selectors, and AuditorService.

Invariants enforced:
    - Instance lifecycle follows ``INSTANCE_TRANSITIONS``; terminal
      instances never change again.
    - An action must target the instance's current step.  The instance and
      its pending execution are re-read inside the caller's transaction
      (``FOR UPDATE`` + ``populate_existing``) on every call; nothing is
      cached between calls.
    - Optimistic concurrency: every action bumps the instance version, so
      two transactions acting on the same step cannot both commit.  The
      loser gets StaleStepError (or StepNotFoundError after re-reading).
    - Step history is append-only: skips, delegations and escalations
      resolve the pending row and add a new one; nothing is deleted.
    - Reject is terminal.  It never branches back to an earlier step.

Failure modes:
    - NoActiveTemplateError / AmbiguousActiveTemplateError on start.
    - DuplicateInstanceError: the entity already has a live instance.
    - InstanceNotFoundError / StepExecutionNotFoundError: unknown ids.
    - InstanceNotActiveError: action or cancel on a terminal instance.
    - StepNotFoundError / StaleStepError: stale or concurrent step action.
    - NotAuthorizedError / InvalidDelegationError: actor or delegate
      does not satisfy the step.
    - Any exception raised by the notifier propagates; the caller's
      transaction rolls back the transition with it.

Audit relevance:
    Every transition appends one audit row per affected step plus one per
    instance status change.

Usage:
    engine = WorkflowEngine(session, directory, directory, notifier, clock=clock)
    instance = engine.start_workflow("trf", "TRF-1", {"amount": "1200"}, "u-emp")
    engine.process_step_action(instance.instance_id, 1, "approve", user_id="u-focal")
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from workflow_engines.advancement import compute_due_date, plan_from, resolve_assignee
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.collaborators import Notifier, RoleMembership, UserDirectory
from workflow_kernel.domain.workflow import (
    INSTANCE_TRANSITIONS,
    TERMINAL_EVENT_TYPES,
    InstanceStatus,
    StepAction,
    StepDefinition,
    StepExecutionRecord,
    StepStatus,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowInstance,
)
from workflow_kernel.exceptions import (
    DuplicateInstanceError,
    InstanceNotActiveError,
    InstanceNotFoundError,
    InvalidDelegationError,
    NotAuthorizedError,
    StaleStepError,
    StepExecutionNotFoundError,
    StepNotFoundError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.audit import AuditAction
from workflow_kernel.models.instance import StepExecutionModel, WorkflowInstanceModel
from workflow_kernel.selectors.instance_selector import InstanceSelector
from workflow_kernel.selectors.template_selector import TemplateSelector
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.workflow_engine")

SYSTEM_ACTOR = "system"

_LIVE_STATUSES = frozenset({InstanceStatus.PENDING.value, InstanceStatus.ACTIVE.value})

_STEP_AUDIT_ACTIONS: dict[StepStatus, AuditAction] = {
    StepStatus.APPROVED: AuditAction.STEP_APPROVED,
    StepStatus.REJECTED: AuditAction.STEP_REJECTED,
    StepStatus.DELEGATED: AuditAction.STEP_DELEGATED,
    StepStatus.SKIPPED: AuditAction.STEP_SKIPPED,
    StepStatus.ESCALATED: AuditAction.STEP_ESCALATED,
}

_INSTANCE_AUDIT_ACTIONS: dict[InstanceStatus, AuditAction] = {
    InstanceStatus.APPROVED: AuditAction.WORKFLOW_APPROVED,
    InstanceStatus.REJECTED: AuditAction.WORKFLOW_REJECTED,
    InstanceStatus.CANCELLED: AuditAction.WORKFLOW_CANCELLED,
}


class WorkflowEngine:
    """
    Drives workflow instances through their template's step sequence.

    Contract:
        Every public mutator flushes inside the caller's transaction and
        returns a frozen DTO.  Either the whole transition (step rows,
        instance row, audit rows and notification) succeeds, or the
        caller rolls everything back.

    Guarantees:
        - An unauthorized or stale action raises before anything is
          written.
        - Escalation of a step that is no longer pending, has no
          escalation role, or is not yet due is a no-op returning None.

    Non-goals:
        - Does NOT commit.
        - Does NOT schedule timeouts; an external scanner calls
          ``escalate_overdue`` periodically.
        - Does NOT compose notification bodies.
    """

    def __init__(
        self,
        session: Session,
        role_membership: RoleMembership,
        user_directory: UserDirectory,
        notifier: Notifier,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._roles = role_membership
        self._users = user_directory
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._templates = TemplateSelector(session)
        self._instances = InstanceSelector(session)

    # =========================================================================
    # Start
    # =========================================================================

    def start_workflow(
        self,
        entity_type: str,
        entity_id: str,
        entity_data: dict[str, Any] | None,
        initiator_id: str,
    ) -> WorkflowInstance:
        """Create an instance for an entity and activate its first applicable step.

        ``entity_type`` is the module whose active template applies.  When
        every step is skipped by its conditions the instance is approved
        immediately.
        """
        with LogContext.bind(module=entity_type, entity_id=entity_id, actor_id=initiator_id):
            template = self._templates.resolve_active(entity_type)

            live = self._instances.get_live_for_entity(entity_type, entity_id)
            if live is not None:
                raise DuplicateInstanceError(entity_type, entity_id, str(live.instance_id))

            snapshot = template.to_definition().to_snapshot()
            now = self._clock.now()
            instance = WorkflowInstanceModel(
                template_id=template.template_id,
                template_name=template.name,
                template_snapshot=snapshot,
                template_hash=hash_payload(snapshot),
                entity_type=entity_type,
                entity_id=entity_id,
                entity_snapshot=to_json_safe(entity_data or {}),
                current_step_number=1,
                status=InstanceStatus.PENDING.value,
                initiated_by=initiator_id,
                started_at=now,
            )
            self.session.add(instance)
            self.session.flush()

            self._auditor.record_instance_event(
                instance.id,
                AuditAction.WORKFLOW_STARTED,
                initiator_id,
                details={
                    "template_id": str(template.template_id),
                    "template_hash": instance.template_hash,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                },
            )
            logger.info(
                "workflow_started",
                extra={
                    "instance_id": str(instance.id),
                    "template_id": str(template.template_id),
                    "template_name": template.name,
                    "step_count": len(snapshot["steps"]),
                },
            )

            self._advance(instance, 1, initiator_id)
            self.session.flush()
            return instance.to_dto()

    # =========================================================================
    # Step actions
    # =========================================================================

    def process_step_action(
        self,
        instance_id: UUID,
        step_number: int,
        action: StepAction | str,
        *,
        user_id: str,
        comments: str | None = None,
        delegated_to: str | None = None,
    ) -> WorkflowInstance:
        """Apply approve / reject / delegate to the instance's current step.

        Raises:
            InstanceNotFoundError, InstanceNotActiveError,
            StepNotFoundError, StaleStepError, NotAuthorizedError,
            InvalidDelegationError.
        """
        action = StepAction(action)
        with LogContext.bind(instance_id=str(instance_id), actor_id=user_id):
            instance = self._lock_instance(instance_id)
            self._require_live(instance)
            if step_number != instance.current_step_number:
                logger.warning(
                    "stale_step_action",
                    extra={
                        "step_number": step_number,
                        "current_step_number": instance.current_step_number,
                        "action": action.value,
                    },
                )
                raise StepNotFoundError(
                    str(instance.id), step_number, instance.current_step_number,
                )

            pending = self._lock_pending(instance)
            if pending is None or pending.step_number != step_number:
                raise StaleStepError(str(instance.id), step_number)

            if not self._is_assignee(user_id, pending):
                logger.warning(
                    "step_action_unauthorized",
                    extra={
                        "step_number": step_number,
                        "action": action.value,
                        "assigned_to_role": pending.assigned_to_role,
                        "assigned_to_user": pending.assigned_to_user,
                    },
                )
                raise NotAuthorizedError(
                    user_id,
                    str(instance.id),
                    step_number,
                    _assignee_reason(pending),
                )

            step = self._snapshot_step(instance, step_number)
            try:
                if action == StepAction.APPROVE:
                    self._approve(instance, pending, user_id, comments)
                elif action == StepAction.REJECT:
                    self._reject(instance, pending, user_id, comments)
                else:
                    self._delegate(instance, pending, step, user_id, delegated_to, comments)
                self.session.flush()
            except (StaleDataError, IntegrityError) as exc:
                logger.warning(
                    "step_action_conflict",
                    extra={"step_number": step_number, "error": type(exc).__name__},
                )
                raise StaleStepError(str(instance_id), step_number) from exc

            return instance.to_dto()

    def _approve(
        self,
        instance: WorkflowInstanceModel,
        pending: StepExecutionModel,
        user_id: str,
        comments: str | None,
    ) -> None:
        self._resolve(instance, pending, StepStatus.APPROVED, user_id, comments)
        self._advance(instance, pending.step_number + 1, user_id, comments)

    def _reject(
        self,
        instance: WorkflowInstanceModel,
        pending: StepExecutionModel,
        user_id: str,
        comments: str | None,
    ) -> None:
        self._resolve(instance, pending, StepStatus.REJECTED, user_id, comments)
        self._finish(instance, InstanceStatus.REJECTED, user_id, comments)

    def _delegate(
        self,
        instance: WorkflowInstanceModel,
        pending: StepExecutionModel,
        step: StepDefinition,
        user_id: str,
        delegated_to: str | None,
        comments: str | None,
    ) -> None:
        if not step.can_delegate:
            raise NotAuthorizedError(
                user_id, str(instance.id), step.step_number,
                "step does not allow delegation",
            )
        if not delegated_to:
            raise InvalidDelegationError(user_id, delegated_to, "no delegate given")
        if delegated_to == user_id:
            raise InvalidDelegationError(user_id, delegated_to, "cannot delegate to oneself")
        if not self._users.user_exists(delegated_to):
            raise InvalidDelegationError(
                user_id, delegated_to, "delegate does not exist or is inactive",
            )
        if step.delegation_role and not self._roles.has_role(delegated_to, step.delegation_role):
            raise InvalidDelegationError(
                user_id, delegated_to,
                f"delegate does not hold role '{step.delegation_role}'",
            )

        self._resolve(
            instance, pending, StepStatus.DELEGATED, user_id,
            comments or f"Delegated to {delegated_to}",
            details={"delegated_to": delegated_to},
        )
        replacement = self._open_execution(
            instance,
            step,
            role=None,
            user=delegated_to,
            due_date=pending.due_date,
            delegated_from=pending.id,
        )
        # Version bump: the instance row is part of every step action.
        flag_modified(instance, "current_step_number")
        self._announce_assignment(instance, replacement, user_id)

    # =========================================================================
    # Escalation
    # =========================================================================

    def escalate(
        self,
        step_execution_id: UUID,
        *,
        as_of: datetime | None = None,
    ) -> StepExecutionRecord | None:
        """Reassign a timed-out pending step to its escalation role.

        Returns the new pending execution, or None when the execution is
        no longer pending, its step has no escalation role, or it is not
        yet due.  A second call on the same execution is therefore a
        no-op.
        """
        now = as_of or self._clock.now()
        execution = self.session.execute(
            select(StepExecutionModel)
            .where(StepExecutionModel.id == step_execution_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if execution is None:
            raise StepExecutionNotFoundError(str(step_execution_id))

        with LogContext.bind(instance_id=str(execution.instance_id), actor_id=SYSTEM_ACTOR):
            instance = self._lock_instance(execution.instance_id)
            pending = self._lock_pending(instance)
            if (
                instance.status not in _LIVE_STATUSES
                or pending is None
                or pending.id != execution.id
            ):
                logger.info(
                    "escalation_skipped",
                    extra={
                        "step_execution_id": str(step_execution_id),
                        "reason": "not_pending",
                    },
                )
                return None

            step = self._snapshot_step(instance, execution.step_number)
            if not step.escalation_role or execution.due_date is None:
                logger.info(
                    "escalation_skipped",
                    extra={
                        "step_execution_id": str(step_execution_id),
                        "reason": "no_escalation_configured",
                    },
                )
                return None
            if now < execution.due_date:
                logger.info(
                    "escalation_skipped",
                    extra={
                        "step_execution_id": str(step_execution_id),
                        "reason": "not_due",
                        "due_date": execution.due_date,
                    },
                )
                return None

            try:
                self._resolve(
                    instance, execution, StepStatus.ESCALATED, SYSTEM_ACTOR,
                    f"Escalated to {step.escalation_role} after "
                    f"{step.timeout_days} day(s) without action",
                    details={"escalated_to_role": step.escalation_role},
                )
                replacement = self._open_execution(
                    instance,
                    step,
                    role=step.escalation_role,
                    user=None,
                    due_date=None,
                    escalated_from=execution.id,
                )
                flag_modified(instance, "current_step_number")
                self.session.flush()
            except (StaleDataError, IntegrityError) as exc:
                raise StaleStepError(str(instance.id), execution.step_number) from exc

            self._announce_assignment(instance, replacement, SYSTEM_ACTOR)
            return replacement.to_dto()

    def escalate_overdue(self, as_of: datetime | None = None) -> list[StepExecutionRecord]:
        """Escalate every pending execution past its due date.

        Entry point for the external scheduler.  Executions resolved by a
        user since the scan are skipped by ``escalate`` itself.
        """
        now = as_of or self._clock.now()
        escalated: list[StepExecutionRecord] = []
        for overdue in self._instances.find_overdue(now):
            record = self.escalate(overdue.execution_id, as_of=now)
            if record is not None:
                escalated.append(record)
        logger.info(
            "overdue_scan_completed",
            extra={"escalated_count": len(escalated), "as_of": now},
        )
        return escalated

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel(
        self,
        instance_id: UUID,
        reason: str,
        actor_id: str = SYSTEM_ACTOR,
    ) -> WorkflowInstance:
        """Stop a pending or active instance.

        Outstanding executions are marked skipped with the reason
        attached, never deleted.
        """
        with LogContext.bind(instance_id=str(instance_id), actor_id=actor_id):
            instance = self._lock_instance(instance_id)
            self._require_live(instance)

            comment = f"Cancelled: {reason}" if reason else "Cancelled"
            pending = self._lock_pending(instance)
            if pending is not None:
                self._resolve(instance, pending, StepStatus.SKIPPED, actor_id, comment)
            self._finish(instance, InstanceStatus.CANCELLED, actor_id, reason)
            try:
                self.session.flush()
            except StaleDataError as exc:
                raise StaleStepError(str(instance_id), instance.current_step_number) from exc
            return instance.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_instance(self, instance_id: UUID) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def get_instances_for_entity(
        self, entity_type: str, entity_id: str,
    ) -> list[WorkflowInstance]:
        return self._instances.get_for_entity(entity_type, entity_id)

    def history(self, instance_id: UUID) -> tuple[StepExecutionRecord, ...]:
        self.get_instance(instance_id)
        return self._instances.get_history(instance_id)

    def approval_queue(self, user_id: str) -> list[StepExecutionRecord]:
        """Pending executions ``user_id`` may act on, directly or via a role."""
        return self._instances.approval_queue(user_id, self._roles.get_user_roles(user_id))

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_instance(self, instance_id: UUID) -> WorkflowInstanceModel:
        instance = self.session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def _lock_pending(self, instance: WorkflowInstanceModel) -> StepExecutionModel | None:
        return self.session.execute(
            select(StepExecutionModel)
            .where(
                StepExecutionModel.instance_id == instance.id,
                StepExecutionModel.status == StepStatus.PENDING.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @staticmethod
    def _require_live(instance: WorkflowInstanceModel) -> None:
        if instance.status not in _LIVE_STATUSES:
            raise InstanceNotActiveError(str(instance.id), instance.status)

    @staticmethod
    def _snapshot_step(instance: WorkflowInstanceModel, step_number: int) -> StepDefinition:
        for step in instance.snapshot_steps:
            if step.step_number == step_number:
                return step
        raise StepNotFoundError(str(instance.id), step_number, instance.current_step_number)

    def _is_assignee(self, user_id: str, execution: StepExecutionModel) -> bool:
        if execution.assigned_to_user is not None:
            return execution.assigned_to_user == user_id
        return self._roles.has_role(user_id, execution.assigned_to_role)

    def _set_status(self, instance: WorkflowInstanceModel, target: InstanceStatus) -> None:
        current = InstanceStatus(instance.status)
        if target not in INSTANCE_TRANSITIONS[current]:
            raise InstanceNotActiveError(str(instance.id), instance.status)
        instance.status = target.value

    def _advance(
        self,
        instance: WorkflowInstanceModel,
        start_number: int,
        actor_id: str,
        comments: str | None = None,
    ) -> None:
        """Skip inapplicable steps from ``start_number`` and open the next one."""
        plan = plan_from(instance.snapshot_steps, start_number, instance.entity_snapshot)

        for step in plan.skipped:
            skipped = self._append_execution(
                instance,
                step,
                status=StepStatus.SKIPPED,
                role=resolve_assignee(step)[0],
                user=resolve_assignee(step)[1],
                action_taken_by=SYSTEM_ACTOR,
                action_taken_at=self._clock.now(),
                comments="Skipped: step conditions not met",
            )
            instance.current_step_number = step.step_number
            self._auditor.record_instance_event(
                instance.id,
                AuditAction.STEP_SKIPPED,
                SYSTEM_ACTOR,
                step_number=step.step_number,
                details={"conditions": step.conditions, "execution_id": str(skipped.id)},
            )
            logger.info(
                "step_skipped",
                extra={"step_number": step.step_number, "step_name": step.step_name},
            )

        if plan.completes:
            self._finish(instance, InstanceStatus.APPROVED, actor_id, comments)
            return

        step = plan.next_step
        role, user = resolve_assignee(step)
        instance.current_step_number = step.step_number
        if instance.status == InstanceStatus.PENDING.value:
            self._set_status(instance, InstanceStatus.ACTIVE)
        execution = self._open_execution(
            instance,
            step,
            role=role,
            user=user,
            due_date=compute_due_date(self._clock.now(), step.timeout_days),
        )
        self._announce_assignment(instance, execution, actor_id)

    def _open_execution(
        self,
        instance: WorkflowInstanceModel,
        step: StepDefinition,
        *,
        role: str | None,
        user: str | None,
        due_date: datetime | None,
        escalated_from: UUID | None = None,
        delegated_from: UUID | None = None,
    ) -> StepExecutionModel:
        # The previous pending row must be flushed as resolved first (one-pending index).
        self.session.flush()
        return self._append_execution(
            instance,
            step,
            status=StepStatus.PENDING,
            role=role,
            user=user,
            due_date=due_date,
            escalated_from=escalated_from,
            delegated_from=delegated_from,
        )

    def _append_execution(
        self,
        instance: WorkflowInstanceModel,
        step: StepDefinition,
        *,
        status: StepStatus,
        role: str | None,
        user: str | None,
        due_date: datetime | None = None,
        action_taken_by: str | None = None,
        action_taken_at: datetime | None = None,
        comments: str | None = None,
        escalated_from: UUID | None = None,
        delegated_from: UUID | None = None,
    ) -> StepExecutionModel:
        execution = StepExecutionModel(
            instance_id=instance.id,
            sequence=len(instance.executions) + 1,
            step_number=step.step_number,
            step_name=step.step_name,
            assigned_to_role=role,
            assigned_to_user=user,
            status=status.value,
            action_taken_by=action_taken_by,
            action_taken_at=action_taken_at,
            comments=comments,
            escalated_from=escalated_from,
            delegated_from=delegated_from,
            started_at=self._clock.now(),
            due_date=due_date,
        )
        instance.executions.append(execution)
        self.session.add(execution)
        self.session.flush()
        return execution

    def _resolve(
        self,
        instance: WorkflowInstanceModel,
        execution: StepExecutionModel,
        status: StepStatus,
        actor_id: str,
        comments: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Close a pending execution.  The only UPDATE a step row ever gets."""
        execution.status = status.value
        execution.action_taken_by = actor_id
        execution.action_taken_at = self._clock.now()
        execution.comments = comments

        self._auditor.record_instance_event(
            instance.id,
            _STEP_AUDIT_ACTIONS[status],
            actor_id,
            step_number=execution.step_number,
            details={
                "execution_id": str(execution.id),
                "assigned_to_role": execution.assigned_to_role,
                "assigned_to_user": execution.assigned_to_user,
                "comments": comments,
                **(details or {}),
            },
        )
        logger.info(
            f"step_{status.value}",
            extra={
                "step_number": execution.step_number,
                "step_name": execution.step_name,
                "execution_id": str(execution.id),
            },
        )

    def _finish(
        self,
        instance: WorkflowInstanceModel,
        status: InstanceStatus,
        actor_id: str,
        comments: str | None,
    ) -> None:
        """Move the instance to a terminal status and notify."""
        self._set_status(instance, status)
        instance.completed_at = self._clock.now()
        self.session.flush()

        self._auditor.record_instance_event(
            instance.id,
            _INSTANCE_AUDIT_ACTIONS[status],
            actor_id,
            step_number=instance.current_step_number,
            details={"comments": comments},
        )
        logger.info(
            f"workflow_{status.value}",
            extra={
                "entity_type": instance.entity_type,
                "step_number": instance.current_step_number,
            },
        )
        self._notifier.publish(WorkflowEvent(
            event_type=TERMINAL_EVENT_TYPES[status],
            instance_id=instance.id,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
            status=status,
            occurred_at=instance.completed_at,
            actor_id=actor_id,
            comments=comments,
            step_number=instance.current_step_number,
        ))

    def _announce_assignment(
        self,
        instance: WorkflowInstanceModel,
        execution: StepExecutionModel,
        actor_id: str,
    ) -> None:
        self._auditor.record_instance_event(
            instance.id,
            AuditAction.STEP_ASSIGNED,
            actor_id,
            step_number=execution.step_number,
            details={
                "execution_id": str(execution.id),
                "assigned_to_role": execution.assigned_to_role,
                "assigned_to_user": execution.assigned_to_user,
                "due_date": execution.due_date,
                "escalated_from": execution.escalated_from,
                "delegated_from": execution.delegated_from,
            },
        )
        logger.info(
            "step_assigned",
            extra={
                "step_number": execution.step_number,
                "assigned_to_role": execution.assigned_to_role,
                "assigned_to_user": execution.assigned_to_user,
                "due_date": execution.due_date,
            },
        )
        self._notifier.publish(WorkflowEvent(
            event_type=WorkflowEventType.STEP_ASSIGNED,
            instance_id=instance.id,
            entity_type=instance.entity_type,
            entity_id=instance.entity_id,
            status=InstanceStatus(instance.status),
            occurred_at=execution.started_at,
            actor_id=actor_id,
            step_number=execution.step_number,
            assigned_to_role=execution.assigned_to_role,
            assigned_to_user=execution.assigned_to_user,
            details={"execution_id": str(execution.id)},
        ))


def _assignee_reason(execution: StepExecutionModel) -> str:
    if execution.assigned_to_user is not None:
        return f"step is assigned to user {execution.assigned_to_user}"
    return f"user does not hold role '{execution.assigned_to_role}'"
