"""
AuditorService -- append-only audit trail for workflow state changes.

Responsibility:
    Creates immutable ``WorkflowAuditEntry`` rows for every significant
    state change and answers trace queries for forensic review.

Architecture position:
    Kernel > Services -- imperative shell, called by TemplateService,
    WorkflowEngine and MigrationAnalyzer.

Invariants enforced:
    - Append-only: audit rows are never modified or deleted (ORM
      listeners on the model).
    - Every row carries actor, timestamp (from the injected Clock) and a
      JSON-safe details payload.

Failure modes:
    - TypeError if ``details`` holds a value with no JSON rendering.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.audit import AuditAction, WorkflowAuditEntry
from workflow_kernel.services.base import BaseService
from workflow_kernel.utils.hashing import to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: str
    step_number: int | None
    details: dict[str, Any]


@dataclass(frozen=True)
class AuditTrace:
    """All audit entries for one entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService(BaseService):
    """
    Service for writing and reading the workflow audit log.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        *,
        instance_id: UUID | None = None,
        step_number: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> WorkflowAuditEntry:
        """Append one audit row and flush it into the caller's transaction.

        ``seq`` numbers the rows of one entity 1..n in write order.
        """
        seq = self.session.execute(
            select(func.count())
            .select_from(WorkflowAuditEntry)
            .where(
                WorkflowAuditEntry.entity_type == entity_type,
                WorkflowAuditEntry.entity_id == entity_id,
            )
        ).scalar_one() + 1

        entry = WorkflowAuditEntry(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            instance_id=instance_id,
            step_number=step_number,
            details=to_json_safe(details or {}),
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(
            "audit_entry_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return entry

    def record_template_change(
        self,
        template_id: UUID,
        action: AuditAction,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> WorkflowAuditEntry:
        return self.record(
            "WorkflowTemplate", template_id, action, actor_id, details=details,
        )

    def record_instance_event(
        self,
        instance_id: UUID,
        action: AuditAction,
        actor_id: str,
        *,
        step_number: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> WorkflowAuditEntry:
        return self.record(
            "WorkflowInstance",
            instance_id,
            action,
            actor_id,
            instance_id=instance_id,
            step_number=step_number,
            details=details,
        )

    def record_migration_event(
        self,
        migration_id: UUID,
        action: AuditAction,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> WorkflowAuditEntry:
        return self.record(
            "WorkflowMigration", migration_id, action, actor_id, details=details,
        )

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """Return every audit entry for an entity, oldest first."""
        rows = self.session.execute(
            select(WorkflowAuditEntry)
            .where(
                WorkflowAuditEntry.entity_type == entity_type,
                WorkflowAuditEntry.entity_id == entity_id,
            )
            .order_by(WorkflowAuditEntry.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=row.seq,
                    action=AuditAction(row.action),
                    occurred_at=row.occurred_at,
                    actor_id=row.actor_id,
                    step_number=row.step_number,
                    details=row.details,
                )
                for row in rows
            ),
        )
