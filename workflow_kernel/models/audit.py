"""
Module: workflow_kernel.models.audit
Responsibility: Append-only audit log for every workflow state change.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Audit rows are never updated or deleted (ORM listeners).

Audit relevance:
    This IS the audit trail.  Template edits, instance starts, step
    actions, skips, escalations, cancellations and migration
    execute/rollback each append exactly one row via AuditorService.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable workflow actions.

    Adding a new action type requires a matching ``record_*`` helper on
    AuditorService.
    """

    # Template lifecycle
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_UPDATED = "template_updated"
    TEMPLATE_DEACTIVATED = "template_deactivated"
    TEMPLATE_ACTIVATED = "template_activated"

    # Instance lifecycle
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_APPROVED = "workflow_approved"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"

    # Step lifecycle
    STEP_ASSIGNED = "step_assigned"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    STEP_DELEGATED = "step_delegated"
    STEP_SKIPPED = "step_skipped"
    STEP_ESCALATED = "step_escalated"

    # Migration lifecycle
    MIGRATION_EXECUTED = "migration_executed"
    MIGRATION_FAILED = "migration_failed"
    MIGRATION_ROLLED_BACK = "migration_rolled_back"
    MIGRATION_ROLLBACK_FAILED = "migration_rollback_failed"


class WorkflowAuditEntry(Base):
    """One immutable audit log row."""

    __tablename__ = "workflow_audit_log"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "seq",
            name="uq_workflow_audit_log_entity_seq",
        ),
        Index("ix_workflow_audit_log_instance", "instance_id"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    instance_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    step_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<WorkflowAudit {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(WorkflowAuditEntry, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to audit log rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowAuditEntry",
        entity_id=str(target.id),
        reason="Audit log is append-only -- cannot modify",
    )


@event.listens_for(WorkflowAuditEntry, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of audit log rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowAuditEntry",
        entity_id=str(target.id),
        reason="Audit log is append-only -- cannot delete",
    )
