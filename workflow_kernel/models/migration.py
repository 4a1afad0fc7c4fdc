"""
Module: workflow_kernel.models.migration
Responsibility: ORM persistence for legacy-flow migration records.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Status values are limited by a CHECK constraint; the service walks
      ``MIGRATION_TRANSITIONS``.
    - At most one in-progress or completed migration per module (partial
      unique index), so a module cannot be migrated twice concurrently.
    - Records are created by the analyzer and mutated only by
      execute/rollback; a failure leaves the row in ``failed``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.domain.migration import MigrationStatus, WorkflowMigration

_OPEN_MIGRATION = "status IN ('in_progress', 'completed')"


class WorkflowMigrationModel(Base):
    """One attempt to move a legacy module onto a declarative template."""

    __tablename__ = "workflow_migrations"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed', 'rolled_back')",
            name="ck_workflow_migrations_valid_status",
        ),
        Index(
            "ix_workflow_migrations_one_open_per_module",
            "module",
            unique=True,
            postgresql_where=text(_OPEN_MIGRATION),
            sqlite_where=text(_OPEN_MIGRATION),
        ),
        Index("ix_workflow_migrations_module_date", "module", "migration_date"),
    )

    module: Mapped[str] = mapped_column(String(50), nullable=False)
    workflow_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    executed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    migration_date: Mapped[datetime] = mapped_column(nullable=False)
    rollback_date: Mapped[datetime | None] = mapped_column(nullable=True)
    backup_files: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    analysis_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    analysis_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowMigration {self.module} status={self.status} "
            f"workflow={self.workflow_id}>"
        )

    def to_dto(self) -> WorkflowMigration:
        """Convert ORM model to frozen domain DTO."""
        return WorkflowMigration(
            migration_id=self.id,
            module=self.module,
            status=MigrationStatus(self.status),
            executed_by=self.executed_by,
            migration_date=self.migration_date,
            workflow_id=self.workflow_id,
            rollback_date=self.rollback_date,
            backup_files=tuple(self.backup_files or ()),
            analysis_data=self.analysis_data,
            analysis_hash=self.analysis_hash,
            error_message=self.error_message,
        )
