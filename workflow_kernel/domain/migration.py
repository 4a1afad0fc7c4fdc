"""
Migration domain types (``workflow_kernel.domain.migration``).

Responsibility
--------------
Value objects for moving a legacy, hardcoded approval chain onto a
declarative template: the migration record lifecycle, the complexity
rating, the analysis the analyzer produces, and the results of
execute/rollback.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Migration lifecycle -- ``MIGRATION_TRANSITIONS`` allows only
  in_progress -> completed | failed and completed -> rolled_back.  A
  rollback that fails leaves the record completed.
* Complexity is derived from the legacy branch count, never set by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.domain.workflow import TemplateDefinition


class MigrationStatus(str, Enum):
    """Lifecycle states of a workflow migration record."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


MIGRATION_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.IN_PROGRESS: frozenset({
        MigrationStatus.COMPLETED,
        MigrationStatus.FAILED,
    }),
    MigrationStatus.COMPLETED: frozenset({MigrationStatus.ROLLED_BACK}),
    MigrationStatus.FAILED: frozenset(),
    MigrationStatus.ROLLED_BACK: frozenset(),
}


class MigrationComplexity(str, Enum):
    """Effort rating for migrating one legacy module."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_branch_count(cls, branches: int) -> MigrationComplexity:
        if branches <= 1:
            return cls.LOW
        if branches <= 4:
            return cls.MEDIUM
        return cls.HIGH


TIME_ESTIMATES: dict[MigrationComplexity, str] = {
    MigrationComplexity.LOW: "1-2 days",
    MigrationComplexity.MEDIUM: "3-5 days",
    MigrationComplexity.HIGH: "1-2 weeks",
}


@dataclass(frozen=True)
class RequiredChange:
    """One source location that must be rewired onto the engine."""

    file: str
    description: str


@dataclass(frozen=True)
class MigrationAnalysis:
    """Read-only inspection of one legacy module."""

    module: str
    suggested_template: TemplateDefinition
    complexity: MigrationComplexity
    conditional_branches: int
    status_flow: tuple[str, ...]
    dependencies: tuple[str, ...]
    required_changes: tuple[RequiredChange, ...] = ()
    findings: tuple[str, ...] = ()
    catalog_checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe snapshot stored on the migration record."""
        return {
            "module": self.module,
            "suggested_template": {
                **self.suggested_template.to_snapshot(),
                "is_active": self.suggested_template.is_active,
            },
            "complexity": self.complexity.value,
            "conditional_branches": self.conditional_branches,
            "status_flow": list(self.status_flow),
            "dependencies": list(self.dependencies),
            "required_changes": [
                {"file": c.file, "description": c.description}
                for c in self.required_changes
            ],
            "findings": list(self.findings),
            "catalog_checksum": self.catalog_checksum,
        }


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of ``execute``."""

    success: bool
    module: str
    migration_id: UUID | None = None
    workflow_id: UUID | None = None
    backup_refs: tuple[str, ...] = ()
    message: str = ""
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of ``rollback``."""

    success: bool
    module: str
    migration_id: UUID | None = None
    workflow_id: UUID | None = None
    message: str = ""


@dataclass(frozen=True)
class ModuleEffort:
    module: str
    effort: MigrationComplexity
    time_estimate: str


@dataclass(frozen=True)
class MigrationReport:
    """Portfolio view across every legacy module."""

    total_modules: int
    ready_for_migration: tuple[str, ...]
    requires_attention: tuple[str, ...]
    estimated_effort: tuple[ModuleEffort, ...]
    already_migrated: tuple[str, ...] = ()
    findings: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowMigration:
    """Immutable view of one migration record."""

    migration_id: UUID
    module: str
    status: MigrationStatus
    executed_by: str
    migration_date: datetime
    workflow_id: UUID | None = None
    rollback_date: datetime | None = None
    backup_files: tuple[str, ...] = ()
    analysis_data: dict[str, Any] = field(default_factory=dict)
    analysis_hash: str | None = None
    error_message: str | None = None
