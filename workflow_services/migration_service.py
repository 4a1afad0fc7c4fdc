"""
workflow_services.migration_service -- Legacy approval chains onto templates.

Responsibility:
    Inspects each legacy module's hardcoded approval chain (from the
    legacy flow catalog), proposes an equivalent declarative template,
    and executes or rolls back the cutover with backup bookkeeping and a
    ``workflow_migrations`` record.

Architecture position:
    Services -- orchestration over TemplateService (the same validated
    write path administrators use), the kernel models and AuditorService.
    Reads its inventory from ``workflow_config``.

Invariants enforced:
    - ``analyze`` is read-only.
    - A suggestion is validated by WorkflowValidator exactly like an
      administrator's edit; an invalid suggestion is never persisted.
    - At most one completed migration per module; re-migrating requires a
      rollback first (MigrationConflictError).
    - A migration never changes which template is active for a module
      unless the module had none: when another template is already active
      the migrated one is stored inactive.  Rollback only deactivates the
      migrated template, so execute + rollback restores the prior active
      set exactly.
    - Record status follows ``MIGRATION_TRANSITIONS``.  A failed execute
      leaves the row in ``failed`` with the error message.  A failed
      rollback leaves it ``completed`` with the error message, so the
      rollback can be retried.  Rows are never deleted.

Failure modes:
    - UnknownLegacyModuleError: module not in the catalog.
    - MigrationConflictError: module already has a completed migration.
    - MigrationNotFoundError: rollback of a module never migrated.
    - InvalidMigrationTransitionError: rollback of a migration that is not
      completed.
    Template write errors and backup I/O errors do not raise; they are
    recorded on the migration row and reported in the result.

Audit relevance:
    The analysis snapshot and its hash are stored on the record, so the
    exact proposal that was executed can be replayed later.  Execute,
    failure, rollback and a failed rollback each append an audit row.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workflow_config.legacy_catalog import LegacyCatalog, LegacyFlow
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.migration import (
    MIGRATION_TRANSITIONS,
    TIME_ESTIMATES,
    MigrationAnalysis,
    MigrationComplexity,
    MigrationReport,
    MigrationResult,
    MigrationStatus,
    ModuleEffort,
    RequiredChange,
    RollbackResult,
    WorkflowMigration,
)
from workflow_kernel.domain.workflow import StepDefinition, TemplateDefinition
from workflow_kernel.exceptions import (
    InvalidMigrationTransitionError,
    MigrationConflictError,
    MigrationNotFoundError,
    UnknownLegacyModuleError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.audit import AuditAction
from workflow_kernel.models.migration import WorkflowMigrationModel
from workflow_kernel.models.template import WorkflowTemplateModel
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.utils.hashing import hash_payload, to_json_safe
from workflow_services.template_service import TemplateService

logger = get_logger("services.migration")

_PENDING_PREFIX = "Pending "


class MigrationAnalyzer:
    """
    Analyzes, executes and rolls back legacy-flow migrations.

    Contract:
        ``execute`` and ``rollback`` flush inside the caller's transaction.
        The template write runs in a SAVEPOINT so that a failed write can
        be undone while the ``failed`` migration row is still kept.

    Non-goals:
        - Does NOT edit legacy source files.  Backups are JSON snapshots
          of the module's templates and the analysis, written before the
          cutover.
        - Does NOT migrate running instances; they finish on whatever
          template they started with.
    """

    def __init__(
        self,
        session: Session,
        catalog: LegacyCatalog,
        template_service: TemplateService,
        *,
        backup_dir: Path | str,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._catalog = catalog
        self._templates = template_service
        self._backup_dir = Path(backup_dir)
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # =========================================================================
    # Analysis (read-only)
    # =========================================================================

    def analyze(self, module: str) -> MigrationAnalysis:
        """Propose a template equivalent to the module's hardcoded chain."""
        flow = self._flow(module)
        suggestion = _suggest_template(flow)
        validation = self._templates.validate(
            replace(suggestion, is_active=False),
            template_id=self._reusable_template(module, suggestion.name),
        )

        findings = list(_status_flow_findings(flow))
        findings.extend(f"error: {e}" for e in validation.errors)
        findings.extend(f"warning: {w}" for w in validation.warnings)

        analysis = MigrationAnalysis(
            module=module,
            suggested_template=suggestion,
            complexity=MigrationComplexity.from_branch_count(flow.branches),
            conditional_branches=flow.branches,
            status_flow=flow.status_flow,
            dependencies=flow.dependencies,
            required_changes=tuple(
                RequiredChange(file=c.file, description=c.description)
                for c in flow.required_changes
            ),
            findings=tuple(findings),
            catalog_checksum=self._catalog.checksum,
        )
        logger.debug(
            "migration_analyzed",
            extra={
                "workflow_module": module,
                "complexity": analysis.complexity.value,
                "finding_count": len(analysis.findings),
                "suggestion_valid": validation.is_valid,
            },
        )
        return analysis

    def analyze_all(self) -> list[MigrationAnalysis]:
        return [self.analyze(module) for module in self._catalog.modules]

    def generate_report(self) -> MigrationReport:
        """Portfolio view: what can move now and what needs a closer look.

        Low-complexity modules whose suggestion validates are ready; high
        complexity or an invalid suggestion needs attention.  Modules with
        a completed migration are listed separately.
        """
        analyses = self.analyze_all()
        migrated = set(self._completed_modules())

        ready: list[str] = []
        attention: list[str] = []
        for analysis in analyses:
            if analysis.module in migrated:
                continue
            has_errors = any(f.startswith("error: ") for f in analysis.findings)
            if has_errors or analysis.complexity == MigrationComplexity.HIGH:
                attention.append(analysis.module)
            elif analysis.complexity == MigrationComplexity.LOW:
                ready.append(analysis.module)

        return MigrationReport(
            total_modules=len(analyses),
            ready_for_migration=tuple(ready),
            requires_attention=tuple(attention),
            estimated_effort=tuple(
                ModuleEffort(
                    module=a.module,
                    effort=a.complexity,
                    time_estimate=TIME_ESTIMATES[a.complexity],
                )
                for a in analyses
            ),
            already_migrated=tuple(a.module for a in analyses if a.module in migrated),
            findings={a.module: a.findings for a in analyses if a.findings},
        )

    def history(self, module: str) -> list[WorkflowMigration]:
        """Every migration record for a module, newest first."""
        rows = self.session.execute(
            select(WorkflowMigrationModel)
            .where(WorkflowMigrationModel.module == module)
            .order_by(WorkflowMigrationModel.migration_date.desc())
        ).scalars().all()
        return [r.to_dto() for r in rows]

    # =========================================================================
    # Execute
    # =========================================================================

    def execute(
        self,
        module: str,
        create_backup: bool = True,
        actor_id: str = "system",
    ) -> MigrationResult:
        """Persist the suggested template and record the migration.

        Raises:
            UnknownLegacyModuleError: module not in the catalog.
            MigrationConflictError: a completed migration already exists.
        """
        with LogContext.bind(module=module, actor_id=actor_id):
            analysis = self.analyze(module)

            completed = self._latest(module, MigrationStatus.COMPLETED)
            if completed is not None:
                raise MigrationConflictError(module, str(completed.id))

            reusable = self._reusable_template(module, analysis.suggested_template.name)
            activate = self._templates_active_for(module, exclude=reusable) == 0
            definition = replace(analysis.suggested_template, is_active=activate)

            analysis_data = to_json_safe(analysis.to_dict())
            migration = WorkflowMigrationModel(
                module=module,
                status=MigrationStatus.IN_PROGRESS.value,
                executed_by=actor_id,
                migration_date=self._clock.now(),
                backup_files=[],
                analysis_data=analysis_data,
                analysis_hash=hash_payload(analysis_data),
            )
            self.session.add(migration)
            self.session.flush()

            validation = self._templates.validate(definition, template_id=reusable)
            if not validation.can_save:
                errors = tuple(str(e) for e in validation.errors)
                return self._fail(
                    migration, actor_id,
                    f"Suggested template for {module} failed validation",
                    errors,
                )

            backup_refs: list[str] = []
            try:
                if create_backup:
                    backup_refs.append(str(self._write_backup(migration, analysis_data)))
                with self.session.begin_nested():
                    if reusable is not None:
                        template = self._templates.update(reusable, definition, actor_id)
                    else:
                        template = self._templates.create(definition, actor_id)
            except (WorkflowKernelError, SQLAlchemyError, OSError) as exc:
                logger.error(
                    "migration_template_write_failed",
                    extra={"migration_id": str(migration.id)},
                    exc_info=True,
                )
                migration.backup_files = backup_refs
                return self._fail(
                    migration, actor_id, f"Migration failed: {exc}", (str(exc),),
                )

            migration.workflow_id = template.template_id
            migration.backup_files = backup_refs
            self._transition(migration, MigrationStatus.COMPLETED)
            self.session.flush()

            self._auditor.record_migration_event(
                migration.id,
                AuditAction.MIGRATION_EXECUTED,
                actor_id,
                details={
                    "module": module,
                    "workflow_id": str(template.template_id),
                    "template_active": template.is_active,
                    "reused_template": reusable is not None,
                    "backup_files": backup_refs,
                    "analysis_hash": migration.analysis_hash,
                },
            )
            logger.info(
                "migration_executed",
                extra={
                    "migration_id": str(migration.id),
                    "workflow_id": str(template.template_id),
                    "template_active": template.is_active,
                    "backup_count": len(backup_refs),
                },
            )
            return MigrationResult(
                success=True,
                module=module,
                migration_id=migration.id,
                workflow_id=template.template_id,
                backup_refs=tuple(backup_refs),
                message=f"Successfully migrated {module} workflow to configurable system",
            )

    # =========================================================================
    # Rollback
    # =========================================================================

    def rollback(self, module: str, actor_id: str = "system") -> RollbackResult:
        """Deactivate the migrated template and mark the migration rolled back.

        Raises:
            MigrationNotFoundError: the module was never migrated.
            InvalidMigrationTransitionError: the latest migration is not
                completed.
        """
        with LogContext.bind(module=module, actor_id=actor_id):
            migration = self._latest(module, MigrationStatus.COMPLETED) or self._latest(module)
            if migration is None:
                raise MigrationNotFoundError(module)
            if migration.status != MigrationStatus.COMPLETED.value:
                raise InvalidMigrationTransitionError(
                    str(migration.id), migration.status, MigrationStatus.ROLLED_BACK.value,
                )

            try:
                with self.session.begin_nested():
                    if migration.workflow_id is not None:
                        self._templates.delete(migration.workflow_id, actor_id)
            except (WorkflowKernelError, SQLAlchemyError) as exc:
                logger.error(
                    "migration_rollback_failed",
                    extra={"migration_id": str(migration.id)},
                    exc_info=True,
                )
                migration.error_message = f"Rollback failed: {exc}"
                self.session.flush()
                self._auditor.record_migration_event(
                    migration.id,
                    AuditAction.MIGRATION_ROLLBACK_FAILED,
                    actor_id,
                    details={"module": module, "error": str(exc)},
                )
                return RollbackResult(
                    success=False,
                    module=module,
                    migration_id=migration.id,
                    workflow_id=migration.workflow_id,
                    message=f"Rollback failed: {exc}",
                )

            self._transition(migration, MigrationStatus.ROLLED_BACK)
            migration.rollback_date = self._clock.now()
            migration.error_message = None
            self.session.flush()

            self._auditor.record_migration_event(
                migration.id,
                AuditAction.MIGRATION_ROLLED_BACK,
                actor_id,
                details={"module": module, "workflow_id": str(migration.workflow_id)},
            )
            logger.info(
                "migration_rolled_back",
                extra={
                    "migration_id": str(migration.id),
                    "workflow_id": str(migration.workflow_id),
                },
            )
            return RollbackResult(
                success=True,
                module=module,
                migration_id=migration.id,
                workflow_id=migration.workflow_id,
                message=f"Successfully rolled back migration for {module}",
            )

    # =========================================================================
    # Internals
    # =========================================================================

    def _flow(self, module: str) -> LegacyFlow:
        flow = self._catalog.get(module)
        if flow is None:
            raise UnknownLegacyModuleError(module, list(self._catalog.modules))
        return flow

    def _latest(
        self, module: str, status: MigrationStatus | None = None,
    ) -> WorkflowMigrationModel | None:
        stmt = select(WorkflowMigrationModel).where(WorkflowMigrationModel.module == module)
        if status is not None:
            stmt = stmt.where(WorkflowMigrationModel.status == status.value)
        return self.session.execute(
            stmt.order_by(WorkflowMigrationModel.migration_date.desc()).limit(1)
        ).scalars().first()

    def _completed_modules(self) -> list[str]:
        return list(self.session.execute(
            select(WorkflowMigrationModel.module).where(
                WorkflowMigrationModel.status == MigrationStatus.COMPLETED.value
            )
        ).scalars().all())

    def _reusable_template(self, module: str, name: str) -> UUID | None:
        """A template of this name written by an earlier migration of the module."""
        return self.session.execute(
            select(WorkflowTemplateModel.id)
            .join(
                WorkflowMigrationModel,
                WorkflowMigrationModel.workflow_id == WorkflowTemplateModel.id,
            )
            .where(
                WorkflowTemplateModel.name == name,
                WorkflowMigrationModel.module == module,
            )
            .limit(1)
        ).scalar_one_or_none()

    def _templates_active_for(self, module: str, *, exclude: UUID | None) -> int:
        return sum(
            1 for t in self._templates.list_by_module(module, include_inactive=False)
            if t.template_id != exclude
        )

    def _transition(self, migration: WorkflowMigrationModel, target: MigrationStatus) -> None:
        current = MigrationStatus(migration.status)
        if target not in MIGRATION_TRANSITIONS[current]:
            raise InvalidMigrationTransitionError(str(migration.id), current.value, target.value)
        migration.status = target.value

    def _fail(
        self,
        migration: WorkflowMigrationModel,
        actor_id: str,
        message: str,
        errors: tuple[str, ...],
    ) -> MigrationResult:
        self._transition(migration, MigrationStatus.FAILED)
        migration.error_message = "\n".join((message, *errors))
        self.session.flush()
        self._auditor.record_migration_event(
            migration.id,
            AuditAction.MIGRATION_FAILED,
            actor_id,
            details={"module": migration.module, "errors": list(errors)},
        )
        logger.warning(
            "migration_failed",
            extra={"migration_id": str(migration.id), "error_count": len(errors)},
        )
        return MigrationResult(
            success=False,
            module=migration.module,
            migration_id=migration.id,
            backup_refs=tuple(migration.backup_files or ()),
            message=message,
            errors=errors,
        )

    def _write_backup(self, migration: WorkflowMigrationModel, analysis_data: dict) -> Path:
        """Snapshot the module's current templates and the analysis to JSON."""
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = self._clock.now().strftime("%Y%m%dT%H%M%S")
        path = self._backup_dir / f"{migration.module}-{stamp}-{migration.id.hex[:8]}.json"

        templates = self._templates.list_by_module(migration.module)
        payload = to_json_safe({
            "migration_id": migration.id,
            "module": migration.module,
            "created_at": self._clock.now(),
            "templates": [
                {
                    "template_id": t.template_id,
                    "is_active": t.is_active,
                    **t.to_definition().to_snapshot(),
                }
                for t in templates
            ],
            "legacy_dependencies": analysis_data.get("dependencies", []),
            "analysis": analysis_data,
        })
        with open(path, "w") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
        logger.info("migration_backup_written", extra={"path": str(path)})
        return path


def _suggest_template(flow: LegacyFlow) -> TemplateDefinition:
    return TemplateDefinition(
        name=flow.template_name,
        module=flow.module,
        description=f"Migrated from hardcoded {flow.module} approval process",
        is_active=True,
        steps=tuple(
            StepDefinition(
                step_number=index,
                step_name=step.name,
                required_role=step.role,
                description=step.description,
                is_mandatory=True,
                can_delegate=step.can_delegate,
                timeout_days=step.timeout_days,
                escalation_role=step.escalation_role,
            )
            for index, step in enumerate(flow.steps, start=1)
        ),
    )


def _status_flow_findings(flow: LegacyFlow) -> list[str]:
    """Cross-check "Pending <Role>" legacy statuses against the chain's roles."""
    roles = {step.role for step in flow.steps}
    findings: list[str] = []
    for status in flow.status_flow:
        if status.startswith(_PENDING_PREFIX) and status[len(_PENDING_PREFIX):] not in roles:
            findings.append(
                f"status '{status}' names no role in the approval chain; "
                "map it to a step before cutover"
            )
    return findings
