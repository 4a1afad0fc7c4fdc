"""
workflow_services.template_service -- Validated template store.

Responsibility:
    Create, update, deactivate and activate workflow templates.  Every
    mutation passes through WorkflowValidator plus the store-level checks
    (unique name, single active template per module) before any row is
    written, so every persisted template is executable.

Architecture position:
    Services -- orchestration over engines (WorkflowValidator) and the
    kernel (models, TemplateSelector, AuditorService).

Invariants enforced:
    - A template that fails validation is never persisted.
    - At most one active template per module; activation switches the
      active template atomically inside the caller's transaction.
    - Deletion is deactivation.  Rows stay for history and for the
      instances that reference them.
    - Running instances carry their own snapshot; edits here never change
      them.

Failure modes:
    - ValidationFailedError: validator errors and store-level conflicts,
      merged into one payload with every issue.
    - TemplateNotFoundError: unknown template id.

Audit relevance:
    Each mutation appends one audit row (created / updated / deactivated /
    activated) with the template hash after the change.

Usage:
    service = TemplateService(session, validator, clock=clock)
    template = service.create(definition, actor_id="admin-1")
    service.activate_template(template.template_id, actor_id="admin-1")
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_engines.validator import (
    Severity,
    ValidationIssue,
    ValidationResult,
    WorkflowValidator,
)
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.workflow import TemplateDefinition, WorkflowTemplate
from workflow_kernel.exceptions import TemplateNotFoundError, ValidationFailedError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.audit import AuditAction
from workflow_kernel.models.template import WorkflowStepModel, WorkflowTemplateModel
from workflow_kernel.selectors.template_selector import TemplateSelector
from workflow_kernel.services.auditor_service import AuditorService
from workflow_kernel.services.base import BaseService
from workflow_kernel.utils.hashing import hash_payload

logger = get_logger("services.template")


class TemplateService(BaseService):
    """
    Admin-facing template CRUD, gated by WorkflowValidator.

    Contract:
        ``create`` / ``update`` return the persisted template as a frozen
        DTO.  ``validate`` runs every check without writing anything.

    Non-goals:
        - Does NOT commit.  The caller owns the transaction.
        - Does NOT version templates; edits are in place.
    """

    def __init__(
        self,
        session: Session,
        validator: WorkflowValidator,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._validator = validator
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._selector = TemplateSelector(session)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(
        self,
        definition: TemplateDefinition,
        *,
        template_id: UUID | None = None,
    ) -> ValidationResult:
        """Validator result plus store-level conflicts.  Writes nothing.

        ``template_id`` identifies the template being updated, so it does
        not conflict with itself.
        """
        result = self._validator.validate(definition)
        store_errors = self._store_conflicts(definition, template_id)
        if not store_errors:
            return result
        return ValidationResult(
            errors=result.errors + tuple(store_errors),
            warnings=result.warnings,
        )

    def _store_conflicts(
        self,
        definition: TemplateDefinition,
        template_id: UUID | None,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if isinstance(definition.name, str) and definition.name.strip():
            existing = self.session.execute(
                select(WorkflowTemplateModel.id).where(
                    WorkflowTemplateModel.name == definition.name.strip()
                )
            ).scalar_one_or_none()
            if existing is not None and existing != template_id:
                issues.append(ValidationIssue(
                    Severity.ERROR,
                    "DUPLICATE_NAME",
                    f"A workflow named '{definition.name.strip()}' already exists",
                    field="name",
                ))

        if definition.is_active and isinstance(definition.module, str) and definition.module:
            other = self._active_for_module(definition.module, exclude=template_id)
            if other is not None:
                issues.append(ValidationIssue(
                    Severity.ERROR,
                    "ACTIVE_TEMPLATE_EXISTS",
                    f"Module '{definition.module}' already has active workflow "
                    f"'{other.name}'; save this one inactive or deactivate that one",
                    field="is_active",
                ))
        return issues

    def _ensure_valid(
        self,
        definition: TemplateDefinition,
        template_id: UUID | None = None,
    ) -> ValidationResult:
        result = self.validate(definition, template_id=template_id)
        if not result.can_save:
            logger.warning(
                "template_validation_failed",
                extra={
                    "template_name": definition.name,
                    "error_codes": sorted(result.error_codes()),
                    "warning_count": len(result.warnings),
                },
            )
            raise ValidationFailedError(
                definition.name, list(result.errors), list(result.warnings),
            )
        return result

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, definition: TemplateDefinition, actor_id: str) -> WorkflowTemplate:
        """Validate and persist a new template with its steps."""
        result = self._ensure_valid(definition)
        now = self._clock.now()

        model = WorkflowTemplateModel(
            name=definition.name.strip(),
            description=definition.description,
            module=definition.module,
            is_active=definition.is_active,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        model.steps = [
            WorkflowStepModel.from_definition(s) for s in definition.ordered_steps()
        ]
        self.session.add(model)
        self.session.flush()

        self._auditor.record_template_change(
            model.id,
            AuditAction.TEMPLATE_CREATED,
            actor_id,
            details={
                "name": model.name,
                "module": model.module,
                "is_active": model.is_active,
                "step_count": len(model.steps),
                "template_hash": hash_payload(definition.to_snapshot()),
                "warnings": [w.code for w in result.warnings],
            },
        )
        logger.info(
            "template_created",
            extra={
                "template_id": str(model.id),
                "template_name": model.name,
                "workflow_module": model.module,
                "is_active": model.is_active,
                "step_count": len(model.steps),
            },
        )
        return model.to_dto()

    def update(
        self,
        template_id: UUID,
        definition: TemplateDefinition,
        actor_id: str,
    ) -> WorkflowTemplate:
        """Replace a template's header and steps in place.

        Instances already started keep running against their snapshot.
        """
        model = self._load(template_id)
        self._ensure_valid(definition, template_id=template_id)

        model.name = definition.name.strip()
        model.description = definition.description
        model.module = definition.module
        model.is_active = definition.is_active
        model.updated_at = self._clock.now()

        # Old step rows must be gone before the new numbers hit the unique constraint.
        model.steps.clear()
        self.session.flush()
        model.steps.extend(
            WorkflowStepModel.from_definition(s) for s in definition.ordered_steps()
        )
        self.session.flush()

        self._auditor.record_template_change(
            model.id,
            AuditAction.TEMPLATE_UPDATED,
            actor_id,
            details={
                "name": model.name,
                "is_active": model.is_active,
                "step_count": len(model.steps),
                "template_hash": hash_payload(definition.to_snapshot()),
            },
        )
        logger.info(
            "template_updated",
            extra={
                "template_id": str(model.id),
                "template_name": model.name,
                "step_count": len(model.steps),
            },
        )
        return model.to_dto()

    def delete(self, template_id: UUID, actor_id: str) -> WorkflowTemplate:
        """Soft delete: deactivate the template.  Idempotent."""
        model = self._load(template_id)
        if model.is_active:
            model.is_active = False
            model.updated_at = self._clock.now()
            self.session.flush()
            self._auditor.record_template_change(
                model.id,
                AuditAction.TEMPLATE_DEACTIVATED,
                actor_id,
                details={"module": model.module},
            )
            logger.info(
                "template_deactivated",
                extra={"template_id": str(model.id), "workflow_module": model.module},
            )
        return model.to_dto()

    deactivate_template = delete

    def activate_template(self, template_id: UUID, actor_id: str) -> WorkflowTemplate:
        """Make this the module's active template, deactivating any other."""
        model = self._load(template_id)
        if model.is_active:
            return model.to_dto()

        now = self._clock.now()
        previous = self._active_for_module(model.module, exclude=model.id)
        if previous is not None:
            previous.is_active = False
            previous.updated_at = now
            # Flush the deactivation first; the one-active index sees each row.
            self.session.flush()
            self._auditor.record_template_change(
                previous.id,
                AuditAction.TEMPLATE_DEACTIVATED,
                actor_id,
                details={"module": previous.module, "replaced_by": str(model.id)},
            )

        model.is_active = True
        model.updated_at = now
        self.session.flush()
        self._auditor.record_template_change(
            model.id,
            AuditAction.TEMPLATE_ACTIVATED,
            actor_id,
            details={
                "module": model.module,
                "replaced": str(previous.id) if previous is not None else None,
            },
        )
        logger.info(
            "template_activated",
            extra={
                "template_id": str(model.id),
                "workflow_module": model.module,
                "replaced_template_id": str(previous.id) if previous is not None else None,
            },
        )
        return model.to_dto()

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, template_id: UUID) -> WorkflowTemplate:
        return self._load(template_id).to_dto()

    def list_by_module(
        self, module: str, *, include_inactive: bool = True,
    ) -> list[WorkflowTemplate]:
        return self._selector.list_by_module(module, include_inactive=include_inactive)

    def list_all(self, *, include_inactive: bool = True) -> list[WorkflowTemplate]:
        return self._selector.list_all(include_inactive=include_inactive)

    def resolve_active(self, module: str) -> WorkflowTemplate:
        return self._selector.resolve_active(module)

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, template_id: UUID) -> WorkflowTemplateModel:
        model = self.session.get(WorkflowTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _active_for_module(
        self, module: str, *, exclude: UUID | None = None,
    ) -> WorkflowTemplateModel | None:
        stmt = select(WorkflowTemplateModel).where(
            WorkflowTemplateModel.module == module,
            WorkflowTemplateModel.is_active.is_(True),
        )
        if exclude is not None:
            stmt = stmt.where(WorkflowTemplateModel.id != exclude)
        return self.session.execute(stmt).scalars().first()
