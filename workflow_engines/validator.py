"""
workflow_engines.validator -- Structural and semantic template validation.

Responsibility:
    Decide whether a candidate ``TemplateDefinition`` is executable before
    anything is persisted.  Produces a ``ValidationResult`` with every
    error and warning found; never raises for data-shape problems.

Architecture position:
    Engines -- pure calculation layer.  The only outside reads are the
    injected read-only ``RoleRegistry`` / ``UserDirectory`` lookups.

Invariants enforced:
    - Step numbers are unique and contiguous from 1..N, judged by number
      rather than list position.
    - Every step names exactly one assignee (a role or a user), and that
      assignee exists.
    - An escalation role requires a timeout, must exist, and must differ
      from the step's own role.
    - Condition blocks are well formed.

    ``can_save`` is ``len(errors) == 0``; warnings never block a save.
    Every persisted template is assumed executable by the engine, so the
    store refuses any template whose result is not valid.

Non-goals:
    Cycle detection.  Steps form a flat ordered list, not a graph.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

from workflow_engines.conditions import validate_conditions
from workflow_kernel.domain.collaborators import RoleRegistry, UserDirectory
from workflow_kernel.domain.workflow import StepDefinition, TemplateDefinition

DEFAULT_MAX_STEPS = 20
DEFAULT_MAX_NAME_LENGTH = 100
DEFAULT_MAX_DESCRIPTION_LENGTH = 500
DEFAULT_LONG_TIMEOUT_DAYS = 30


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """One finding.  ``step_index`` is the position in the submitted list."""

    severity: Severity
    code: str
    message: str
    step_index: int | None = None
    step_number: int | None = None
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "step_index": self.step_index,
            "step_number": self.step_number,
            "field": self.field,
        }

    def __str__(self) -> str:
        where = f"step {self.step_number}: " if self.step_number is not None else ""
        return f"[{self.code}] {where}{self.message}"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a template."""

    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_save(self) -> bool:
        return not self.errors

    def error_codes(self) -> set[str]:
        return {e.code for e in self.errors}

    def warning_codes(self) -> set[str]:
        return {w.code for w in self.warnings}

    def summary(self) -> str:
        """One-line status for display next to the editor."""
        if not self.errors and not self.warnings:
            return "Workflow is valid and ready to save"
        if not self.errors:
            return f"Workflow is valid with {len(self.warnings)} warning(s)"
        text = f"Workflow has {len(self.errors)} error(s)"
        if self.warnings:
            text += f" and {len(self.warnings)} warning(s)"
        return text + " that must be fixed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": self.summary(),
        }


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _blank(value: Any) -> bool:
    """True for None, whitespace and anything that is not a string."""
    return not isinstance(value, str) or not value.strip()


def _not_text(value: Any) -> bool:
    return value is not None and not isinstance(value, str)


TEXT_STEP_FIELDS = ("required_role", "assigned_user_id", "escalation_role", "delegation_role")


class WorkflowValidator:
    """Validates candidate templates and individual steps.

    Role and user checks are skipped when the corresponding collaborator
    is not supplied; module membership is skipped when ``known_modules``
    is None.
    """

    def __init__(
        self,
        role_registry: RoleRegistry | None = None,
        user_directory: UserDirectory | None = None,
        *,
        known_modules: Sequence[str] | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        max_name_length: int = DEFAULT_MAX_NAME_LENGTH,
        max_description_length: int = DEFAULT_MAX_DESCRIPTION_LENGTH,
        long_timeout_days: int = DEFAULT_LONG_TIMEOUT_DAYS,
    ) -> None:
        self._roles = role_registry
        self._users = user_directory
        self._known_modules = frozenset(known_modules) if known_modules is not None else None
        self._max_steps = max_steps
        self._max_name_length = max_name_length
        self._max_description_length = max_description_length
        self._long_timeout_days = long_timeout_days

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, template: TemplateDefinition) -> ValidationResult:
        """Validate a whole template.  Pure; never raises for bad data."""
        issues: list[ValidationIssue] = []
        issues.extend(self._check_header(template))

        steps = list(template.steps)
        if not steps:
            issues.append(self._error("NO_STEPS", "Workflow must have at least one step"))
        elif len(steps) > self._max_steps:
            issues.append(self._error(
                "TOO_MANY_STEPS",
                f"Workflow has {len(steps)} steps; at most {self._max_steps} are allowed",
            ))

        for index, step in enumerate(steps):
            issues.extend(self._check_step(step, index, steps))

        issues.extend(self._check_sequence(steps))

        if steps and not any(s.is_mandatory for s in steps):
            issues.append(self._warning(
                "NO_MANDATORY_STEPS",
                "No step is mandatory; an instance may complete with every step skipped",
            ))

        name_counts = Counter(s.step_name.strip().lower() for s in steps if not _blank(s.step_name))
        for name, count in sorted(name_counts.items()):
            if count > 1:
                issues.append(self._warning(
                    "DUPLICATE_STEP_NAME",
                    f"Step name '{name}' is used by {count} steps",
                    field="step_name",
                ))

        return ValidationResult(
            errors=tuple(i for i in issues if i.severity == Severity.ERROR),
            warnings=tuple(i for i in issues if i.severity == Severity.WARNING),
        )

    def validate_step(
        self,
        step: StepDefinition,
        index: int,
        all_steps: Sequence[StepDefinition],
    ) -> list[ValidationIssue]:
        """Errors for one step, for incremental feedback while editing."""
        return [
            i for i in self._check_step(step, index, list(all_steps))
            if i.severity == Severity.ERROR
        ]

    def step_warnings(
        self,
        step: StepDefinition,
        index: int,
        all_steps: Sequence[StepDefinition],
    ) -> list[ValidationIssue]:
        """Warnings for one step (companion to ``validate_step``)."""
        return [
            i for i in self._check_step(step, index, list(all_steps))
            if i.severity == Severity.WARNING
        ]

    # ------------------------------------------------------------------
    # Template-level checks
    # ------------------------------------------------------------------

    def _check_header(self, template: TemplateDefinition) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        if _not_text(template.name):
            issues.append(self._error(
                "NAME_REQUIRED", f"Workflow name must be text, got {template.name!r}", field="name",
            ))
        elif _blank(template.name):
            issues.append(self._error("NAME_REQUIRED", "Workflow name is required", field="name"))
        elif len(template.name.strip()) > self._max_name_length:
            issues.append(self._error(
                "NAME_TOO_LONG",
                f"Workflow name must be at most {self._max_name_length} characters",
                field="name",
            ))

        if _not_text(template.description):
            issues.append(self._error(
                "INVALID_DESCRIPTION",
                f"Description must be text, got {template.description!r}",
                field="description",
            ))
        elif template.description and len(template.description) > self._max_description_length:
            issues.append(self._error(
                "DESCRIPTION_TOO_LONG",
                f"Description must be at most {self._max_description_length} characters",
                field="description",
            ))

        if _not_text(template.module):
            issues.append(self._error(
                "MODULE_REQUIRED", f"Module must be text, got {template.module!r}", field="module",
            ))
        elif _blank(template.module):
            issues.append(self._error("MODULE_REQUIRED", "Module is required", field="module"))
        elif self._known_modules is not None and template.module not in self._known_modules:
            issues.append(self._error(
                "UNKNOWN_MODULE",
                f"Unknown module '{template.module}' "
                f"(expected one of {', '.join(sorted(self._known_modules))})",
                field="module",
            ))
        return issues

    def _check_sequence(self, steps: list[StepDefinition]) -> list[ValidationIssue]:
        """Contiguity of step numbers 1..N, judged by number, not position."""
        numbers = {s.step_number for s in steps if _is_positive_int(s.step_number)}
        if not numbers:
            return []
        missing = sorted(set(range(1, max(numbers) + 1)) - numbers)
        return [
            self._error(
                "STEP_SEQUENCE_GAP",
                f"Step {n} is missing; step numbers must run 1..N without gaps",
                step_number=n,
                field="step_number",
            )
            for n in missing
        ]

    # ------------------------------------------------------------------
    # Step-level checks
    # ------------------------------------------------------------------

    def _check_step(
        self,
        step: StepDefinition,
        index: int,
        all_steps: list[StepDefinition],
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        number = step.step_number if _is_positive_int(step.step_number) else None

        def err(code: str, message: str, field: str | None = None) -> None:
            issues.append(self._error(code, message, index, number, field))

        def warn(code: str, message: str, field: str | None = None) -> None:
            issues.append(self._warning(code, message, index, number, field))

        if _not_text(step.step_name):
            err("STEP_NAME_REQUIRED", f"Step name must be text, got {step.step_name!r}", "step_name")
        elif _blank(step.step_name):
            err("STEP_NAME_REQUIRED", "Step name is required", "step_name")
        elif len(step.step_name) > self._max_name_length:
            err("STEP_NAME_TOO_LONG",
                f"Step name must be at most {self._max_name_length} characters", "step_name")

        if number is None:
            err("INVALID_STEP_NUMBER",
                f"Step number must be a positive integer, got {step.step_number!r}",
                "step_number")
        else:
            clash = [
                i for i, other in enumerate(all_steps)
                if i != index and other.step_number == number
            ]
            if clash:
                err("DUPLICATE_STEP_NUMBER",
                    f"Step number {number} is also used at position(s) "
                    f"{', '.join(str(i + 1) for i in clash)}", "step_number")

        for name in TEXT_STEP_FIELDS:
            value = getattr(step, name)
            if _not_text(value):
                err("INVALID_FIELD_TYPE", f"{name} must be text, got {value!r}", name)

        has_role = not _blank(step.required_role)
        has_user = not _blank(step.assigned_user_id)
        if has_role and has_user:
            err("ASSIGNEE_CONFLICT",
                "Set either a required role or an assigned user, not both", "required_role")
        elif not has_role and not has_user:
            err("ASSIGNEE_MISSING",
                "A required role or an assigned user is required", "required_role")

        if has_role and self._roles is not None:
            if not self._roles.role_exists(step.required_role):
                err("UNKNOWN_ROLE", f"Role '{step.required_role}' does not exist", "required_role")
            elif not self._roles.has_active_members(step.required_role):
                warn("ROLE_WITHOUT_MEMBERS",
                     f"Role '{step.required_role}' has no active members", "required_role")

        if has_user and self._users is not None and not self._users.user_exists(step.assigned_user_id):
            err("UNKNOWN_USER",
                f"User '{step.assigned_user_id}' does not exist or is inactive", "assigned_user_id")

        issues.extend(self._check_timeout(step, index, number))
        issues.extend(self._check_delegation(step, index, number))

        for message in validate_conditions(step.conditions):
            err("INVALID_CONDITIONS", message, "conditions")
        if step.conditions and step.is_mandatory:
            warn("CONDITIONS_ON_MANDATORY",
                 "Conditions are ignored on a mandatory step; it always runs", "conditions")
        return issues

    def _check_timeout(
        self, step: StepDefinition, index: int, number: int | None,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        has_timeout = step.timeout_days is not None
        has_escalation = not _blank(step.escalation_role)

        if has_timeout and not _is_positive_int(step.timeout_days):
            issues.append(self._error(
                "INVALID_TIMEOUT",
                f"Timeout must be a positive number of days, got {step.timeout_days!r}",
                index, number, "timeout_days",
            ))
        elif has_timeout and step.timeout_days > self._long_timeout_days:
            issues.append(self._warning(
                "LONG_TIMEOUT",
                f"Timeout of {step.timeout_days} days exceeds {self._long_timeout_days} days",
                index, number, "timeout_days",
            ))

        if has_escalation and not has_timeout:
            issues.append(self._error(
                "ESCALATION_WITHOUT_TIMEOUT",
                "An escalation role requires a timeout",
                index, number, "escalation_role",
            ))
        if has_timeout and not has_escalation:
            issues.append(self._warning(
                "TIMEOUT_WITHOUT_ESCALATION",
                "Timeout has no escalation role; the step will stall after it expires",
                index, number, "escalation_role",
            ))

        if has_escalation:
            if step.escalation_role == step.required_role:
                issues.append(self._error(
                    "ESCALATION_SAME_ROLE",
                    "Escalation role must differ from the step's required role",
                    index, number, "escalation_role",
                ))
            elif self._roles is not None and not self._roles.role_exists(step.escalation_role):
                issues.append(self._error(
                    "UNKNOWN_ESCALATION_ROLE",
                    f"Escalation role '{step.escalation_role}' does not exist",
                    index, number, "escalation_role",
                ))
        return issues

    def _check_delegation(
        self, step: StepDefinition, index: int, number: int | None,
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        has_pool = not _blank(step.delegation_role)
        if step.can_delegate and not has_pool:
            issues.append(self._warning(
                "DELEGATION_WITHOUT_POOL",
                "Delegation is allowed but no delegation role limits who may receive it",
                index, number, "delegation_role",
            ))
        if has_pool and not step.can_delegate:
            issues.append(self._warning(
                "DELEGATION_ROLE_UNUSED",
                "Delegation role is set but delegation is not allowed",
                index, number, "delegation_role",
            ))
        if has_pool and self._roles is not None and not self._roles.role_exists(step.delegation_role):
            issues.append(self._error(
                "UNKNOWN_DELEGATION_ROLE",
                f"Delegation role '{step.delegation_role}' does not exist",
                index, number, "delegation_role",
            ))
        return issues

    # ------------------------------------------------------------------

    @staticmethod
    def _error(code, message, step_index=None, step_number=None, field=None) -> ValidationIssue:
        return ValidationIssue(Severity.ERROR, code, message, step_index, step_number, field)

    @staticmethod
    def _warning(code, message, step_index=None, step_number=None, field=None) -> ValidationIssue:
        return ValidationIssue(Severity.WARNING, code, message, step_index, step_number, field)
