"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval routing fails in a handful of well-understood ways, and callers
(API handlers, the overdue scheduler, the migration CLI) need to react to
each one differently.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        engine.process_step_action(instance_id, 2, "approve", user_id=uid)
    except Exception as e:
        if "not current" in str(e):  # FRAGILE - message might change
            refresh_queue()

Example - RIGHT way (what this module enables):
    try:
        engine.process_step_action(instance_id, 2, "approve", user_id=uid)
    except StepNotFoundError as e:
        api_response(code=e.code, current_step=e.current_step_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- TemplateError
    |   +-- ValidationFailedError
    |   +-- NoActiveTemplateError
    |   +-- AmbiguousActiveTemplateError
    |
    +-- InstanceError
    |   +-- InstanceNotActiveError
    |   +-- DuplicateInstanceError
    |
    +-- StepError
    |   +-- StepNotFoundError
    |       +-- StaleStepError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |   +-- InvalidDelegationError
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- StepExecutionNotFoundError
    |   +-- MigrationNotFoundError
    |
    +-- MigrationError
    |   +-- MigrationConflictError
    |   +-- UnknownLegacyModuleError
    |   +-- InvalidMigrationTransitionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Template        | VALIDATION_FAILED             | Template/steps structurally invalid
                | NO_ACTIVE_TEMPLATE            | Module has no active template
                | AMBIGUOUS_ACTIVE_TEMPLATE     | Module has more than one active template
----------------|-------------------------------|---------------------------------------
Instance        | INSTANCE_NOT_ACTIVE           | Action on a terminal instance
                | DUPLICATE_INSTANCE            | Entity already has a live instance
----------------|-------------------------------|---------------------------------------
Step            | STEP_NOT_FOUND                | Step number is not the current step
                | STALE_STEP                    | Concurrent writer resolved the step first
----------------|-------------------------------|---------------------------------------
Authorization   | NOT_AUTHORIZED                | Actor lacks role/assignment/delegation
                | INVALID_DELEGATION            | Delegate missing or not eligible
----------------|-------------------------------|---------------------------------------
Not found       | TEMPLATE_NOT_FOUND            | Unknown template id
                | INSTANCE_NOT_FOUND            | Unknown instance id
                | STEP_EXECUTION_NOT_FOUND      | Unknown step execution id
                | MIGRATION_NOT_FOUND           | No migration recorded for module
----------------|-------------------------------|---------------------------------------
Migration       | MIGRATION_CONFLICT            | Module already migrated
                | UNKNOWN_LEGACY_MODULE         | Module absent from the legacy catalog
                | INVALID_MIGRATION_TRANSITION  | Illegal migration status change
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying a resolved history record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. STALE STEPS ARE SURFACED, NOT RETRIED:

    except StepNotFoundError as e:
        # Someone else resolved the step; refresh the queue and let the
        # user decide.  StaleStepError is a subclass, so one clause covers
        # both the pre-check and the commit-time race.
        return refresh(e.instance_id)

2. VALIDATION FAILURES CARRY EVERY ISSUE:

    except ValidationFailedError as e:
        return {
            "error": e.code,
            "errors": [issue.to_dict() for issue in e.errors],
            "warnings": [issue.to_dict() for issue in e.warnings],
        }

3. MISSING TEMPLATES ARE CONFIGURATION ERRORS:

    except NoActiveTemplateError as e:
        # Never fall back to "no approval required".
        alert_admins(e.module)
        raise

===============================================================================
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Template-related exceptions


class TemplateError(WorkflowKernelError):
    """Base exception for template-related errors."""

    code: str = "TEMPLATE_ERROR"


class ValidationFailedError(TemplateError):
    """
    Template or step set is structurally invalid.

    Always carries the complete issue lists so an admin surface can
    highlight every offending step at once.
    """

    code: str = "VALIDATION_FAILED"

    def __init__(self, template_name: str, errors: list, warnings: list | None = None):
        self.template_name = template_name
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            f"Workflow template '{template_name}' failed validation: "
            f"{len(self.errors)} error(s), {len(self.warnings)} warning(s)"
        )


class NoActiveTemplateError(TemplateError):
    """No active template is configured for the module."""

    code: str = "NO_ACTIVE_TEMPLATE"

    def __init__(self, module: str):
        self.module = module
        super().__init__(f"No active workflow template for module: {module}")


class AmbiguousActiveTemplateError(TemplateError):
    """More than one template is active for the module."""

    code: str = "AMBIGUOUS_ACTIVE_TEMPLATE"

    def __init__(self, module: str, template_ids: list[str]):
        self.module = module
        self.template_ids = template_ids
        super().__init__(
            f"Module {module} has {len(template_ids)} active templates; "
            "exactly one is required"
        )


# Instance-related exceptions


class InstanceError(WorkflowKernelError):
    """Base exception for workflow instance errors."""

    code: str = "INSTANCE_ERROR"


class InstanceNotActiveError(InstanceError):
    """Action attempted on an instance that is already terminal."""

    code: str = "INSTANCE_NOT_ACTIVE"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(
            f"Workflow instance {instance_id} is {status}; no further actions allowed"
        )


class DuplicateInstanceError(InstanceError):
    """The entity already has a non-terminal workflow instance."""

    code: str = "DUPLICATE_INSTANCE"

    def __init__(self, entity_type: str, entity_id: str, existing_instance_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_instance_id = existing_instance_id
        super().__init__(
            f"{entity_type} {entity_id} already has live workflow instance "
            f"{existing_instance_id}"
        )


# Step-related exceptions


class StepError(WorkflowKernelError):
    """Base exception for step-related errors."""

    code: str = "STEP_ERROR"


class StepNotFoundError(StepError):
    """
    The targeted step is not the instance's current step.

    Raised for double-clicks and retries against a step that has already
    been resolved.  Not retried automatically.
    """

    code: str = "STEP_NOT_FOUND"

    def __init__(
        self,
        instance_id: str,
        step_number: int,
        current_step_number: int | None,
    ):
        self.instance_id = instance_id
        self.step_number = step_number
        self.current_step_number = current_step_number
        super().__init__(
            f"Step {step_number} is not current for instance {instance_id} "
            f"(current step: {current_step_number})"
        )


class StaleStepError(StepNotFoundError):
    """A concurrent transaction resolved the step between read and write."""

    code: str = "STALE_STEP"

    def __init__(self, instance_id: str, step_number: int):
        super().__init__(instance_id, step_number, None)
        self.args = (
            f"Step {step_number} of instance {instance_id} was modified "
            "by another transaction",
        )


# Authorization-related exceptions


class AuthorizationError(WorkflowKernelError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor does not satisfy the step's role, assignment or delegation rule."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, user_id: str, instance_id: str, step_number: int, reason: str):
        self.user_id = user_id
        self.instance_id = instance_id
        self.step_number = step_number
        self.reason = reason
        super().__init__(
            f"User {user_id} may not act on step {step_number} of "
            f"instance {instance_id}: {reason}"
        )


class InvalidDelegationError(AuthorizationError):
    """Delegation target is missing, unknown, or ineligible."""

    code: str = "INVALID_DELEGATION"

    def __init__(self, delegated_by: str, delegated_to: str | None, reason: str):
        self.delegated_by = delegated_by
        self.delegated_to = delegated_to
        self.reason = reason
        super().__init__(
            f"Delegation from {delegated_by} to {delegated_to} rejected: {reason}"
        )


# Not-found exceptions


class NotFoundError(WorkflowKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class TemplateNotFoundError(NotFoundError):
    """Template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Workflow template not found: {template_id}")


class InstanceNotFoundError(NotFoundError):
    """Workflow instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


class StepExecutionNotFoundError(NotFoundError):
    """Step execution with given ID was not found."""

    code: str = "STEP_EXECUTION_NOT_FOUND"

    def __init__(self, step_execution_id: str):
        self.step_execution_id = step_execution_id
        super().__init__(f"Step execution not found: {step_execution_id}")


class MigrationNotFoundError(NotFoundError):
    """No migration has been recorded for the module."""

    code: str = "MIGRATION_NOT_FOUND"

    def __init__(self, module: str):
        self.module = module
        super().__init__(f"No migration found for module: {module}")


# Migration-related exceptions


class MigrationError(WorkflowKernelError):
    """Base exception for migration errors."""

    code: str = "MIGRATION_ERROR"


class MigrationConflictError(MigrationError):
    """The module already has a completed migration; roll it back first."""

    code: str = "MIGRATION_CONFLICT"

    def __init__(self, module: str, migration_id: str):
        self.module = module
        self.migration_id = migration_id
        super().__init__(
            f"Module {module} already migrated (migration {migration_id}); "
            "roll back before migrating again"
        )


class UnknownLegacyModuleError(MigrationError):
    """The legacy catalog has no flow for the module."""

    code: str = "UNKNOWN_LEGACY_MODULE"

    def __init__(self, module: str, known_modules: list[str]):
        self.module = module
        self.known_modules = known_modules
        super().__init__(
            f"Unknown module: {module} (known: {', '.join(known_modules)})"
        )


class InvalidMigrationTransitionError(MigrationError):
    """Migration record cannot move between the given statuses."""

    code: str = "INVALID_MIGRATION_TRANSITION"

    def __init__(self, migration_id: str, from_status: str, to_status: str):
        self.migration_id = migration_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Migration {migration_id} cannot transition from "
            f"{from_status} to {to_status}"
        )


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Resolved step executions and audit entries are never edited or
    removed; corrections are new rows.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
