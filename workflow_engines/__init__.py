"""
Pure workflow calculations: template validation, skip conditions, and
step advancement planning.  Nothing here touches the database.
"""

from workflow_engines.advancement import (
    StepPlan,
    compute_due_date,
    is_skippable,
    plan_from,
    resolve_assignee,
)
from workflow_engines.conditions import (
    evaluate_predicate,
    should_skip,
    validate_conditions,
)
from workflow_engines.validator import (
    Severity,
    ValidationIssue,
    ValidationResult,
    WorkflowValidator,
)

__all__ = [
    "Severity",
    "StepPlan",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowValidator",
    "compute_due_date",
    "evaluate_predicate",
    "is_skippable",
    "plan_from",
    "resolve_assignee",
    "should_skip",
    "validate_conditions",
]
