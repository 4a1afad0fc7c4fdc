"""ORM models for the workflow kernel.

Importing this package registers every table on ``Base.metadata``.
"""

from workflow_kernel.models.audit import AuditAction, WorkflowAuditEntry
from workflow_kernel.models.instance import StepExecutionModel, WorkflowInstanceModel
from workflow_kernel.models.migration import WorkflowMigrationModel
from workflow_kernel.models.template import WorkflowStepModel, WorkflowTemplateModel

__all__ = [
    "AuditAction",
    "WorkflowAuditEntry",
    "WorkflowTemplateModel",
    "WorkflowStepModel",
    "WorkflowInstanceModel",
    "StepExecutionModel",
    "WorkflowMigrationModel",
]
