"""
workflow_services -- stateful orchestration over the workflow kernel.

Services compose the pure engines (validation, step planning) with the
kernel's models, selectors and audit log.  All of them flush inside the
caller's transaction and never commit.
"""

from workflow_services.directory import InMemoryDirectory, LoggingNotifier, RecordingNotifier
from workflow_services.migration_service import MigrationAnalyzer
from workflow_services.template_service import TemplateService
from workflow_services.workflow_engine import SYSTEM_ACTOR, WorkflowEngine

__all__ = [
    "InMemoryDirectory",
    "LoggingNotifier",
    "MigrationAnalyzer",
    "RecordingNotifier",
    "SYSTEM_ACTOR",
    "TemplateService",
    "WorkflowEngine",
]
