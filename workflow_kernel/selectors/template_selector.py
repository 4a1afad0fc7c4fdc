"""
Module: workflow_kernel.selectors.template_selector
Responsibility: Read paths over the template store: by module, the full
    listing, and resolution of "the" active template for a module.
Architecture position: Kernel > Selectors.  Read-only.
"""

from sqlalchemy import select

from workflow_kernel.domain.workflow import WorkflowTemplate
from workflow_kernel.exceptions import AmbiguousActiveTemplateError, NoActiveTemplateError
from workflow_kernel.models.template import WorkflowTemplateModel
from workflow_kernel.selectors.base import BaseSelector


class TemplateSelector(BaseSelector):
    """Queries over workflow templates."""

    def list_by_module(
        self, module: str, *, include_inactive: bool = True,
    ) -> list[WorkflowTemplate]:
        stmt = select(WorkflowTemplateModel).where(WorkflowTemplateModel.module == module)
        if not include_inactive:
            stmt = stmt.where(WorkflowTemplateModel.is_active.is_(True))
        rows = self.session.execute(
            stmt.order_by(WorkflowTemplateModel.created_at, WorkflowTemplateModel.name)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def list_all(self, *, include_inactive: bool = True) -> list[WorkflowTemplate]:
        """Every template, grouped by module, newest first within a module."""
        stmt = select(WorkflowTemplateModel)
        if not include_inactive:
            stmt = stmt.where(WorkflowTemplateModel.is_active.is_(True))
        rows = self.session.execute(
            stmt.order_by(
                WorkflowTemplateModel.module,
                WorkflowTemplateModel.created_at.desc(),
                WorkflowTemplateModel.name,
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def resolve_active(self, module: str) -> WorkflowTemplate:
        """Return the single active template for a module.

        Raises:
            NoActiveTemplateError: none is active.  Never treated as
                "no approval required".
            AmbiguousActiveTemplateError: more than one is active.
        """
        rows = self.session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.module == module,
                WorkflowTemplateModel.is_active.is_(True),
            )
        ).scalars().all()
        if not rows:
            raise NoActiveTemplateError(module)
        if len(rows) > 1:
            raise AmbiguousActiveTemplateError(module, sorted(str(r.id) for r in rows))
        return rows[0].to_dto()
