"""Builders for template definitions shared across the test packages."""

from workflow_kernel.domain.workflow import StepDefinition, TemplateDefinition

ADMIN_ID = "u-admin"
EMPLOYEE_ID = "u-employee"
KNOWN_MODULES = ("trf", "claims", "visa", "transport", "accommodation")


def make_step(
    step_number: int,
    role: str | None = "Line Manager",
    *,
    name: str | None = None,
    user: str | None = None,
    **kwargs,
) -> StepDefinition:
    return StepDefinition(
        step_number=step_number,
        step_name=name or f"Step {step_number}",
        required_role=role if user is None else None,
        assigned_user_id=user,
        **kwargs,
    )


def make_template(
    *steps: StepDefinition,
    name: str = "Test Workflow",
    module: str = "trf",
    is_active: bool = True,
    description: str | None = None,
) -> TemplateDefinition:
    return TemplateDefinition(
        name=name,
        module=module,
        steps=steps,
        description=description,
        is_active=is_active,
    )


def trf_template(**kwargs) -> TemplateDefinition:
    """Focal -> Line Manager -> HOD, HOD escalating to Senior Management after 7 days."""
    return make_template(
        make_step(1, "Department Focal", name="Department Focal Review", can_delegate=True),
        make_step(2, "Line Manager", name="Line Manager Approval"),
        make_step(
            3, "HOD", name="HOD Final Approval",
            timeout_days=7, escalation_role="Senior Management",
        ),
        **kwargs,
    )
