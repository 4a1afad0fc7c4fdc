"""
Tests for TemplateService -- validated template CRUD.

Covers:
- validate(): validator findings merged with store conflicts, no writes
- create(): persistence, step ordering, audit, refusal of invalid input
- update(): in-place step replacement, self-conflict exclusion
- delete(): soft deactivation, idempotent
- activate_template(): one active template per module
- reads: get, list_by_module, list_all, resolve_active
"""

from uuid import uuid4

import pytest

from workflow_kernel.exceptions import (
    NoActiveTemplateError,
    TemplateNotFoundError,
    ValidationFailedError,
)
from workflow_kernel.models.audit import AuditAction
from workflow_kernel.models.template import WorkflowTemplateModel

from tests.factories import ADMIN_ID, make_step, make_template, trf_template


class TestValidate:
    """validate() never writes."""

    def test_clean_definition(self, template_service):
        result = template_service.validate(trf_template())

        assert result.is_valid

    def test_duplicate_name(self, template_service, trf_workflow):
        result = template_service.validate(trf_template(name="T", is_active=False))

        assert result.error_codes() == {"DUPLICATE_NAME"}

    def test_second_active_template(self, template_service, trf_workflow):
        result = template_service.validate(trf_template(name="T2"))

        assert result.error_codes() == {"ACTIVE_TEMPLATE_EXISTS"}
        assert "'T'" in result.errors[0].message

    def test_inactive_alternative_allowed(self, template_service, trf_workflow):
        result = template_service.validate(trf_template(name="T2", is_active=False))

        assert result.is_valid

    def test_self_is_not_a_conflict(self, template_service, trf_workflow):
        result = template_service.validate(
            trf_template(name="T"), template_id=trf_workflow.template_id,
        )

        assert result.is_valid

    def test_writes_nothing(self, template_service, session):
        template_service.validate(trf_template())

        assert session.query(WorkflowTemplateModel).count() == 0


class TestCreate:

    def test_create_persists_ordered_steps(self, template_service):
        template = template_service.create(make_template(
            make_step(2, "HOD", name="Second"),
            make_step(1, "Line Manager", name="First"),
            description="Two steps",
        ), ADMIN_ID)

        assert template.name == "Test Workflow"
        assert template.module == "trf"
        assert template.is_active
        assert template.description == "Two steps"
        assert [s.step_name for s in template.steps] == ["First", "Second"]
        assert template.created_at is not None

    def test_step_fields_round_trip(self, template_service):
        conditions = {"skip_if": {"field": "amount", "op": "lt", "value": 100}}
        template = template_service.create(make_template(
            make_step(1, "Line Manager"),
            make_step(
                2, "HOD", is_mandatory=False, can_delegate=True,
                delegation_role="Senior Management", timeout_days=5,
                escalation_role="Senior Management", conditions=conditions,
                description="Final sign-off",
            ),
        ), ADMIN_ID)

        step = template.steps[1]
        assert step.is_mandatory is False
        assert step.can_delegate is True
        assert step.delegation_role == "Senior Management"
        assert step.timeout_days == 5
        assert step.escalation_role == "Senior Management"
        assert step.conditions == conditions
        assert step.description == "Final sign-off"

    def test_name_is_trimmed(self, template_service):
        template = template_service.create(
            make_template(make_step(1), name="  Padded  "), ADMIN_ID,
        )

        assert template.name == "Padded"

    def test_invalid_definition_rejected(self, template_service, session):
        with pytest.raises(ValidationFailedError) as exc_info:
            template_service.create(make_template(
                make_step(1), make_step(3, "Unknown Role"),
            ), ADMIN_ID)

        codes = {e.code for e in exc_info.value.errors}
        assert codes == {"STEP_SEQUENCE_GAP", "UNKNOWN_ROLE"}
        assert session.query(WorkflowTemplateModel).count() == 0

    def test_second_active_rejected(self, template_service, trf_workflow):
        with pytest.raises(ValidationFailedError) as exc_info:
            template_service.create(trf_template(name="T2"), ADMIN_ID)

        assert [e.code for e in exc_info.value.errors] == ["ACTIVE_TEMPLATE_EXISTS"]

    def test_warnings_carried_but_saved(self, template_service, auditor_service):
        template = template_service.create(
            make_template(make_step(1, timeout_days=3)), ADMIN_ID,
        )

        trace = auditor_service.get_trace("WorkflowTemplate", template.template_id)
        assert trace.actions == (AuditAction.TEMPLATE_CREATED,)
        assert trace.entries[0].details["warnings"] == ["TIMEOUT_WITHOUT_ESCALATION"]
        assert trace.entries[0].actor_id == ADMIN_ID


class TestUpdate:

    def test_replaces_steps(self, template_service, trf_workflow):
        updated = template_service.update(
            trf_workflow.template_id,
            make_template(
                make_step(1, "Line Manager"), make_step(2, "Finance"),
                name="T", description="Finance added",
            ),
            ADMIN_ID,
        )

        assert [s.required_role for s in updated.steps] == ["Line Manager", "Finance"]
        assert updated.description == "Finance added"
        assert template_service.get(trf_workflow.template_id).steps == updated.steps

    def test_renumbering_existing_steps(self, template_service, trf_workflow):
        """Swapping step numbers does not trip the per-template unique index."""
        updated = template_service.update(
            trf_workflow.template_id,
            make_template(make_step(1, "HOD"), make_step(2, "Department Focal"), name="T"),
            ADMIN_ID,
        )

        assert [s.required_role for s in updated.steps] == ["HOD", "Department Focal"]

    def test_invalid_update_leaves_template(self, template_service, trf_workflow):
        with pytest.raises(ValidationFailedError):
            template_service.update(trf_workflow.template_id, make_template(name="T"), ADMIN_ID)

        assert len(template_service.get(trf_workflow.template_id).steps) == 3

    def test_unknown_template(self, template_service):
        with pytest.raises(TemplateNotFoundError):
            template_service.update(uuid4(), trf_template(), ADMIN_ID)

    def test_audited(self, template_service, trf_workflow, auditor_service):
        template_service.update(trf_workflow.template_id, trf_template(name="T"), ADMIN_ID)

        trace = auditor_service.get_trace("WorkflowTemplate", trf_workflow.template_id)
        assert trace.actions == (AuditAction.TEMPLATE_CREATED, AuditAction.TEMPLATE_UPDATED)


class TestDeleteAndActivate:

    def test_delete_deactivates(self, template_service, trf_workflow):
        deleted = template_service.delete(trf_workflow.template_id, ADMIN_ID)

        assert deleted.is_active is False
        with pytest.raises(NoActiveTemplateError):
            template_service.resolve_active("trf")
        assert template_service.get(trf_workflow.template_id).name == "T"

    def test_delete_is_idempotent(self, template_service, trf_workflow, auditor_service):
        template_service.delete(trf_workflow.template_id, ADMIN_ID)
        template_service.deactivate_template(trf_workflow.template_id, ADMIN_ID)

        trace = auditor_service.get_trace("WorkflowTemplate", trf_workflow.template_id)
        assert trace.actions.count(AuditAction.TEMPLATE_DEACTIVATED) == 1

    def test_activate_replaces_previous(self, template_service, trf_workflow, auditor_service):
        replacement = template_service.create(
            trf_template(name="T2", is_active=False), ADMIN_ID,
        )

        activated = template_service.activate_template(replacement.template_id, ADMIN_ID)

        assert activated.is_active
        assert template_service.get(trf_workflow.template_id).is_active is False
        assert template_service.resolve_active("trf").template_id == replacement.template_id
        old_trace = auditor_service.get_trace("WorkflowTemplate", trf_workflow.template_id)
        assert old_trace.actions[-1] == AuditAction.TEMPLATE_DEACTIVATED
        assert old_trace.entries[-1].details["replaced_by"] == str(replacement.template_id)

    def test_activate_already_active(self, template_service, trf_workflow):
        again = template_service.activate_template(trf_workflow.template_id, ADMIN_ID)

        assert again.is_active

    def test_list_by_module(self, template_service, trf_workflow):
        template_service.create(trf_template(name="T2", is_active=False), ADMIN_ID)
        template_service.create(trf_template(name="C", module="claims"), ADMIN_ID)

        all_trf = template_service.list_by_module("trf")
        active_trf = template_service.list_by_module("trf", include_inactive=False)

        assert sorted(t.name for t in all_trf) == ["T", "T2"]
        assert [t.name for t in active_trf] == ["T"]

    def test_list_all(self, template_service, trf_workflow, deterministic_clock):
        """Grouped by module, newest first within a module."""
        deterministic_clock.advance(60)
        template_service.create(trf_template(name="T2", is_active=False), ADMIN_ID)
        template_service.create(trf_template(name="C", module="claims"), ADMIN_ID)

        everything = template_service.list_all()
        active = template_service.list_all(include_inactive=False)

        assert [(t.module, t.name) for t in everything] == [
            ("claims", "C"), ("trf", "T2"), ("trf", "T"),
        ]
        assert [t.name for t in active] == ["C", "T"]

    def test_get_unknown(self, template_service):
        with pytest.raises(TemplateNotFoundError):
            template_service.get(uuid4())
