"""
Tests for MigrationAnalyzer -- moving legacy approval chains onto templates.

Covers:
- analyze(): suggested template, complexity, findings, read-only
- generate_report(): ready / attention / already migrated partitions
- execute(): template written through the validated path, backup file,
  migration record, conflict on a second run, failure bookkeeping
- rollback(): deactivation, status, re-migration reuses the template
"""

import json
from pathlib import Path

import pytest

from workflow_config.legacy_catalog import load_legacy_catalog, parse_catalog
from workflow_config.settings import PACKAGE_DIR
from workflow_kernel.domain.migration import MigrationComplexity, MigrationStatus
from workflow_kernel.exceptions import (
    InvalidMigrationTransitionError,
    MigrationConflictError,
    MigrationNotFoundError,
    NoActiveTemplateError,
    TemplateNotFoundError,
    UnknownLegacyModuleError,
)
from workflow_kernel.models.audit import AuditAction
from workflow_kernel.models.migration import WorkflowMigrationModel
from workflow_kernel.models.template import WorkflowTemplateModel
from workflow_services.migration_service import MigrationAnalyzer

from tests.factories import ADMIN_ID


def flow(*roles, branches=1, status_flow=("Draft", "Approved")):
    return {
        "template_name": "Custom Flow",
        "branches": branches,
        "status_flow": list(status_flow),
        "dependencies": ["src/app/api/custom/route.ts"],
        "steps": [{"name": f"{role} Review", "role": role} for role in roles],
    }


@pytest.fixture
def catalog():
    return load_legacy_catalog(PACKAGE_DIR / "legacy_flows.yaml")


@pytest.fixture
def backup_dir(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def make_analyzer(session, template_service, auditor_service, deterministic_clock, backup_dir):
    def _make(catalog, directory=None):
        return MigrationAnalyzer(
            session, catalog, template_service,
            backup_dir=directory or backup_dir,
            auditor=auditor_service, clock=deterministic_clock,
        )
    return _make


@pytest.fixture
def analyzer(make_analyzer, catalog) -> MigrationAnalyzer:
    return make_analyzer(catalog)


class TestAnalyze:
    """analyze() proposes without writing."""

    def test_travel_request_suggestion(self, analyzer, catalog):
        analysis = analyzer.analyze("trf")

        assert analysis.module == "trf"
        assert analysis.complexity == MigrationComplexity.MEDIUM
        assert analysis.conditional_branches == 3
        assert analysis.catalog_checksum == catalog.checksum

        template = analysis.suggested_template
        assert template.name == "Standard TRF Approval Workflow"
        assert template.description == "Migrated from hardcoded trf approval process"
        assert [s.step_number for s in template.steps] == [1, 2, 3]
        assert [s.required_role for s in template.steps] == [
            "Department Focal", "Line Manager", "HOD",
        ]
        assert all(s.is_mandatory for s in template.steps)
        assert template.steps[2].escalation_role == "Senior Management"
        assert template.steps[2].timeout_days == 7

    def test_findings_carry_validator_warnings(self, analyzer):
        findings = analyzer.analyze("trf").findings

        assert not any(f.startswith("error: ") for f in findings)
        assert any("TIMEOUT_WITHOUT_ESCALATION" in f for f in findings)
        assert all(f.startswith("warning: ") for f in findings)

    def test_unmapped_status_reported(self, analyzer):
        findings = analyzer.analyze("claims").findings

        assert (
            "status 'Pending Verification' names no role in the approval chain; "
            "map it to a step before cutover"
        ) in findings

    @pytest.mark.parametrize("module,complexity", [
        ("transport", MigrationComplexity.LOW),
        ("visa", MigrationComplexity.LOW),
        ("claims", MigrationComplexity.MEDIUM),
    ])
    def test_complexity(self, analyzer, module, complexity):
        assert analyzer.analyze(module).complexity == complexity

    def test_unknown_module(self, analyzer):
        with pytest.raises(UnknownLegacyModuleError) as exc_info:
            analyzer.analyze("procurement")

        assert "trf" in exc_info.value.known_modules

    def test_read_only(self, analyzer, session):
        analyzer.analyze_all()

        assert session.query(WorkflowTemplateModel).count() == 0
        assert session.query(WorkflowMigrationModel).count() == 0

    def test_to_dict_is_json_safe(self, analyzer):
        data = analyzer.analyze("visa").to_dict()

        assert json.loads(json.dumps(data))["complexity"] == "low"
        assert data["suggested_template"]["steps"][0]["required_role"] == "HR"


class TestReport:

    def test_portfolio(self, analyzer):
        report = analyzer.generate_report()

        assert report.total_modules == 5
        assert report.ready_for_migration == ("visa", "transport", "accommodation")
        assert report.requires_attention == ()
        assert report.already_migrated == ()
        efforts = {e.module: e for e in report.estimated_effort}
        assert efforts["trf"].effort == MigrationComplexity.MEDIUM
        assert efforts["trf"].time_estimate == "3-5 days"
        assert efforts["visa"].time_estimate == "1-2 days"

    def test_high_complexity_and_errors_need_attention(self, make_analyzer):
        catalog = parse_catalog({"flows": {
            "claims": flow("Line Manager", "HOD", branches=6),
            "visa": flow("Consular Desk"),
            "transport": flow("Line Manager"),
        }})

        report = make_analyzer(catalog).generate_report()

        assert report.requires_attention == ("claims", "visa")
        assert report.ready_for_migration == ("transport",)
        efforts = {e.module: e.time_estimate for e in report.estimated_effort}
        assert efforts["claims"] == "1-2 weeks"

    def test_migrated_modules_listed_separately(self, analyzer):
        analyzer.execute("visa", actor_id=ADMIN_ID)

        report = analyzer.generate_report()

        assert report.already_migrated == ("visa",)
        assert "visa" not in report.ready_for_migration


class TestExecute:

    def test_execute_creates_active_template(self, analyzer, template_service, backup_dir):
        result = analyzer.execute("visa", actor_id=ADMIN_ID)

        assert result.success
        assert result.message == "Successfully migrated visa workflow to configurable system"
        active = template_service.resolve_active("visa")
        assert active.template_id == result.workflow_id
        assert active.name == "Standard Visa Approval Workflow"
        assert len(active.steps) == 3

        record = analyzer.history("visa")[0]
        assert record.status == MigrationStatus.COMPLETED
        assert record.executed_by == ADMIN_ID
        assert record.workflow_id == result.workflow_id
        assert record.analysis_data["module"] == "visa"
        assert len(record.analysis_hash) == 64

    def test_backup_written(self, analyzer, backup_dir):
        result = analyzer.execute("visa")

        assert len(result.backup_refs) == 1
        path = Path(result.backup_refs[0])
        assert path.parent == backup_dir
        assert path.name.startswith("visa-20240101T120000-")
        payload = json.loads(path.read_text())
        assert payload["module"] == "visa"
        assert payload["migration_id"] == str(result.migration_id)
        assert payload["templates"] == []
        assert payload["legacy_dependencies"] == ["src/app/api/visa/[visaId]/action/route.ts"]
        assert payload["analysis"]["complexity"] == "low"

    def test_backup_lists_existing_templates(self, analyzer, trf_workflow):
        result = analyzer.execute("trf")

        payload = json.loads(Path(result.backup_refs[0]).read_text())
        assert [t["name"] for t in payload["templates"]] == ["T"]
        assert payload["templates"][0]["is_active"] is True

    def test_without_backup(self, analyzer, backup_dir):
        result = analyzer.execute("transport", create_backup=False)

        assert result.success
        assert result.backup_refs == ()
        assert not backup_dir.exists()

    def test_existing_active_template_stays_active(self, analyzer, template_service, trf_workflow):
        result = analyzer.execute("trf")

        assert result.success
        assert template_service.resolve_active("trf").template_id == trf_workflow.template_id
        assert template_service.get(result.workflow_id).is_active is False

    def test_second_execute_conflicts(self, analyzer):
        first = analyzer.execute("visa")

        with pytest.raises(MigrationConflictError) as exc_info:
            analyzer.execute("visa")

        assert exc_info.value.migration_id == str(first.migration_id)

    def test_invalid_suggestion_fails_cleanly(self, make_analyzer, session):
        analyzer = make_analyzer(parse_catalog({"flows": {"visa": flow("Consular Desk")}}))

        result = analyzer.execute("visa", actor_id=ADMIN_ID)

        assert not result.success
        assert any("UNKNOWN_ROLE" in e for e in result.errors)
        assert session.query(WorkflowTemplateModel).count() == 0
        record = analyzer.history("visa")[0]
        assert record.status == MigrationStatus.FAILED
        assert "failed validation" in record.error_message

    def test_backup_io_error_recorded(self, make_analyzer, catalog, tmp_path, template_service):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("occupied")
        analyzer = make_analyzer(catalog, directory=blocker)

        result = analyzer.execute("visa")

        assert not result.success
        assert result.message.startswith("Migration failed:")
        assert analyzer.history("visa")[0].status == MigrationStatus.FAILED
        with pytest.raises(NoActiveTemplateError):
            template_service.resolve_active("visa")

    def test_failed_attempt_can_be_retried(self, make_analyzer, catalog, tmp_path, deterministic_clock):
        blocker = tmp_path / "blocked"
        blocker.write_text("occupied")
        make_analyzer(catalog, directory=blocker).execute("visa")
        deterministic_clock.advance(60)

        result = make_analyzer(catalog).execute("visa")

        assert result.success
        assert [m.status for m in make_analyzer(catalog).history("visa")] == [
            MigrationStatus.COMPLETED, MigrationStatus.FAILED,
        ]

    def test_audited(self, analyzer, auditor_service):
        result = analyzer.execute("visa", actor_id=ADMIN_ID)

        trace = auditor_service.get_trace("WorkflowMigration", result.migration_id)
        assert trace.actions == (AuditAction.MIGRATION_EXECUTED,)
        assert trace.entries[0].details["workflow_id"] == str(result.workflow_id)


class TestRollback:

    def test_rollback_deactivates(self, analyzer, template_service, deterministic_clock):
        executed = analyzer.execute("visa")
        deterministic_clock.advance(60)

        result = analyzer.rollback("visa", actor_id=ADMIN_ID)

        assert result.success
        assert result.message == "Successfully rolled back migration for visa"
        assert result.workflow_id == executed.workflow_id
        with pytest.raises(NoActiveTemplateError):
            template_service.resolve_active("visa")
        record = analyzer.history("visa")[0]
        assert record.status == MigrationStatus.ROLLED_BACK
        assert record.rollback_date == deterministic_clock.now()

    def test_rollback_restores_previous_active_set(self, analyzer, template_service, trf_workflow):
        analyzer.execute("trf")

        analyzer.rollback("trf")

        assert template_service.resolve_active("trf").template_id == trf_workflow.template_id

    def test_never_migrated(self, analyzer):
        with pytest.raises(MigrationNotFoundError):
            analyzer.rollback("visa")

    def test_rollback_twice(self, analyzer):
        analyzer.execute("visa")
        analyzer.rollback("visa")

        with pytest.raises(InvalidMigrationTransitionError) as exc_info:
            analyzer.rollback("visa")

        assert exc_info.value.from_status == "rolled_back"

    def test_rollback_of_failed_migration(self, make_analyzer):
        analyzer = make_analyzer(parse_catalog({"flows": {"visa": flow("Consular Desk")}}))
        analyzer.execute("visa")

        with pytest.raises(InvalidMigrationTransitionError):
            analyzer.rollback("visa")

    def test_failed_rollback_can_be_retried(
        self, analyzer, template_service, auditor_service, monkeypatch,
    ):
        executed = analyzer.execute("visa")
        real_delete = template_service.delete

        def unavailable(template_id, actor_id):
            raise TemplateNotFoundError(str(template_id))

        monkeypatch.setattr(template_service, "delete", unavailable)
        failed = analyzer.rollback("visa", actor_id=ADMIN_ID)

        assert not failed.success
        assert failed.message.startswith("Rollback failed: Workflow template not found")
        record = analyzer.history("visa")[0]
        assert record.status == MigrationStatus.COMPLETED
        assert record.error_message.startswith("Rollback failed")
        assert template_service.resolve_active("visa").template_id == executed.workflow_id

        monkeypatch.setattr(template_service, "delete", real_delete)
        retried = analyzer.rollback("visa", actor_id=ADMIN_ID)

        assert retried.success
        record = analyzer.history("visa")[0]
        assert record.status == MigrationStatus.ROLLED_BACK
        assert record.error_message is None
        trace = auditor_service.get_trace("WorkflowMigration", executed.migration_id)
        assert trace.actions == (
            AuditAction.MIGRATION_EXECUTED,
            AuditAction.MIGRATION_ROLLBACK_FAILED,
            AuditAction.MIGRATION_ROLLED_BACK,
        )

    def test_remigration_reuses_template(self, analyzer, template_service, deterministic_clock):
        first = analyzer.execute("visa")
        deterministic_clock.advance(60)
        analyzer.rollback("visa")
        deterministic_clock.advance(60)

        second = analyzer.execute("visa")

        assert second.success
        assert second.workflow_id == first.workflow_id
        assert template_service.resolve_active("visa").template_id == first.workflow_id
        assert [m.status for m in analyzer.history("visa")] == [
            MigrationStatus.COMPLETED, MigrationStatus.ROLLED_BACK,
        ]

    def test_rollback_audited(self, analyzer, auditor_service):
        executed = analyzer.execute("visa")
        analyzer.rollback("visa")

        trace = auditor_service.get_trace("WorkflowMigration", executed.migration_id)
        assert trace.actions == (
            AuditAction.MIGRATION_EXECUTED, AuditAction.MIGRATION_ROLLED_BACK,
        )
