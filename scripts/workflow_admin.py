#!/usr/bin/env python3
"""
Operator CLI for the approval workflow engine.

Commands:
  init-db                 create all workflow tables
  validate FILE           validate a template file (YAML or JSON) without saving
  analyze MODULE          show the migration analysis for a legacy module
  report                  migration readiness across every legacy module
  migrate MODULE          move a legacy module onto its suggested template
  rollback MODULE         deactivate the migrated template for a module
  escalate-overdue        escalate every pending step past its due date

Settings come from workflow_config (defaults.yaml, WORKFLOW_SETTINGS_FILE,
WORKFLOW_* environment variables).  Role checks use the optional
--directory file:

  roles: [HR, HOD, ...]
  users:
    u-hod: [HOD]

Usage:
  python3 scripts/workflow_admin.py migrate trf --actor admin-1
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Approval workflow administration")
    p.add_argument("--settings", type=Path, help="YAML overlay for defaults.yaml")
    p.add_argument("--db-url", help="Database URL (overrides settings)")
    p.add_argument("--directory", type=Path, help="YAML file of roles and user memberships")
    p.add_argument("--actor", default="system", help="Actor id recorded in the audit log")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create workflow tables")

    v = sub.add_parser("validate", help="Validate a template file without saving")
    v.add_argument("file", type=Path)

    a = sub.add_parser("analyze", help="Migration analysis for one legacy module")
    a.add_argument("module")

    sub.add_parser("report", help="Migration readiness report")

    m = sub.add_parser("migrate", help="Execute the migration for a legacy module")
    m.add_argument("module")
    m.add_argument("--no-backup", action="store_true", help="Skip the JSON backup snapshot")

    r = sub.add_parser("rollback", help="Roll back the migration for a legacy module")
    r.add_argument("module")

    sub.add_parser("escalate-overdue", help="Escalate pending steps past their due date")
    return p.parse_args(argv)


def _load_directory(path):
    from workflow_config.settings import load_yaml_file
    from workflow_services.directory import InMemoryDirectory

    if path is None:
        return None
    data = load_yaml_file(path)
    return InMemoryDirectory(
        roles=data.get("roles", ()),
        memberships=data.get("users") or {},
        inactive_users=data.get("inactive_users", ()),
    )


def _build_validator(settings, directory):
    from workflow_engines.validator import WorkflowValidator

    return WorkflowValidator(
        role_registry=directory,
        user_directory=directory,
        known_modules=settings.known_modules,
        max_steps=settings.max_steps,
        max_name_length=settings.max_name_length,
        max_description_length=settings.max_description_length,
        long_timeout_days=settings.long_timeout_warning_days,
    )


def _print_issues(result) -> None:
    print(f"  {result.summary()}")
    for issue in result.errors:
        print(f"    ERROR   {issue}")
    for issue in result.warnings:
        print(f"    WARNING {issue}")


def _print_analysis(analysis) -> None:
    template = analysis.suggested_template
    print(f"  Module:       {analysis.module}")
    print(f"  Complexity:   {analysis.complexity.value} ({analysis.conditional_branches} branches)")
    print(f"  Template:     {template.name}")
    for step in template.ordered_steps():
        extras = []
        if step.timeout_days:
            extras.append(f"timeout {step.timeout_days}d")
        if step.escalation_role:
            extras.append(f"escalates to {step.escalation_role}")
        if step.can_delegate:
            extras.append("delegable")
        suffix = f"  [{', '.join(extras)}]" if extras else ""
        print(f"    {step.step_number}. {step.step_name} -> {step.required_role}{suffix}")
    print(f"  Status flow:  {', '.join(analysis.status_flow)}")
    for change in analysis.required_changes:
        print(f"  Change:       {change.file}: {change.description}")
    for finding in analysis.findings:
        print(f"  Finding:      {finding}")


def main(argv=None) -> int:
    args = _parse_args(argv)

    from workflow_config import get_legacy_catalog, get_settings
    from workflow_kernel.logging_config import configure_logging

    settings = get_settings(args.settings)
    configure_logging(level=settings.log_level)
    directory = _load_directory(args.directory)
    validator = _build_validator(settings, directory)

    if args.command == "validate":
        from workflow_config.settings import load_yaml_file
        from workflow_kernel.domain.workflow import TemplateDefinition

        definition = TemplateDefinition.from_dict(load_yaml_file(args.file))
        result = validator.validate(definition)
        print(f"\n  {definition.name or '<unnamed>'} ({definition.module or '<no module>'})")
        _print_issues(result)
        print()
        return 0 if result.is_valid else 1

    from workflow_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from workflow_kernel.exceptions import WorkflowKernelError
    from workflow_services.directory import InMemoryDirectory, LoggingNotifier
    from workflow_services.migration_service import MigrationAnalyzer
    from workflow_services.template_service import TemplateService
    from workflow_services.workflow_engine import WorkflowEngine

    init_engine_from_url(args.db_url or settings.database_url)

    if args.command == "init-db":
        create_tables()
        print("\n  Workflow tables created.\n")
        return 0

    try:
        with session_scope() as session:
            templates = TemplateService(session, validator)

            if args.command == "escalate-overdue":
                people = directory or InMemoryDirectory()
                engine = WorkflowEngine(session, people, people, LoggingNotifier())
                escalated = engine.escalate_overdue()
                print(f"\n  Escalated {len(escalated)} step(s).")
                for record in escalated:
                    print(
                        f"    instance {record.instance_id} step {record.step_number} "
                        f"-> {record.assigned_to_role}"
                    )
                print()
                return 0

            analyzer = MigrationAnalyzer(
                session,
                get_legacy_catalog(settings),
                templates,
                backup_dir=settings.migration_backup_dir,
            )

            if args.command == "analyze":
                print()
                _print_analysis(analyzer.analyze(args.module))
                print()
                return 0

            if args.command == "report":
                report = analyzer.generate_report()
                print(f"\n  Legacy modules:      {report.total_modules}")
                print(f"  Ready:               {', '.join(report.ready_for_migration) or '-'}")
                print(f"  Requires attention:  {', '.join(report.requires_attention) or '-'}")
                print(f"  Already migrated:    {', '.join(report.already_migrated) or '-'}")
                for effort in report.estimated_effort:
                    print(f"    {effort.module:<15} {effort.effort.value:<8} {effort.time_estimate}")
                print()
                return 0

            if args.command == "migrate":
                result = analyzer.execute(
                    args.module, create_backup=not args.no_backup, actor_id=args.actor,
                )
                print(f"\n  {result.message}")
                for ref in result.backup_refs:
                    print(f"    backup: {ref}")
                for error in result.errors:
                    print(f"    ERROR {error}")
                print()
                return 0 if result.success else 1

            if args.command == "rollback":
                result = analyzer.rollback(args.module, actor_id=args.actor)
                print(f"\n  {result.message}\n")
                return 0 if result.success else 1
    except WorkflowKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
