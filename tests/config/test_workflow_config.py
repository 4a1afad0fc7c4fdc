"""
Tests for workflow configuration loading.

Covers:
- Defaults, overlay file and WORKFLOW_* environment precedence
- Rejection of wrongly typed settings
- Legacy flow catalog parsing and checksum stability
"""

from pathlib import Path

import pytest
import yaml

from workflow_config import get_legacy_catalog
from workflow_config.legacy_catalog import (
    load_legacy_catalog,
    parse_catalog,
    parse_flow,
)
from workflow_config.settings import (
    DEFAULTS_PATH,
    PACKAGE_DIR,
    load_settings,
    load_yaml_file,
    parse_settings,
)


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture
def defaults():
    return load_yaml_file(DEFAULTS_PATH)


class TestLoadSettings:

    def test_defaults(self):
        settings = load_settings(environ={})

        assert settings.database_url == "sqlite:///workflow.db"
        assert settings.log_level == "INFO"
        assert settings.known_modules == ("trf", "claims", "visa", "transport", "accommodation")
        assert settings.max_steps == 20
        assert settings.long_timeout_warning_days == 30
        assert settings.migration_backup_dir == Path("migration_backups")
        assert settings.legacy_catalog_path == PACKAGE_DIR / "legacy_flows.yaml"

    def test_overlay_merges_nested(self, tmp_path):
        overlay = write_yaml(tmp_path / "site.yaml", {
            "log_level": "debug",
            "validation": {"max_steps": 5},
        })

        settings = load_settings(overlay, environ={})

        assert settings.log_level == "DEBUG"
        assert settings.max_steps == 5
        assert settings.max_name_length == 100

    def test_overlay_from_environment(self, tmp_path):
        overlay = write_yaml(tmp_path / "site.yaml", {"known_modules": ["trf"]})

        settings = load_settings(environ={"WORKFLOW_SETTINGS_FILE": str(overlay)})

        assert settings.known_modules == ("trf",)

    def test_environment_wins_over_overlay(self, tmp_path):
        overlay = write_yaml(tmp_path / "site.yaml", {"database_url": "sqlite:///overlay.db"})

        settings = load_settings(overlay, environ={
            "WORKFLOW_DATABASE_URL": "postgresql://localhost/workflow",
            "WORKFLOW_LOG_LEVEL": "warning",
            "WORKFLOW_BACKUP_DIR": "/var/backups/workflow",
        })

        assert settings.database_url == "postgresql://localhost/workflow"
        assert settings.log_level == "WARNING"
        assert settings.migration_backup_dir == Path("/var/backups/workflow")

    def test_missing_overlay(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_overlay_must_be_mapping(self, tmp_path):
        overlay = write_yaml(tmp_path / "site.yaml", ["not", "a", "mapping"])

        with pytest.raises(ValueError, match="top level must be a mapping"):
            load_settings(overlay, environ={})


class TestParseSettings:

    @pytest.mark.parametrize("key,value", [
        ("log_level", "LOUD"),
        ("log_level", ""),
        ("known_modules", []),
        ("known_modules", "trf"),
        ("database_url", None),
    ])
    def test_bad_top_level_values(self, defaults, key, value):
        with pytest.raises(ValueError, match=key):
            parse_settings({**defaults, key: value})

    @pytest.mark.parametrize("value", [0, -3, "20", True])
    def test_max_steps_must_be_positive_int(self, defaults, value):
        data = {**defaults, "validation": {**defaults["validation"], "max_steps": value}}

        with pytest.raises(ValueError, match="max_steps"):
            parse_settings(data)

    def test_absolute_catalog_path_kept(self, defaults, tmp_path):
        catalog = tmp_path / "flows.yaml"
        data = {**defaults, "migration": {**defaults["migration"], "legacy_catalog": str(catalog)}}

        assert parse_settings(data).legacy_catalog_path == catalog


class TestLegacyCatalog:

    def test_shipped_catalog(self):
        catalog = load_legacy_catalog(PACKAGE_DIR / "legacy_flows.yaml")

        assert catalog.modules == ("trf", "claims", "visa", "transport", "accommodation")
        trf = catalog.get("trf")
        assert trf.template_name == "Standard TRF Approval Workflow"
        assert [s.role for s in trf.steps] == ["Department Focal", "Line Manager", "HOD"]
        assert trf.steps[2].escalation_role == "Senior Management"
        assert trf.steps[0].can_delegate is True
        assert catalog.get("unknown") is None

    def test_checksum_ignores_key_order(self):
        body = {"template_name": "X", "branches": 1, "steps": [{"name": "A", "role": "HR"}]}

        first = parse_catalog({"flows": {"a": body, "b": body}})
        second = parse_catalog({"flows": {"b": body, "a": body}})

        assert first.checksum == second.checksum
        assert len(first.checksum) == 64

    def test_empty_catalog_rejected(self):
        with pytest.raises(ValueError, match="at least one flow"):
            parse_catalog({"flows": {}})

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError, match="approval chain is empty"):
            parse_flow("visa", {"template_name": "V", "steps": []})

    @pytest.mark.parametrize("branches", [-1, "3", True])
    def test_bad_branch_count(self, branches):
        with pytest.raises(ValueError, match="branches"):
            parse_flow("visa", {
                "template_name": "V", "branches": branches,
                "steps": [{"name": "A", "role": "HR"}],
            })

    def test_missing_role_is_key_error(self):
        with pytest.raises(KeyError):
            parse_flow("visa", {"template_name": "V", "steps": [{"name": "A"}]})

    def test_get_legacy_catalog_from_settings(self):
        catalog = get_legacy_catalog(load_settings(environ={}))

        assert catalog.source == PACKAGE_DIR / "legacy_flows.yaml"
        assert "visa" in catalog.modules
