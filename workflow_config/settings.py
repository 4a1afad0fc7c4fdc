"""
Runtime settings (``workflow_config.settings``).

Responsibility
--------------
Parses ``defaults.yaml``, an optional overlay file, and ``WORKFLOW_*``
environment overrides into one frozen ``WorkflowSettings``.

Failure modes
-------------
* Missing overlay file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrongly typed or out-of-range value  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

PACKAGE_DIR = Path(__file__).parent
DEFAULTS_PATH = PACKAGE_DIR / "defaults.yaml"

ENV_SETTINGS_FILE = "WORKFLOW_SETTINGS_FILE"
ENV_DATABASE_URL = "WORKFLOW_DATABASE_URL"
ENV_LOG_LEVEL = "WORKFLOW_LOG_LEVEL"
ENV_BACKUP_DIR = "WORKFLOW_BACKUP_DIR"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class WorkflowSettings:
    """Everything the workflow packages read from configuration."""

    database_url: str
    log_level: str
    known_modules: tuple[str, ...]
    max_steps: int
    long_timeout_warning_days: int
    max_name_length: int
    max_description_length: int
    migration_backup_dir: Path
    legacy_catalog_path: Path


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty file is an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _positive_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"Setting '{key}' must be a positive integer, got {value!r}")
    return value


def _non_empty_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Setting '{key}' must be a non-empty string, got {value!r}")
    return value.strip()


def parse_settings(data: Mapping[str, Any], base_dir: Path = PACKAGE_DIR) -> WorkflowSettings:
    """Build ``WorkflowSettings`` from a merged settings mapping.

    ``migration.legacy_catalog`` is resolved against ``base_dir`` when
    relative; ``migration.backup_dir`` is left relative to the working
    directory.
    """
    log_level = _non_empty_str(data, "log_level").upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Setting 'log_level' must be one of {_LOG_LEVELS}, got {log_level!r}")

    modules = data.get("known_modules")
    if (
        not isinstance(modules, list)
        or not modules
        or not all(isinstance(m, str) and m.strip() for m in modules)
    ):
        raise ValueError(f"Setting 'known_modules' must be a non-empty list of names, got {modules!r}")

    validation = data.get("validation") or {}
    migration = data.get("migration") or {}
    if not isinstance(validation, Mapping):
        raise ValueError("Setting 'validation' must be a mapping")
    if not isinstance(migration, Mapping):
        raise ValueError("Setting 'migration' must be a mapping")

    catalog = Path(_non_empty_str(migration, "legacy_catalog"))
    if not catalog.is_absolute():
        catalog = base_dir / catalog

    return WorkflowSettings(
        database_url=_non_empty_str(data, "database_url"),
        log_level=log_level,
        known_modules=tuple(m.strip() for m in modules),
        max_steps=_positive_int(validation, "max_steps"),
        long_timeout_warning_days=_positive_int(validation, "long_timeout_warning_days"),
        max_name_length=_positive_int(validation, "max_name_length"),
        max_description_length=_positive_int(validation, "max_description_length"),
        migration_backup_dir=Path(_non_empty_str(migration, "backup_dir")),
        legacy_catalog_path=catalog,
    )


def load_settings(
    overlay_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowSettings:
    """Defaults, then the overlay file, then environment overrides."""
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    overlay = overlay_path or (Path(env[ENV_SETTINGS_FILE]) if env.get(ENV_SETTINGS_FILE) else None)
    if overlay is not None:
        data = _merge(data, load_yaml_file(overlay))

    if env.get(ENV_DATABASE_URL):
        data["database_url"] = env[ENV_DATABASE_URL]
    if env.get(ENV_LOG_LEVEL):
        data["log_level"] = env[ENV_LOG_LEVEL]
    if env.get(ENV_BACKUP_DIR):
        data = _merge(data, {"migration": {"backup_dir": env[ENV_BACKUP_DIR]}})

    return parse_settings(data)
