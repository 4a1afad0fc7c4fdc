"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the only way to obtain runtime settings through
    ``get_settings()`` and the legacy flow inventory through
    ``get_legacy_catalog()``.  Other packages never read configuration
    files or ``WORKFLOW_*`` environment variables directly.

Architecture position:
    Configuration -- sits beside ``workflow_kernel``; the kernel and the
    engines never import from ``workflow_config``.  Services and scripts
    pass the values they need into kernel and engine constructors.

Failure modes:
    - ``FileNotFoundError`` -- overlay or catalog file missing.
    - ``ValueError`` -- a setting or catalog entry has the wrong shape.
    - ``yaml.YAMLError`` -- a file is not valid YAML.
"""

from __future__ import annotations

import logging
from pathlib import Path

from workflow_config.legacy_catalog import (
    LegacyCatalog,
    LegacyChange,
    LegacyFlow,
    LegacyStep,
    load_legacy_catalog,
)
from workflow_config.settings import WorkflowSettings, load_settings

_logger = logging.getLogger("workflow_kernel.config")


def get_settings(overlay_path: Path | None = None) -> WorkflowSettings:
    """Load settings: defaults, optional overlay, then environment overrides."""
    settings = load_settings(overlay_path)
    _logger.info(
        "settings_loaded",
        extra={
            "log_level_setting": settings.log_level,
            "known_modules": list(settings.known_modules),
            "legacy_catalog_path": str(settings.legacy_catalog_path),
        },
    )
    return settings


def get_legacy_catalog(settings: WorkflowSettings | None = None) -> LegacyCatalog:
    """Load the legacy flow catalog named by ``settings``."""
    settings = settings or get_settings()
    catalog = load_legacy_catalog(settings.legacy_catalog_path)
    _logger.info(
        "legacy_catalog_loaded",
        extra={"modules": list(catalog.modules), "checksum": catalog.checksum},
    )
    return catalog


__all__ = [
    "LegacyCatalog",
    "LegacyChange",
    "LegacyFlow",
    "LegacyStep",
    "WorkflowSettings",
    "get_legacy_catalog",
    "get_settings",
]
