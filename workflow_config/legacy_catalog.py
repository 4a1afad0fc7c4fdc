"""
Legacy flow catalog (``workflow_config.legacy_catalog``).

Responsibility
--------------
Parses ``legacy_flows.yaml``, the inventory of hardcoded approval chains
the migration analyzer works from, into frozen ``LegacyFlow`` /
``LegacyStep`` dataclasses.  The catalog is checksummed so a stored
analysis can be traced to the exact catalog it came from.

Failure modes
-------------
* Missing catalog file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong shapes (empty chain, negative branch count)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from workflow_config.settings import load_yaml_file


@dataclass(frozen=True)
class LegacyStep:
    """One position of a hardcoded approval chain."""

    name: str
    role: str
    description: str | None = None
    timeout_days: int | None = None
    can_delegate: bool = False
    escalation_role: str | None = None


@dataclass(frozen=True)
class LegacyChange:
    file: str
    description: str


@dataclass(frozen=True)
class LegacyFlow:
    """The hardcoded approval chain of one legacy module."""

    module: str
    template_name: str
    branches: int
    steps: tuple[LegacyStep, ...]
    status_flow: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    required_changes: tuple[LegacyChange, ...] = ()


@dataclass(frozen=True)
class LegacyCatalog:
    flows: dict[str, LegacyFlow]
    checksum: str
    source: Path | None = None

    @property
    def modules(self) -> tuple[str, ...]:
        return tuple(self.flows)

    def get(self, module: str) -> LegacyFlow | None:
        return self.flows.get(module)


def parse_step(data: dict[str, Any]) -> LegacyStep:
    """Parse a LegacyStep from a dict."""
    return LegacyStep(
        name=data["name"],
        role=data["role"],
        description=data.get("description"),
        timeout_days=data.get("timeout_days"),
        can_delegate=bool(data.get("can_delegate", False)),
        escalation_role=data.get("escalation_role"),
    )


def parse_flow(module: str, data: dict[str, Any]) -> LegacyFlow:
    """Parse a LegacyFlow from a dict."""
    branches = data.get("branches", 0)
    if isinstance(branches, bool) or not isinstance(branches, int) or branches < 0:
        raise ValueError(f"Flow '{module}': branches must be a non-negative integer, got {branches!r}")

    steps = tuple(parse_step(s) for s in data["steps"])
    if not steps:
        raise ValueError(f"Flow '{module}': approval chain is empty")

    return LegacyFlow(
        module=module,
        template_name=data["template_name"],
        branches=branches,
        steps=steps,
        status_flow=tuple(data.get("status_flow", ())),
        dependencies=tuple(data.get("dependencies", ())),
        required_changes=tuple(
            LegacyChange(file=c["file"], description=c["description"])
            for c in data.get("required_changes", ())
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON rendering of the raw catalog."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_catalog(data: dict[str, Any], source: Path | None = None) -> LegacyCatalog:
    flows = data.get("flows")
    if not isinstance(flows, dict) or not flows:
        raise ValueError("Legacy catalog must define at least one flow under 'flows'")
    return LegacyCatalog(
        flows={module: parse_flow(module, body) for module, body in flows.items()},
        checksum=compute_checksum(data),
        source=source,
    )


def load_legacy_catalog(path: Path) -> LegacyCatalog:
    return parse_catalog(load_yaml_file(path), source=path)
