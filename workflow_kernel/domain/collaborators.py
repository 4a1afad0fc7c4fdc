"""
Collaborator protocols (``workflow_kernel.domain.collaborators``).

The workflow core does not own users, roles or message delivery.  These
protocols describe the narrow read-only lookups and the single outbound
sink it needs; concrete implementations are passed in by the caller.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from workflow_kernel.domain.workflow import WorkflowEvent


@runtime_checkable
class RoleRegistry(Protocol):
    """Pluggable interface for role existence lookups."""

    def role_exists(self, role: str) -> bool:
        """Return True if the role is defined."""
        ...

    def has_active_members(self, role: str) -> bool:
        """Return True if at least one active user holds the role."""
        ...


@runtime_checkable
class RoleMembership(Protocol):
    """Pluggable interface for "is user X in role Y" checks."""

    def get_user_roles(self, user_id: str) -> tuple[str, ...]:
        """Return all roles currently held by a user."""
        ...

    def has_role(self, user_id: str, role: str) -> bool:
        """Check if a user currently holds a role."""
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Pluggable interface for user existence lookups."""

    def user_exists(self, user_id: str) -> bool:
        """Return True if the user exists and is active."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Outbound sink for workflow events.

    A raising notifier aborts the caller's transaction: the transition and
    its notification succeed or fail together.
    """

    def publish(self, event: WorkflowEvent) -> None:
        ...
