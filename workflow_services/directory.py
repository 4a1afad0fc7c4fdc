"""
workflow_services.directory -- In-process collaborator implementations.

Responsibility:
    Concrete ``RoleRegistry`` / ``RoleMembership`` / ``UserDirectory`` and
    ``Notifier`` implementations for the operator CLI, local tooling and
    tests.  Production deployments pass their own adapters over the
    identity provider and the notification service.

Architecture position:
    Services -- outer layer.  Implements kernel protocols; holds no
    persisted state.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from workflow_kernel.domain.workflow import WorkflowEvent
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


class InMemoryDirectory:
    """Users, their roles, and the set of defined roles.

    Satisfies ``RoleRegistry``, ``RoleMembership`` and ``UserDirectory``.
    Inactive users still appear in ``get_user_roles`` lookups as having no
    roles, and never count as active members of a role.
    """

    def __init__(
        self,
        roles: Iterable[str] = (),
        memberships: Mapping[str, Iterable[str]] | None = None,
        inactive_users: Iterable[str] = (),
    ):
        self._roles: set[str] = set(roles)
        self._members: dict[str, set[str]] = {}
        self._inactive: set[str] = set(inactive_users)
        for user_id, user_roles in (memberships or {}).items():
            self.add_user(user_id, *user_roles)

    # Mutation ---------------------------------------------------------

    def add_role(self, role: str) -> None:
        self._roles.add(role)

    def add_user(self, user_id: str, *roles: str) -> None:
        """Register a user, creating any roles that are not yet defined."""
        self._members.setdefault(user_id, set()).update(roles)
        self._roles.update(roles)

    def grant(self, user_id: str, role: str) -> None:
        self.add_user(user_id, role)

    def revoke(self, user_id: str, role: str) -> None:
        self._members.get(user_id, set()).discard(role)

    def deactivate_user(self, user_id: str) -> None:
        self._inactive.add(user_id)

    # RoleRegistry -----------------------------------------------------

    def role_exists(self, role: str) -> bool:
        return role in self._roles

    def has_active_members(self, role: str) -> bool:
        return any(
            role in user_roles and user_id not in self._inactive
            for user_id, user_roles in self._members.items()
        )

    # RoleMembership ---------------------------------------------------

    def get_user_roles(self, user_id: str) -> tuple[str, ...]:
        if user_id in self._inactive:
            return ()
        return tuple(sorted(self._members.get(user_id, ())))

    def has_role(self, user_id: str, role: str) -> bool:
        return role in self.get_user_roles(user_id)

    # UserDirectory ----------------------------------------------------

    def user_exists(self, user_id: str) -> bool:
        return user_id in self._members and user_id not in self._inactive


class RecordingNotifier:
    """Keeps every published event in memory, in order."""

    def __init__(self):
        self.events: list[WorkflowEvent] = []

    def publish(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    @property
    def terminal_events(self) -> list[WorkflowEvent]:
        return [e for e in self.events if e.is_terminal]

    def for_instance(self, instance_id) -> list[WorkflowEvent]:
        return [e for e in self.events if e.instance_id == instance_id]

    def clear(self) -> None:
        self.events.clear()


class LoggingNotifier:
    """Writes each event to the structured log.  Used by the operator CLI."""

    def publish(self, event: WorkflowEvent) -> None:
        logger.info(
            "workflow_event_published",
            extra={
                "event_type": event.event_type.value,
                "instance_id": str(event.instance_id),
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "status": event.status.value,
                "actor_id": event.actor_id,
                "step_number": event.step_number,
                "assigned_to_role": event.assigned_to_role,
                "assigned_to_user": event.assigned_to_user,
            },
        )
