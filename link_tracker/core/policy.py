"""Role capability table.

Every write path (engine methods and routers) asks this table whether a role
may perform an action. Nothing else compares role strings.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from ..models import UserRole


class Action(str, Enum):
    CREATE_ESCALATION = "create_escalation"
    EDIT_ESCALATION = "edit_escalation"
    DELETE_ESCALATION = "delete_escalation"
    CREATE_REPORT = "create_report"
    UPDATE_PROGRESS = "update_progress"
    RESOLVE_REPORT = "resolve_report"
    FINALIZE_RCA = "finalize_rca"
    VIEW_RCA = "view_rca"
    EXPORT_RCA = "export_rca"
    MANAGE_SITES = "manage_sites"
    VIEW_ANALYTICS = "view_analytics"


@dataclass
class Actor:
    """Identity performing an operation."""
    id: UUID
    role: UserRole


class PermissionDeniedError(Exception):
    """The acting role is not allowed to perform the action."""

    def __init__(self, role: UserRole | str, action: Action):
        self.role = role
        self.action = action
        role_name = role.value if isinstance(role, UserRole) else role
        super().__init__(
            f"Role '{role_name}' is not allowed to {action.value.replace('_', ' ')}"
        )


CAPABILITIES: dict[tuple[UserRole, Action], bool] = {
    # Admin oversees escalations and RCA closure but does not file field reports
    (UserRole.ADMIN, Action.EDIT_ESCALATION): True,
    (UserRole.ADMIN, Action.DELETE_ESCALATION): True,
    (UserRole.ADMIN, Action.FINALIZE_RCA): True,
    (UserRole.ADMIN, Action.VIEW_RCA): True,
    (UserRole.ADMIN, Action.EXPORT_RCA): True,
    (UserRole.ADMIN, Action.MANAGE_SITES): True,
    (UserRole.ADMIN, Action.VIEW_ANALYTICS): True,
    # Staff drive the field workflow
    (UserRole.STAFF, Action.CREATE_REPORT): True,
    (UserRole.STAFF, Action.UPDATE_PROGRESS): True,
    (UserRole.STAFF, Action.RESOLVE_REPORT): True,
    (UserRole.STAFF, Action.FINALIZE_RCA): True,
    (UserRole.STAFF, Action.VIEW_RCA): True,
    (UserRole.STAFF, Action.EXPORT_RCA): True,
    (UserRole.STAFF, Action.MANAGE_SITES): True,
    (UserRole.STAFF, Action.VIEW_ANALYTICS): True,
    # Fibre network raises and maintains escalations
    (UserRole.FIBRE_NETWORK, Action.CREATE_ESCALATION): True,
    (UserRole.FIBRE_NETWORK, Action.EDIT_ESCALATION): True,
    (UserRole.FIBRE_NETWORK, Action.DELETE_ESCALATION): True,
    (UserRole.FIBRE_NETWORK, Action.VIEW_RCA): True,
    (UserRole.FIBRE_NETWORK, Action.VIEW_ANALYTICS): True,
}


def can(role: UserRole | str, action: Action) -> bool:
    """Return True when the role may perform the action. Unknown pairs are denied."""
    try:
        role = UserRole(role)
    except ValueError:
        return False
    return CAPABILITIES.get((role, action), False)


def ensure_allowed(role: UserRole | str, action: Action) -> None:
    """Raise PermissionDeniedError unless the role may perform the action."""
    if not can(role, action):
        raise PermissionDeniedError(role, action)


def allowed_actions(role: UserRole | str) -> list[Action]:
    """All actions a role may perform, in declaration order."""
    return [action for action in Action if can(role, action)]
