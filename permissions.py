"""
Role based access control.

Permissions are granted by role membership only, never by ownership of a
record: a finance user may edit any report of their hospital, not just the
ones they created.
"""
from typing import Dict, FrozenSet, Optional

from errors import PermissionDenied

CREATE_REPORT = "create_report"
EDIT_REPORT = "edit_report"
DELETE_REPORT = "delete_report"
APPROVE_REPORT = "approve_report"
SUBMIT_FOR_APPROVAL = "submit_for_approval"
ARCHIVE_REPORTS = "archive_reports"
VIEW_REPORTS = "view_reports"
VIEW_ALL_REPORTS = "view_all_reports"
EXPORT_REPORTS = "export_reports"
MANAGE_USERS = "manage_users"
MANAGE_SETTINGS = "manage_settings"

ALL_PERMISSIONS: FrozenSet[str] = frozenset({
    CREATE_REPORT,
    EDIT_REPORT,
    DELETE_REPORT,
    APPROVE_REPORT,
    SUBMIT_FOR_APPROVAL,
    ARCHIVE_REPORTS,
    VIEW_REPORTS,
    VIEW_ALL_REPORTS,
    EXPORT_REPORTS,
    MANAGE_USERS,
    MANAGE_SETTINGS,
})

# Admin holds every capability, so anything finance or viewer may do, admin may do.
ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "admin": ALL_PERMISSIONS,
    "finance": frozenset({
        CREATE_REPORT,
        EDIT_REPORT,
        VIEW_ALL_REPORTS,
        EXPORT_REPORTS,
        SUBMIT_FOR_APPROVAL,
    }),
    "viewer": frozenset({
        VIEW_REPORTS,
        EXPORT_REPORTS,
    }),
}

ROLES = tuple(ROLE_PERMISSIONS)


def permissions_for(role: Optional[str]) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(role: Optional[str], permission: str) -> bool:
    return permission in permissions_for(role)


def is_admin(role: Optional[str]) -> bool:
    return role == "admin"


def is_finance(role: Optional[str]) -> bool:
    return role == "finance"


def can_view_reports(role: Optional[str]) -> bool:
    perms = permissions_for(role)
    return VIEW_REPORTS in perms or VIEW_ALL_REPORTS in perms


def require_permission(actor: dict, permission: str) -> None:
    """Raise PermissionDenied unless the actor's role grants ``permission``."""
    role = actor.get("role")
    if not has_permission(role, permission):
        raise PermissionDenied(
            f"Role '{role}' lacks permission '{permission}'",
            details={"role": role, "permission": permission, "actor_id": actor.get("id")},
        )
