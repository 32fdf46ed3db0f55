"""
Report lifecycle state machine.

    draft --submit--> submitted --approve--> approved
      ^                   |
      +------reject-------+

    draft | submitted | approved --archive--> archived (terminal)
    draft --delete--> (removed)

Each action is gated by a permission first and by the current status
second, so a role that may never perform an action gets PermissionDenied
regardless of the report's state.
"""
import calendar
from datetime import datetime
from typing import Dict, FrozenSet, NamedTuple, Optional

import permissions
from errors import InvalidTransition

DRAFT = "draft"
SUBMITTED = "submitted"
APPROVED = "approved"
ARCHIVED = "archived"

STATUSES = (DRAFT, SUBMITTED, APPROVED, ARCHIVED)
LIVE_STATUSES = (DRAFT, SUBMITTED, APPROVED)


class Transition(NamedTuple):
    sources: FrozenSet[str]
    target: Optional[str]  # None keeps the status (edit) or removes the record (delete)
    permission: str


TRANSITIONS: Dict[str, Transition] = {
    "edit": Transition(frozenset({DRAFT}), None, permissions.EDIT_REPORT),
    "submit": Transition(frozenset({DRAFT}), SUBMITTED, permissions.SUBMIT_FOR_APPROVAL),
    "approve": Transition(frozenset({SUBMITTED}), APPROVED, permissions.APPROVE_REPORT),
    "reject": Transition(frozenset({SUBMITTED}), DRAFT, permissions.APPROVE_REPORT),
    "archive": Transition(frozenset(LIVE_STATUSES), ARCHIVED, permissions.ARCHIVE_REPORTS),
    "delete": Transition(frozenset({DRAFT}), None, permissions.DELETE_REPORT),
}


def allowed_sources(action: str, role: Optional[str]) -> FrozenSet[str]:
    transition = TRANSITIONS[action]
    # Admins may correct submitted or approved reports; archived ones stay frozen.
    if action == "edit" and permissions.is_admin(role):
        return frozenset(LIVE_STATUSES)
    return transition.sources


def check_transition(action: str, actor: dict, status: str) -> Optional[str]:
    """Validate ``action`` on a report in ``status`` and return the target status."""
    if action not in TRANSITIONS:
        raise InvalidTransition(f"Unknown action '{action}'", details={"action": action})
    transition = TRANSITIONS[action]
    permissions.require_permission(actor, transition.permission)
    if status not in allowed_sources(action, actor.get("role")):
        raise InvalidTransition(
            f"Cannot {action} a report that is {status}",
            details={"action": action, "status": status},
        )
    return transition.target


def available_actions(actor: dict, status: str) -> list:
    """Actions the actor could take on a report in ``status``, for the UI."""
    role = actor.get("role")
    return [
        action
        for action, transition in TRANSITIONS.items()
        if permissions.has_permission(role, transition.permission) and status in allowed_sources(action, role)
    ]


# Periods

def period_label(report_type: str, year: int, month: Optional[int] = None, quarter: Optional[int] = None) -> str:
    if report_type == "monthly":
        return f"{calendar.month_name[month]} {year}"
    if report_type == "quarterly":
        return f"Q{quarter} {year}"
    return str(year)


def period_end_month(report_type: str, month: Optional[int] = None, quarter: Optional[int] = None) -> int:
    if report_type == "monthly":
        return month
    if report_type == "quarterly":
        return quarter * 3
    return 12


# Periods ending in the same month order from shortest to longest.
REPORT_TYPE_RANK = {"monthly": 0, "quarterly": 1, "annual": 2}


def period_sort_key(doc: dict) -> tuple:
    """Chronological key: year, the last month the period covers, then period length."""
    report_type = doc["reportType"]
    return (
        doc["year"],
        period_end_month(report_type, doc.get("month"), doc.get("quarter")),
        REPORT_TYPE_RANK.get(report_type, len(REPORT_TYPE_RANK)),
    )


def months_since_period_end(doc: dict, now: datetime) -> int:
    year, end_month, _ = period_sort_key(doc)
    return (now.year * 12 + now.month) - (year * 12 + end_month)


def is_due_for_archive(doc: dict, archive_after_months: int, now: datetime) -> bool:
    return doc.get("status") == APPROVED and months_since_period_end(doc, now) >= archive_after_months


# Review schedules run their own lifecycle, independent of the report's.

REVIEW_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"in-progress", "completed", "overdue"}),
    "in-progress": frozenset({"completed", "overdue"}),
    "overdue": frozenset({"in-progress", "completed"}),
    "completed": frozenset(),
}
OPEN_REVIEW_STATUSES = ("pending", "in-progress")


def check_review_transition(current: str, target: str) -> None:
    if target not in REVIEW_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(
            f"Cannot move a review from {current} to {target}",
            details={"status": current, "target": target},
        )
