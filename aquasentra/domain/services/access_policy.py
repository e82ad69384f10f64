"""
Access policy for hazard reports and user administration.

``can_perform`` is the single decision point route handlers and the lifecycle
service consult. It is side-effect free; ``authorize`` turns a negative
decision into the matching domain error.
"""
from enum import Enum

from aquasentra.core.exceptions import InvalidTransition, PermissionDenied
from aquasentra.domain.models import ReportStatus, Role, VERIFIER_ROLES


class Action(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    VERIFY = "verify"
    REJECT = "reject"
    MARK_UNDER_REVIEW = "mark_under_review"
    RESOLVE = "resolve"
    DELETE = "delete"


EDITABLE_BY_OWNER = (ReportStatus.PENDING.value, ReportStatus.UNDER_REVIEW.value)

# Status a report must currently hold for each transition
REQUIRED_STATUS = {
    Action.VERIFY: ReportStatus.PENDING.value,
    Action.REJECT: ReportStatus.PENDING.value,
    Action.MARK_UNDER_REVIEW: ReportStatus.PENDING.value,
    Action.RESOLVE: ReportStatus.VERIFIED.value,
}


def is_owner(actor, report) -> bool:
    return actor.id == report.submitted_by_id


def has_verifier_role(actor) -> bool:
    return actor.role in VERIFIER_ROLES


def actor_permitted(actor, report, action: Action) -> bool:
    """Role and ownership part of the decision."""
    if action == Action.VIEW:
        return (
            is_owner(actor, report)
            or actor.role != Role.CITIZEN.value
            or report.visibility == "public"
        )
    if action == Action.EDIT:
        return (
            (is_owner(actor, report) and report.status in EDITABLE_BY_OWNER)
            or has_verifier_role(actor)
        )
    if action in (Action.VERIFY, Action.REJECT):
        return has_verifier_role(actor)
    if action == Action.MARK_UNDER_REVIEW:
        return is_owner(actor, report)
    if action == Action.RESOLVE:
        return is_owner(actor, report) or has_verifier_role(actor)
    if action == Action.DELETE:
        return is_owner(actor, report) or actor.role == Role.ADMIN.value
    return False


def state_permits(report, action: Action) -> bool:
    """Whether the report's current status allows the action at all."""
    if report.status == ReportStatus.DELETED.value:
        return False
    required = REQUIRED_STATUS.get(action)
    return required is None or report.status == required


def can_perform(actor, report, action: Action) -> bool:
    return actor_permitted(actor, report, action) and state_permits(report, action)


def authorize(actor, report, action: Action) -> None:
    """
    Raise if ``actor`` may not perform ``action`` on ``report``.

    Raises:
        PermissionDenied: the actor's role or ownership never allows it
        InvalidTransition: the actor is allowed, but not from the current status
    """
    if not actor_permitted(actor, report, action):
        raise PermissionDenied("Access denied")
    if not state_permits(report, action):
        if action in (Action.VERIFY, Action.REJECT):
            raise InvalidTransition("Report is not pending verification")
        raise InvalidTransition(
            f"Invalid status transition: cannot {action.value.replace('_', ' ')} "
            f"a report in status '{report.status}'"
        )


# =============================================================================
# User administration
# =============================================================================

def can_access_user(actor, target_id) -> bool:
    """Profiles, activity and account deletion: the user themself or an admin."""
    return actor.id == target_id or actor.role == Role.ADMIN.value


def check_role_change(actor, target, new_role: str) -> None:
    if actor.id == target.id and new_role != Role.ADMIN.value:
        raise PermissionDenied("Cannot change your own admin role")


def check_status_change(actor, target, new_status: str) -> None:
    if actor.id == target.id and new_status == "suspended":
        raise PermissionDenied("Cannot suspend your own account")


def check_account_delete(actor, target) -> None:
    if not can_access_user(actor, target.id):
        raise PermissionDenied("Access denied")
    if actor.id == target.id and actor.role == Role.ADMIN.value:
        raise PermissionDenied("Admin cannot delete their own account")
