"""
Tests for the report access policy.

Tests cover:
- view/edit/verify/reject/resolve/delete decisions per role and ownership
- state guards (pending-only transitions, deleted reports)
- authorize() error mapping
- admin self-protection rules
"""
import uuid
from types import SimpleNamespace

import pytest

from aquasentra.core.exceptions import InvalidTransition, PermissionDenied
from aquasentra.domain.services.access_policy import (
    Action,
    authorize,
    can_access_user,
    can_perform,
    check_account_delete,
    check_role_change,
    check_status_change,
)


def make_actor(role="citizen"):
    return SimpleNamespace(id=uuid.uuid4(), role=role)


def make_report(owner, status="pending", visibility="public"):
    return SimpleNamespace(submitted_by_id=owner.id, status=status, visibility=visibility)


# =============================================================================
# VIEW
# =============================================================================

class TestView:
    def test_owner_sees_private_report(self):
        owner = make_actor()
        assert can_perform(owner, make_report(owner, visibility="private"), Action.VIEW)

    def test_other_citizen_cannot_see_private_report(self):
        owner, other = make_actor(), make_actor()
        assert not can_perform(other, make_report(owner, visibility="private"), Action.VIEW)

    def test_other_citizen_sees_public_report(self):
        owner, other = make_actor(), make_actor()
        assert can_perform(other, make_report(owner), Action.VIEW)

    @pytest.mark.parametrize("role", ["verifier", "analyst", "admin"])
    def test_elevated_roles_see_private_reports(self, role):
        owner = make_actor()
        assert can_perform(make_actor(role), make_report(owner, visibility="private"), Action.VIEW)

    def test_deleted_report_is_not_viewable(self):
        owner = make_actor()
        assert not can_perform(owner, make_report(owner, status="deleted"), Action.VIEW)


# =============================================================================
# EDIT
# =============================================================================

class TestEdit:
    @pytest.mark.parametrize("status", ["pending", "under_review"])
    def test_owner_edits_while_open(self, status):
        owner = make_actor()
        assert can_perform(owner, make_report(owner, status=status), Action.EDIT)

    @pytest.mark.parametrize("status", ["verified", "rejected", "resolved"])
    def test_owner_cannot_edit_after_review(self, status):
        owner = make_actor()
        assert not can_perform(owner, make_report(owner, status=status), Action.EDIT)

    def test_verifier_edits_any_status(self):
        owner = make_actor()
        assert can_perform(make_actor("verifier"), make_report(owner, status="verified"), Action.EDIT)

    def test_non_owner_citizen_cannot_edit(self):
        owner = make_actor()
        assert not can_perform(make_actor(), make_report(owner), Action.EDIT)


# =============================================================================
# TRANSITIONS
# =============================================================================

class TestTransitions:
    @pytest.mark.parametrize("role", ["verifier", "analyst", "admin"])
    @pytest.mark.parametrize("action", [Action.VERIFY, Action.REJECT])
    def test_verifier_roles_decide_pending_reports(self, role, action):
        owner = make_actor()
        assert can_perform(make_actor(role), make_report(owner), action)

    @pytest.mark.parametrize("action", [Action.VERIFY, Action.REJECT])
    def test_citizen_cannot_decide_even_own_report(self, action):
        owner = make_actor()
        assert not can_perform(owner, make_report(owner), action)

    @pytest.mark.parametrize("status", ["verified", "rejected", "under_review", "resolved"])
    def test_verify_requires_pending(self, status):
        owner = make_actor()
        assert not can_perform(make_actor("verifier"), make_report(owner, status=status), Action.VERIFY)

    def test_mark_under_review_is_owner_only(self):
        owner = make_actor()
        report = make_report(owner)
        assert can_perform(owner, report, Action.MARK_UNDER_REVIEW)
        assert not can_perform(make_actor("admin"), report, Action.MARK_UNDER_REVIEW)

    def test_resolve_requires_verified(self):
        owner = make_actor()
        assert can_perform(owner, make_report(owner, status="verified"), Action.RESOLVE)
        assert not can_perform(owner, make_report(owner, status="pending"), Action.RESOLVE)
        assert not can_perform(owner, make_report(owner, status="resolved"), Action.RESOLVE)

    def test_resolve_by_verifier(self):
        owner = make_actor()
        assert can_perform(make_actor("analyst"), make_report(owner, status="verified"), Action.RESOLVE)

    def test_resolve_by_other_citizen_denied(self):
        owner = make_actor()
        assert not can_perform(make_actor(), make_report(owner, status="verified"), Action.RESOLVE)


class TestDelete:
    def test_owner_and_admin_may_delete(self):
        owner = make_actor()
        report = make_report(owner, status="verified")
        assert can_perform(owner, report, Action.DELETE)
        assert can_perform(make_actor("admin"), report, Action.DELETE)

    @pytest.mark.parametrize("role", ["citizen", "verifier", "analyst"])
    def test_others_may_not_delete(self, role):
        owner = make_actor()
        assert not can_perform(make_actor(role), make_report(owner), Action.DELETE)

    def test_already_deleted(self):
        owner = make_actor()
        assert not can_perform(owner, make_report(owner, status="deleted"), Action.DELETE)


# =============================================================================
# AUTHORIZE
# =============================================================================

class TestAuthorize:
    def test_role_mismatch_is_permission_denied(self):
        owner = make_actor()
        with pytest.raises(PermissionDenied):
            authorize(make_actor(), make_report(owner), Action.VERIFY)

    def test_wrong_state_is_invalid_transition(self):
        owner = make_actor()
        with pytest.raises(InvalidTransition) as exc:
            authorize(make_actor("verifier"), make_report(owner, status="verified"), Action.VERIFY)
        assert exc.value.message == "Report is not pending verification"

    def test_resolve_wrong_state(self):
        owner = make_actor()
        with pytest.raises(InvalidTransition):
            authorize(owner, make_report(owner, status="pending"), Action.RESOLVE)

    def test_permitted_returns_none(self):
        owner = make_actor()
        assert authorize(make_actor("verifier"), make_report(owner), Action.VERIFY) is None


# =============================================================================
# USER ADMINISTRATION
# =============================================================================

class TestUserAdministration:
    def test_self_or_admin_access(self):
        user, admin, other = make_actor(), make_actor("admin"), make_actor()
        assert can_access_user(user, user.id)
        assert can_access_user(admin, user.id)
        assert not can_access_user(other, user.id)

    def test_admin_cannot_demote_self(self):
        admin = make_actor("admin")
        with pytest.raises(PermissionDenied, match="Cannot change your own admin role"):
            check_role_change(admin, admin, "citizen")

    def test_admin_may_keep_own_admin_role(self):
        admin = make_actor("admin")
        check_role_change(admin, admin, "admin")

    def test_admin_changes_other_role(self):
        check_role_change(make_actor("admin"), make_actor(), "verifier")

    def test_admin_cannot_suspend_self(self):
        admin = make_actor("admin")
        with pytest.raises(PermissionDenied, match="Cannot suspend your own account"):
            check_status_change(admin, admin, "suspended")

    def test_admin_suspends_other(self):
        check_status_change(make_actor("admin"), make_actor(), "suspended")

    def test_admin_cannot_delete_self(self):
        admin = make_actor("admin")
        with pytest.raises(PermissionDenied, match="Admin cannot delete their own account"):
            check_account_delete(admin, admin)

    def test_citizen_deletes_self(self):
        user = make_actor()
        check_account_delete(user, user)

    def test_citizen_cannot_delete_other(self):
        with pytest.raises(PermissionDenied):
            check_account_delete(make_actor(), make_actor())
