"""Permission evaluator: role + grants + target phase → decision."""

import pytest

from app.core.exceptions import ValidationError
from app.services.phase_permissions import (
    ActorSnapshot,
    PhaseGrant,
    PHASE_EDIT_RULE,
    can_perform_action,
    editable_phases,
    evaluate_phase_permission,
    filter_work_items_by_phase,
    get_user_phase_permissions,
    has_any_edit_permission,
    lead_phases,
)
from app.services.phase_taxonomy import OVERRIDE_STATES, PHASE_ORDER


def _snapshot(role, *grants):
    return ActorSnapshot(user_id=7, team_id=1, workspace_id=3, role=role, grants=grants)


class TestElevatedRoles:
    @pytest.mark.parametrize("role", ["owner", "admin"])
    def test_elevated_can_do_everything_everywhere(self, role):
        snap = _snapshot(role)
        for state in (*PHASE_ORDER, *OVERRIDE_STATES):
            perm = evaluate_phase_permission(snap, state)
            assert (perm.can_view, perm.can_edit, perm.can_delete) == (True, True, True)
        assert can_perform_action(snap, "build", "assign") is True


class TestMemberGrants:
    def test_member_without_grants_is_view_only(self):
        snap = _snapshot("member")
        for phase in PHASE_ORDER:
            perm = evaluate_phase_permission(snap, phase)
            assert perm.can_view is True
            assert perm.can_edit is False
            assert perm.can_delete is False
        assert not has_any_edit_permission(snap)

    def test_grant_allows_only_its_phase(self):
        snap = _snapshot("member", PhaseGrant("build", can_edit=True))
        assert evaluate_phase_permission(snap, "build").can_edit is True
        assert evaluate_phase_permission(snap, "launch").can_edit is False
        assert editable_phases(snap) == ["build"]

    def test_grant_without_can_edit_is_view_only(self):
        snap = _snapshot("member", PhaseGrant("design", can_edit=False))
        assert evaluate_phase_permission(snap, "design").can_edit is False

    def test_lead_flag_never_grants_edit(self):
        snap = _snapshot("member", PhaseGrant("refine", can_edit=False, is_lead=True))
        assert evaluate_phase_permission(snap, "refine").can_edit is False
        assert lead_phases(snap) == ["refine"]

    def test_legacy_grant_matches_canonical_target(self):
        snap = _snapshot("member", PhaseGrant("execution", can_edit=True))
        assert snap.grants[0].phase == "build"
        assert evaluate_phase_permission(snap, "build").can_edit is True
        assert evaluate_phase_permission(snap, "execution").can_edit is True

    def test_hold_states_need_elevated_role(self):
        snap = _snapshot("member", *(PhaseGrant(p, can_edit=True) for p in PHASE_ORDER))
        for state in OVERRIDE_STATES:
            perm = evaluate_phase_permission(snap, state)
            assert perm.can_view is True
            assert perm.can_edit is False

    def test_members_cannot_assign(self):
        snap = _snapshot("member", PhaseGrant("build", can_edit=True))
        assert can_perform_action(snap, "build", "assign") is False

    def test_truthy_non_bool_is_not_a_grant(self):
        snap = _snapshot("member", PhaseGrant("build", can_edit=1))
        assert evaluate_phase_permission(snap, "build").can_edit is False


class TestNonMember:
    def test_no_role_is_denied_everything(self):
        snap = _snapshot(None, PhaseGrant("build", can_edit=True))
        perm = evaluate_phase_permission(snap, "build")
        assert (perm.can_view, perm.can_edit, perm.can_delete) == (False, False, False)


class TestEvaluatorContract:
    def test_deterministic(self):
        snap = _snapshot("member", PhaseGrant("design", can_edit=True))
        assert evaluate_phase_permission(snap, "design") == evaluate_phase_permission(snap, "design")

    def test_edit_implies_view(self):
        for role in ("owner", "admin", "member"):
            snap = _snapshot(role, PhaseGrant("launch", can_edit=True))
            for perm in get_user_phase_permissions(snap).values():
                assert not perm.can_edit or perm.can_view

    def test_edit_and_delete_share_a_rule(self):
        assert PHASE_EDIT_RULE["edit"] == PHASE_EDIT_RULE["delete"]

    def test_snapshot_is_hashable(self):
        a = _snapshot("member", PhaseGrant("build", can_edit=True))
        b = _snapshot("member", PhaseGrant("execution", can_edit=True))
        assert hash(a) == hash(b)
        assert a == b

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            _snapshot("viewer")

    def test_unknown_target_rejected(self):
        with pytest.raises(ValidationError):
            evaluate_phase_permission(_snapshot("owner"), "paused")

    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            can_perform_action(_snapshot("owner"), "build", "archive")

    def test_grant_from_mapping(self):
        g = PhaseGrant.from_assignment({"phase": "complete", "can_edit": True})
        assert g == PhaseGrant("launch", can_edit=True)


class TestFilter:
    def test_filter_by_edit(self):
        items = [("a", "design"), ("b", "build"), ("c", "on_hold")]
        snap = _snapshot("member", PhaseGrant("build", can_edit=True))
        editable = filter_work_items_by_phase(items, lambda i: i[1], snap, "edit")
        viewable = filter_work_items_by_phase(items, lambda i: i[1], snap, "view")
        assert [i[0] for i in editable] == ["b"]
        assert len(viewable) == 3

    def test_bad_filter_type(self):
        with pytest.raises(ValidationError):
            filter_work_items_by_phase([], lambda i: i, _snapshot("owner"), "delete")
