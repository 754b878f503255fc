"""Badge and summary formatting over evaluator output."""

from app.services.phase_badges import (
    BADGE_CAN_EDIT,
    BADGE_NO_ACCESS,
    BADGE_VIEW_ONLY,
    get_phase_access_summary,
    get_phase_badges,
    get_phase_permission_badge,
)
from app.services.phase_permissions import (
    ActorSnapshot,
    PhaseGrant,
    PhasePermission,
    get_user_phase_permissions,
)


def test_badge_levels():
    edit = get_phase_permission_badge("build", PhasePermission(True, True, True))
    view = get_phase_permission_badge("build", PhasePermission(True, False, False))
    none = get_phase_permission_badge("build", PhasePermission(False, False, False))
    assert edit["label"] == BADGE_CAN_EDIT["label"]
    assert view["label"] == BADGE_VIEW_ONLY["label"]
    assert none["label"] == BADGE_NO_ACCESS["label"]
    assert none["icon"] == "lock"


def test_badge_carries_canonical_phase_label():
    badge = get_phase_permission_badge("execution", PhasePermission(True, False, False))
    assert badge["phase"] == "build"
    assert badge["phase_label"] == "Build"


def test_summary_for_member_with_one_grant():
    snap = ActorSnapshot(7, 1, 3, "member", (PhaseGrant("refine", can_edit=True),))
    summary = get_phase_access_summary(get_user_phase_permissions(snap))
    assert summary == {
        "total_phases": 4,
        "editable_phases": 1,
        "view_only_phases": 3,
        "editable_phase_names": ["refine"],
        "view_only_phase_names": ["design", "build", "launch"],
    }


def test_badges_follow_phase_order():
    snap = ActorSnapshot(7, 1, 3, "admin")
    badges = get_phase_badges(get_user_phase_permissions(snap))
    assert list(badges) == ["design", "build", "refine", "launch"]
    assert all(b["label"] == "Can Edit" for b in badges.values())
