"""
Phase permission badges and access summaries.

Pure formatters over PermissionEvaluator output: they never decide
anything themselves, so what a badge shows always matches what the
server will enforce.
"""

from app.services.phase_permissions import PhasePermission
from app.services.phase_taxonomy import PHASE_ORDER, phase_label, resolve_lifecycle_state

BADGE_CAN_EDIT = {
    "label": "Can Edit",
    "color": "text-green-600 bg-green-50 border-green-200",
    "icon": "unlock",
}
BADGE_VIEW_ONLY = {
    "label": "View Only",
    "color": "text-amber-600 bg-amber-50 border-amber-200",
    "icon": "eye",
}
BADGE_NO_ACCESS = {
    "label": "No Access",
    "color": "text-red-600 bg-red-50 border-red-200",
    "icon": "lock",
}


def get_phase_permission_badge(phase: str, permission: PhasePermission) -> dict:
    """Badge for one phase: Can Edit, View Only or No Access."""
    if permission.can_edit:
        badge = BADGE_CAN_EDIT
    elif permission.can_view:
        badge = BADGE_VIEW_ONLY
    else:
        badge = BADGE_NO_ACCESS
    state = resolve_lifecycle_state(phase)
    return {**badge, "phase": state, "phase_label": phase_label(state)}


def get_phase_access_summary(permissions: dict[str, PhasePermission]) -> dict:
    """Summarise a UserPhasePermissions map.

    Returns:
        {total_phases, editable_phases, view_only_phases,
         editable_phase_names, view_only_phase_names}
        Name lists follow PHASE_ORDER.
    """
    editable = [p for p in PHASE_ORDER if p in permissions and permissions[p].can_edit]
    view_only = [
        p for p in PHASE_ORDER
        if p in permissions and permissions[p].can_view and not permissions[p].can_edit
    ]
    return {
        "total_phases": len(PHASE_ORDER),
        "editable_phases": len(editable),
        "view_only_phases": len(view_only),
        "editable_phase_names": editable,
        "view_only_phase_names": view_only,
    }


def get_phase_badges(permissions: dict[str, PhasePermission]) -> dict[str, dict]:
    return {p: get_phase_permission_badge(p, permissions[p]) for p in PHASE_ORDER if p in permissions}
