"""
Permissions Blueprint — read-side of phase access control.

Endpoints:
    GET /api/v1/workspaces/<ws_id>/permissions        — caller's role, grants, phase map
    GET /api/v1/workspaces/<ws_id>/phase-leads        — leads per phase
    GET /api/v1/workspaces/<ws_id>/phase-analytics    — lead / contributor coverage
    GET /api/v1/workspaces/<ws_id>/phase-distribution — work items per phase
    GET /api/v1/workspaces/<ws_id>/work-items         — items the caller may view / edit
    GET /api/v1/teams/<team_id>/role                  — caller's team role (admin check)

Layer contract:
    - No ORM calls here; every read goes through a service.
    - Membership is checked by building the actor snapshot first.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_user_id, register_error_handlers
from app.core.exceptions import PermissionDenied
from app.services import phase_assignment_service, work_item_service
from app.services.access_gate import build_actor_snapshot
from app.services.phase_badges import get_phase_access_summary, get_phase_badges
from app.services.phase_permissions import (
    editable_phases,
    get_user_phase_permissions,
    lead_phases,
)
from app.services.phase_taxonomy import PHASE_CONFIG, PHASE_ORDER
from app.services.role_resolver import get_team_role, is_elevated
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

permissions_bp = Blueprint("permissions", __name__, url_prefix="/api/v1")
register_error_handlers(permissions_bp)


# ── Routes ────────────────────────────────────────────────────────────────────


@permissions_bp.route("/workspaces/<int:workspace_id>/permissions", methods=["GET"])
def get_permissions(workspace_id: int):
    """The caller's UserPhasePermissions for a workspace.

    ``snapshot`` is what client hooks evaluate locally; ``permissions``
    is the server's own evaluation of the same snapshot.
    """
    snapshot = build_actor_snapshot(current_user_id(), workspace_id)
    permissions = get_user_phase_permissions(snapshot)
    return jsonify({
        "workspace_id": workspace_id,
        "role": snapshot.role,
        "is_admin": snapshot.is_elevated,
        "snapshot": snapshot.to_dict(),
        "permissions": {p: perm.to_dict() for p, perm in permissions.items()},
        "summary": get_phase_access_summary(permissions),
        "badges": get_phase_badges(permissions),
        "editable_phases": editable_phases(snapshot),
        "lead_phases": lead_phases(snapshot),
        "phases": [PHASE_CONFIG[p] for p in PHASE_ORDER],
    }), 200


@permissions_bp.route("/workspaces/<int:workspace_id>/phase-leads", methods=["GET"])
def get_phase_leads(workspace_id: int):
    build_actor_snapshot(current_user_id(), workspace_id)
    return jsonify({
        "workspace_id": workspace_id,
        "leads": phase_assignment_service.get_phase_leads(workspace_id),
    }), 200


@permissions_bp.route("/workspaces/<int:workspace_id>/phase-analytics", methods=["GET"])
def get_phase_analytics(workspace_id: int):
    build_actor_snapshot(current_user_id(), workspace_id)
    return jsonify(phase_assignment_service.get_phase_analytics(workspace_id)), 200


@permissions_bp.route("/workspaces/<int:workspace_id>/phase-distribution", methods=["GET"])
def get_phase_distribution(workspace_id: int):
    build_actor_snapshot(current_user_id(), workspace_id)
    return jsonify(work_item_service.get_phase_distribution(workspace_id)), 200


@permissions_bp.route("/workspaces/<int:workspace_id>/work-items", methods=["GET"])
def list_work_items(workspace_id: int):
    """Query params:
        filter (str, optional): view (default) | edit
    """
    filter_type = request.args.get("filter", "view")
    if filter_type not in ("view", "edit"):
        return api_error(
            E.VALIDATION_REQUIRED, f"Invalid filter '{filter_type}'.",
            details={"filter": "Must be one of: view, edit"},
            extra={"valid_values": ["view", "edit"]},
        )
    snapshot = build_actor_snapshot(current_user_id(), workspace_id)
    items = work_item_service.list_work_items(snapshot, filter_type)
    return jsonify({"items": items, "total": len(items)}), 200


@permissions_bp.route("/teams/<int:team_id>/role", methods=["GET"])
def get_my_team_role(team_id: int):
    role = get_team_role(current_user_id(), team_id)
    if role is None:
        raise PermissionDenied(
            "You are not a member of this team",
            required="team membership",
            user_id=current_user_id(),
        )
    return jsonify({"team_id": team_id, "role": role, "is_admin": is_elevated(role)}), 200
