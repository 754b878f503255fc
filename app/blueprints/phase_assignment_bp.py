"""
Phase Assignment Blueprint — manage per-phase grants.

Endpoints:
    GET    /api/v1/workspaces/<ws_id>/phase-assignments  — list (any team member)
    POST   /api/v1/workspaces/<ws_id>/phase-assignments  — create (owner/admin)
    PATCH  /api/v1/phase-assignments/<id>                — set can_edit / is_lead / notes
    DELETE /api/v1/phase-assignments/<id>                — delete (owner/admin)

Layer contract:
    - No ORM calls and no commits here; phase_assignment_service owns both.
    - Authorization of mutations is decided in the service (role resolver),
      so the same rule applies to every caller of the service.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_user_id, json_object_body, register_error_handlers
from app.services import phase_assignment_service
from app.services.access_gate import build_actor_snapshot

logger = logging.getLogger(__name__)

phase_assignment_bp = Blueprint("phase_assignment", __name__, url_prefix="/api/v1")
register_error_handlers(phase_assignment_bp)


# ── Routes ────────────────────────────────────────────────────────────────────


@phase_assignment_bp.route("/workspaces/<int:workspace_id>/phase-assignments", methods=["GET"])
def list_assignments(workspace_id: int):
    """Query params:
        user_id (int, optional): only this user's assignments.
    """
    build_actor_snapshot(current_user_id(), workspace_id)
    user_id = request.args.get("user_id", type=int)
    rows = phase_assignment_service.list_assignments(workspace_id, user_id)
    return jsonify({"items": [r.to_dict() for r in rows], "total": len(rows)}), 200


@phase_assignment_bp.route("/workspaces/<int:workspace_id>/phase-assignments", methods=["POST"])
def create_assignment(workspace_id: int):
    """Body (JSON):
        user_id (int, required): target team member.
        phase (str, required): design|build|refine|launch (legacy names accepted).
        can_edit (bool, optional): default true.
        is_lead (bool, optional): default false.
        notes (str, optional): ≤ 1000 characters.
    """
    data = json_object_body()
    assignment = phase_assignment_service.create_assignment(current_user_id(), workspace_id, data)
    return jsonify(assignment.to_dict()), 201


@phase_assignment_bp.route("/phase-assignments/<int:assignment_id>", methods=["PATCH"])
def update_assignment(assignment_id: int):
    data = json_object_body()
    assignment = phase_assignment_service.update_assignment(current_user_id(), assignment_id, data)
    return jsonify(assignment.to_dict()), 200


@phase_assignment_bp.route("/phase-assignments/<int:assignment_id>", methods=["DELETE"])
def delete_assignment(assignment_id: int):
    phase_assignment_service.delete_assignment(current_user_id(), assignment_id)
    return jsonify({"message": "Phase assignment deleted", "id": assignment_id}), 200
