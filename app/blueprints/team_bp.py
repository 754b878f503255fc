"""
Team Blueprint — membership changes that affect phase access.

Endpoints:
    DELETE /api/v1/teams/<team_id>/members/<user_id> — remove member and their grants
"""

from flask import Blueprint, jsonify

from app.blueprints import current_user_id, register_error_handlers
from app.services import phase_assignment_service

team_bp = Blueprint("team", __name__, url_prefix="/api/v1")
register_error_handlers(team_bp)


@team_bp.route("/teams/<int:team_id>/members/<int:user_id>", methods=["DELETE"])
def remove_member(team_id: int, user_id: int):
    removed = phase_assignment_service.remove_team_member(current_user_id(), team_id, user_id)
    return jsonify({
        "message": "Team member removed",
        "team_id": team_id,
        "user_id": user_id,
        "phase_assignments_removed": removed,
    }), 200
