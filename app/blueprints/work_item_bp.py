"""
Work Item Blueprint — phase-gated edits of work items and tasks.

Endpoints:
    GET    /api/v1/work-items/<id>            — item, derived phase, caller's permission
    PATCH  /api/v1/work-items/<id>            — edit fields (+ optional task_updates)
    DELETE /api/v1/work-items/<id>            — delete (needs can_delete)
    POST   /api/v1/work-items/<id>/tasks      — add task
    PATCH  /api/v1/tasks/<id>                 — edit task
    DELETE /api/v1/tasks/<id>                 — delete task
    PUT    /api/v1/work-items/<id>/override   — pin phase / hold state
    DELETE /api/v1/work-items/<id>/override   — clear override

Every mutation is authorised by the access gate inside the service, on
the phase before and after the change.  A denial returns 403 with
``denied_phase`` and ``required``.

Optional ``expected_phase`` (body, or query string on DELETE) makes the
write fail with 409 if the item's derived phase has moved on.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import current_user_id, json_object_body, register_error_handlers
from app.services import work_item_service
from app.services.access_gate import build_actor_snapshot
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

work_item_bp = Blueprint("work_item", __name__, url_prefix="/api/v1")
register_error_handlers(work_item_bp)


# ── Private helpers ───────────────────────────────────────────────────────────


def _snapshot_for_item(work_item_id: int):
    workspace_id = work_item_service.workspace_id_for_work_item(work_item_id)
    return build_actor_snapshot(current_user_id(), workspace_id)


def _snapshot_for_task(task_id: int):
    workspace_id = work_item_service.workspace_id_for_task(task_id)
    return build_actor_snapshot(current_user_id(), workspace_id)


def _pop_expected_phase(data: dict):
    return data.pop("expected_phase", None)


# ── Work items ────────────────────────────────────────────────────────────────


@work_item_bp.route("/work-items/<int:work_item_id>", methods=["GET"])
def get_work_item(work_item_id: int):
    snapshot = _snapshot_for_item(work_item_id)
    return jsonify(work_item_service.get_work_item_view(snapshot, work_item_id)), 200


@work_item_bp.route("/work-items/<int:work_item_id>", methods=["PATCH"])
def update_work_item(work_item_id: int):
    """Body (JSON):
        title, description, type (optional): item fields.
        task_updates (list, optional): [{id, status?, effort_weight?, title?}, ...]
        expected_phase (str, optional): reject with 409 if the phase moved.
    """
    data = json_object_body()
    expected_phase = _pop_expected_phase(data)
    task_updates = data.pop("task_updates", None)
    snapshot = _snapshot_for_item(work_item_id)
    work_item_service.update_work_item(
        snapshot, work_item_id, data,
        task_updates=task_updates, expected_phase=expected_phase,
    )
    return jsonify(work_item_service.get_work_item_view(snapshot, work_item_id)), 200


@work_item_bp.route("/work-items/<int:work_item_id>", methods=["DELETE"])
def delete_work_item(work_item_id: int):
    snapshot = _snapshot_for_item(work_item_id)
    work_item_service.delete_work_item(snapshot, work_item_id)
    return jsonify({"message": "Work item deleted", "id": work_item_id}), 200


# ── Tasks ─────────────────────────────────────────────────────────────────────


@work_item_bp.route("/work-items/<int:work_item_id>/tasks", methods=["POST"])
def create_task(work_item_id: int):
    """Body (JSON):
        title (str, required)
        status (str, optional): todo|in_progress|done (default todo)
        effort_weight (int, optional): ≥ 0 (default 1)
    """
    data = json_object_body()
    expected_phase = _pop_expected_phase(data)
    snapshot = _snapshot_for_item(work_item_id)
    task = work_item_service.create_task(snapshot, work_item_id, data, expected_phase=expected_phase)
    view = work_item_service.get_work_item_view(snapshot, work_item_id)
    return jsonify({"task": task.to_dict(), "work_item": view}), 201


@work_item_bp.route("/tasks/<int:task_id>", methods=["PATCH"])
def update_task(task_id: int):
    data = json_object_body()
    expected_phase = _pop_expected_phase(data)
    snapshot = _snapshot_for_task(task_id)
    task = work_item_service.update_task(snapshot, task_id, data, expected_phase=expected_phase)
    view = work_item_service.get_work_item_view(snapshot, task.work_item_id)
    return jsonify({"task": task.to_dict(), "work_item": view}), 200


@work_item_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id: int):
    snapshot = _snapshot_for_task(task_id)
    work_item_service.delete_task(
        snapshot, task_id, expected_phase=request.args.get("expected_phase"),
    )
    return jsonify({"message": "Task deleted", "id": task_id}), 200


# ── Manual override ───────────────────────────────────────────────────────────


@work_item_bp.route("/work-items/<int:work_item_id>/override", methods=["PUT"])
def set_override(work_item_id: int):
    """Body (JSON):
        status (str, required): a phase, on_hold or cancelled.
    """
    data = json_object_body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Validation failed", details={"status": "status is required."})
    snapshot = _snapshot_for_item(work_item_id)
    work_item_service.set_override(snapshot, work_item_id, data["status"])
    return jsonify(work_item_service.get_work_item_view(snapshot, work_item_id)), 200


@work_item_bp.route("/work-items/<int:work_item_id>/override", methods=["DELETE"])
def clear_override(work_item_id: int):
    snapshot = _snapshot_for_item(work_item_id)
    work_item_service.clear_override(snapshot, work_item_id)
    return jsonify(work_item_service.get_work_item_view(snapshot, work_item_id)), 200
