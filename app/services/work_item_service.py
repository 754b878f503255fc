"""
Work Item Service — phase-gated mutations of work items and their tasks.

Every write runs one transaction:
    1. lock the work-item row,
    2. reject if the caller's expected phase is stale,
    3. check edit permission at the current derived phase,
    4. apply the change and flush,
    5. re-derive the phase and check permission again,
    6. refresh the phase snapshot column, audit, commit.

Any failure rolls the whole transaction back, so a denied write leaves
no partial change and no stale phase snapshot.

Manual overrides are sticky: task activity never clears them; only
``clear_override`` does.
"""

import logging
from collections.abc import Callable

from sqlalchemy import func, select

from app.core.exceptions import NotFoundError, StaleDerivationError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.work_item import WORK_ITEM_TYPES, Task, WorkItem
from app.services import access_gate
from app.services.phase_calculator import (
    calculate_progress,
    recompute_work_item_phase,
    summarize_tasks,
    validate_effort_weight,
    validate_task_status,
)
from app.services.phase_badges import get_phase_permission_badge
from app.services.phase_permissions import (
    ActorSnapshot,
    evaluate_phase_permission,
    filter_work_items_by_phase,
)
from app.services.phase_taxonomy import (
    OVERRIDE_STATES,
    PHASE_ORDER,
    resolve_lifecycle_state,
)

logger = logging.getLogger(__name__)

EDITABLE_ITEM_FIELDS = ("title", "description", "type")
DERIVED_ITEM_FIELDS = ("phase", "override_status", "workspace_id", "team_id")
TASK_FIELDS = ("title", "status", "effort_weight")
TITLE_MAX_LENGTH = 300


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ── Lookup helpers (used by blueprints to resolve the workspace) ─────────────


def workspace_id_for_work_item(work_item_id: int) -> int:
    workspace_id = db.session.execute(
        select(WorkItem.workspace_id).where(WorkItem.id == work_item_id)
    ).scalar_one_or_none()
    if workspace_id is None:
        raise NotFoundError(resource="WorkItem", resource_id=work_item_id)
    return workspace_id


def workspace_id_for_task(task_id: int) -> int:
    workspace_id = db.session.execute(
        select(WorkItem.workspace_id)
        .join(Task, Task.work_item_id == WorkItem.id)
        .where(Task.id == task_id)
    ).scalar_one_or_none()
    if workspace_id is None:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return workspace_id


# ── Validation ───────────────────────────────────────────────────────────────


def _validate_title(value, errors: dict, field: str = "title") -> None:
    if not isinstance(value, str) or not value.strip():
        errors[field] = "Must be a non-empty string."
    elif len(value) > TITLE_MAX_LENGTH:
        errors[field] = f"Must be ≤ {TITLE_MAX_LENGTH} characters."


def _validate_item_patch(data: dict) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Work item payload must be an object")
    errors: dict[str, str] = {}
    for key in data:
        if key in DERIVED_ITEM_FIELDS:
            errors[key] = "Field cannot be set directly."
        elif key not in EDITABLE_ITEM_FIELDS:
            errors[key] = "Unknown field."
    if "title" in data:
        _validate_title(data["title"], errors)
    if "type" in data and data["type"] not in WORK_ITEM_TYPES:
        errors["type"] = f"Must be one of: {', '.join(WORK_ITEM_TYPES)}."
    if "description" in data and data["description"] is not None and not isinstance(data["description"], str):
        errors["description"] = "Must be a string."
    if errors:
        raise ValidationError("Invalid work item update", details=errors)
    return {k: data[k] for k in EDITABLE_ITEM_FIELDS if k in data}


def _validate_task_fields(data: dict, *, creating: bool) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Task payload must be an object")
    errors: dict[str, str] = {}
    for key in data:
        if key not in TASK_FIELDS and key != "id":
            errors[key] = "Unknown field."
    if creating or "title" in data:
        _validate_title(data.get("title"), errors)
    if "status" in data:
        try:
            validate_task_status(data["status"])
        except ValidationError as exc:
            errors.update(exc.details)
    if "effort_weight" in data:
        try:
            validate_effort_weight(data["effort_weight"])
        except ValidationError as exc:
            errors.update(exc.details)
    if errors:
        raise ValidationError("Invalid task", details=errors)
    return {k: data[k] for k in TASK_FIELDS if k in data}


# ── Transaction runner ───────────────────────────────────────────────────────


def _gated_write(
    snapshot: ActorSnapshot,
    work_item_id: int,
    mutate: Callable[[WorkItem], dict],
    *,
    expected_phase: str | None = None,
    action: str = "edit",
    audit_action: str = "work_item.update",
) -> WorkItem:
    """Run ``mutate`` inside the pre/post phase check transaction.

    ``mutate`` returns the audit diff; an empty diff skips the audit row.
    """
    try:
        item = access_gate.load_work_item(snapshot, work_item_id, for_update=True)
        current = access_gate.derive_phase(item)
        if expected_phase is not None:
            expected = resolve_lifecycle_state(expected_phase)
            if expected != current:
                raise StaleDerivationError(expected, current)

        before = access_gate.require_permission(snapshot, item, action, stage="before change")
        diff = mutate(item)
        after = access_gate.authorize_mutation(snapshot, item, action)
        recompute_work_item_phase(item)

        if diff:
            if before != after:
                diff["phase"] = {"old": before, "new": after}
            write_audit(
                entity_type="work_item",
                entity_id=item.id,
                action=audit_action,
                actor_user_id=snapshot.user_id,
                team_id=item.team_id,
                workspace_id=item.workspace_id,
                diff=diff,
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "%s on work item %s by user=%s (phase %s -> %s)",
        audit_action, work_item_id, snapshot.user_id, before, after,
        extra={
            "workspace_id": snapshot.workspace_id,
            "work_item_id": work_item_id,
            "phase": after,
        },
    )
    return item


def _apply_task_patch(task: Task, fields: dict, diff: dict) -> None:
    for key, value in fields.items():
        if getattr(task, key) != value:
            diff.setdefault(f"task:{task.id}", {})[key] = {"old": getattr(task, key), "new": value}
            setattr(task, key, value)


def _task_in_item(item: WorkItem, task_id) -> Task:
    task = db.session.get(Task, task_id) if _is_int(task_id) else None
    if task is None or task.work_item_id != item.id:
        raise NotFoundError(resource="Task", resource_id=task_id)
    return task


# ── Work item operations ─────────────────────────────────────────────────────


def get_work_item_view(snapshot: ActorSnapshot, work_item_id: int) -> dict:
    """Item with its tasks, derived phase, progress and the caller's permission."""
    item = access_gate.load_work_item(snapshot, work_item_id)
    phase = access_gate.derive_phase(item)
    permission = evaluate_phase_permission(snapshot, phase)
    data = item.to_dict(include_tasks=True)
    data["phase"] = phase
    data["progress"] = calculate_progress(item.tasks)
    data["effort"] = summarize_tasks(item.tasks)
    data["permission"] = permission.to_dict()
    data["badge"] = get_phase_permission_badge(phase, permission)
    return data


def list_work_items(snapshot: ActorSnapshot, filter_type: str = "view") -> list[dict]:
    """Work items in the snapshot's workspace the caller may view (or edit)."""
    items = db.session.execute(
        select(WorkItem)
        .where(WorkItem.workspace_id == snapshot.workspace_id)
        .order_by(WorkItem.id)
    ).scalars().all()
    visible = filter_work_items_by_phase(items, access_gate.derive_phase, snapshot, filter_type)
    result = []
    for item in visible:
        phase = access_gate.derive_phase(item)
        d = item.to_dict()
        d["phase"] = phase
        d["permission"] = evaluate_phase_permission(snapshot, phase).to_dict()
        result.append(d)
    return result


def update_work_item(
    snapshot: ActorSnapshot,
    work_item_id: int,
    data: dict,
    *,
    task_updates: list[dict] | None = None,
    expected_phase: str | None = None,
) -> WorkItem:
    """Edit item fields and, optionally, several tasks in one transaction."""
    fields = _validate_item_patch(data)
    if task_updates is not None and not isinstance(task_updates, list):
        raise ValidationError("task_updates must be a list", details={"task_updates": "Must be a list."})
    task_patches = []
    for entry in task_updates or []:
        if not isinstance(entry, dict) or not _is_int(entry.get("id")):
            raise ValidationError(
                "Each task update needs an integer id",
                details={"task_updates": "Each entry must be an object with an integer id."},
            )
        task_patches.append((entry["id"], _validate_task_fields(entry, creating=False)))

    def mutate(item: WorkItem) -> dict:
        diff = {}
        for key, value in fields.items():
            if getattr(item, key) != value:
                diff[key] = {"old": getattr(item, key), "new": value}
                setattr(item, key, value)
        for task_id, patch in task_patches:
            _apply_task_patch(_task_in_item(item, task_id), patch, diff)
        return diff

    return _gated_write(snapshot, work_item_id, mutate, expected_phase=expected_phase)


def delete_work_item(snapshot: ActorSnapshot, work_item_id: int) -> None:
    try:
        item = access_gate.load_work_item(snapshot, work_item_id, for_update=True)
        phase = access_gate.require_permission(snapshot, item, "delete")
        snapshot_row = item.to_dict()
        db.session.delete(item)
        write_audit(
            entity_type="work_item",
            entity_id=work_item_id,
            action="work_item.delete",
            actor_user_id=snapshot.user_id,
            team_id=snapshot.team_id,
            workspace_id=snapshot.workspace_id,
            diff=snapshot_row,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Work item %s deleted by user=%s", work_item_id, snapshot.user_id,
        extra={"workspace_id": snapshot.workspace_id, "work_item_id": work_item_id, "phase": phase},
    )


# ── Task operations ──────────────────────────────────────────────────────────


def create_task(
    snapshot: ActorSnapshot,
    work_item_id: int,
    data: dict,
    *,
    expected_phase: str | None = None,
) -> Task:
    fields = _validate_task_fields(data, creating=True)
    created: list[Task] = []

    def mutate(item: WorkItem) -> dict:
        task = Task(
            work_item_id=item.id,
            title=fields["title"].strip(),
            status=fields.get("status", "todo"),
            effort_weight=fields.get("effort_weight", 1),
        )
        db.session.add(task)
        db.session.flush()
        created.append(task)
        return {"task_created": task.to_dict()}

    _gated_write(
        snapshot, work_item_id, mutate,
        expected_phase=expected_phase, audit_action="task.create",
    )
    return created[0]


def update_task(
    snapshot: ActorSnapshot,
    task_id: int,
    patch: dict,
    *,
    expected_phase: str | None = None,
) -> Task:
    fields = _validate_task_fields(patch, creating=False)
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)

    def mutate(item: WorkItem) -> dict:
        diff: dict = {}
        _apply_task_patch(_task_in_item(item, task_id), fields, diff)
        return diff

    _gated_write(
        snapshot, task.work_item_id, mutate,
        expected_phase=expected_phase, audit_action="task.update",
    )
    return task


def delete_task(snapshot: ActorSnapshot, task_id: int, *, expected_phase: str | None = None) -> None:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError(resource="Task", resource_id=task_id)

    def mutate(item: WorkItem) -> dict:
        target = _task_in_item(item, task_id)
        row = target.to_dict()
        db.session.delete(target)
        return {"task_deleted": row}

    _gated_write(
        snapshot, task.work_item_id, mutate,
        expected_phase=expected_phase, audit_action="task.delete",
    )


# ── Manual override ──────────────────────────────────────────────────────────


def set_override(snapshot: ActorSnapshot, work_item_id: int, status) -> WorkItem:
    """Pin the item to a phase or hold state until explicitly cleared."""
    state = resolve_lifecycle_state(status)

    def mutate(item: WorkItem) -> dict:
        if item.override_status == state:
            return {}
        diff = {"override_status": {"old": item.override_status, "new": state}}
        item.override_status = state
        return diff

    return _gated_write(snapshot, work_item_id, mutate, audit_action="work_item.override_set")


def clear_override(snapshot: ActorSnapshot, work_item_id: int) -> WorkItem:
    """Drop the override; the phase is derived from tasks again."""

    def mutate(item: WorkItem) -> dict:
        if item.override_status is None:
            return {}
        diff = {"override_status": {"old": item.override_status, "new": None}}
        item.override_status = None
        return diff

    return _gated_write(snapshot, work_item_id, mutate, audit_action="work_item.override_clear")


# ── Analytics ────────────────────────────────────────────────────────────────


def get_phase_distribution(workspace_id: int) -> dict:
    """Work-item counts per phase and override state, from the phase snapshot."""
    rows = db.session.execute(
        select(WorkItem.phase, func.count(WorkItem.id))
        .where(WorkItem.workspace_id == workspace_id)
        .group_by(WorkItem.phase)
    ).all()
    counts = {state: 0 for state in (*PHASE_ORDER, *OVERRIDE_STATES)}
    for phase, count in rows:
        counts[resolve_lifecycle_state(phase)] += count
    total = sum(counts.values())
    return {
        "workspace_id": workspace_id,
        "total": total,
        "distribution": {
            state: {
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0.0,
            }
            for state, count in counts.items()
        },
    }
