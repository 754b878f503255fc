"""
Phase Calculator — derives a work item's phase from its tasks.

Rule (weighted completion):
    completed = Σ effort_weight of tasks with status "done"
    inflight  = Σ effort_weight of tasks with status "in_progress"
    total     = Σ effort_weight of all tasks
    progress  = (completed + 0.5 × inflight) / total

    override set          → the override, verbatim (sticky until cleared)
    no tasks / total == 0 → design
    progress == 0         → design
    0 < progress < 1      → build
    progress >= 1         → launch

``refine`` is never derived; it is reachable only through an override.
The calculation is a pure function of the override and the multiset of
(status, weight) pairs, so task order never matters.
"""

import logging
from collections.abc import Iterable, Mapping

from app.core.exceptions import ValidationError
from app.models.work_item import TASK_STATUSES
from app.services.phase_taxonomy import (
    ACTIVE_PHASE,
    INITIAL_PHASE,
    TERMINAL_PHASE,
    resolve_lifecycle_state,
)

logger = logging.getLogger(__name__)

INFLIGHT_CREDIT = 0.5


# ── Input validation ─────────────────────────────────────────────────────────


def validate_task_status(status) -> str:
    if status not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid task status {status!r}",
            details={"status": f"Must be one of: {', '.join(TASK_STATUSES)}"},
        )
    return status


def validate_effort_weight(weight) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
        raise ValidationError(
            "effort_weight must be a non-negative integer",
            details={"effort_weight": "Must be a non-negative integer"},
        )
    return weight


# ── Pure derivation ──────────────────────────────────────────────────────────


def _task_fields(task) -> tuple[str, int]:
    if isinstance(task, Mapping):
        status = task.get("status")
        weight = task.get("effort_weight", 1)
    else:
        status = getattr(task, "status", None)
        weight = getattr(task, "effort_weight", 1)
    return validate_task_status(status), validate_effort_weight(
        1 if weight is None else weight
    )


def summarize_tasks(tasks: Iterable) -> dict:
    """Sum effort weight per status.

    Returns ``{"todo": w, "in_progress": w, "done": w, "total": w, "count": n}``.
    """
    summary = {status: 0 for status in TASK_STATUSES}
    count = 0
    for task in tasks:
        status, weight = _task_fields(task)
        summary[status] += weight
        count += 1
    summary["total"] = sum(summary[s] for s in TASK_STATUSES)
    summary["count"] = count
    return summary


def calculate_progress(tasks: Iterable) -> float | None:
    """Weighted progress in [0, 1], or None when there is no weight at all."""
    summary = summarize_tasks(tasks)
    if summary["total"] == 0:
        return None
    return (summary["done"] + INFLIGHT_CREDIT * summary["in_progress"]) / summary["total"]


def calculate_phase(override_status, tasks: Iterable) -> str:
    """Derive the lifecycle phase of a work item.

    Args:
        override_status: Manual override (canonical phase, legacy phase,
            ``on_hold`` or ``cancelled``) or None.
        tasks: Objects or mappings exposing ``status`` and ``effort_weight``.

    Returns:
        A canonical phase, or the override state when one is set.
    """
    if override_status:
        return resolve_lifecycle_state(override_status)

    progress = calculate_progress(tasks)
    if progress is None or progress <= 0:
        return INITIAL_PHASE
    if progress >= 1:
        return TERMINAL_PHASE
    return ACTIVE_PHASE


# ── Persistence helper ───────────────────────────────────────────────────────


def recompute_work_item_phase(work_item) -> str:
    """Re-derive ``work_item.phase`` from its persisted tasks.

    Runs synchronously inside the caller's transaction.  Callers flush
    pending task changes first so the relationship reflects them.
    """
    phase = calculate_phase(work_item.override_status, work_item.tasks)
    if work_item.phase != phase:
        logger.debug(
            "Work item %s phase %s -> %s", work_item.id, work_item.phase, phase,
            extra={"work_item_id": work_item.id, "phase": phase},
        )
        work_item.phase = phase
    return phase
