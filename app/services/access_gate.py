"""
Access Gate — binds actors, work items and the permission evaluator.

Business context:
    The gate answers "may this actor do X to this work item right now?".
    It always re-derives the item's phase from its tasks (or override)
    with ``phase_calculator.calculate_phase``; the cached
    ``WorkItem.phase`` column is never trusted for a decision.

    On the write path the gate is authoritative: mutations are checked
    against the item's state before the change and again after it, in
    the same transaction, with the work-item row locked.  A member who
    may edit ``build`` can therefore neither edit a ``launch`` item nor
    push a ``build`` item into ``launch`` by completing its last task.

Usage:
    snapshot = build_actor_snapshot(g.jwt_user_id, workspace_id)
    perm = evaluate(snapshot, work_item_id)
    if perm.can_edit: ...
"""

import logging
from collections.abc import Iterable

from sqlalchemy import select

from app.core.exceptions import REQUIRED_FOR_EDIT, NotFoundError, PermissionDenied
from app.models import db
from app.models.work_item import WorkItem
from app.services.phase_assignment_service import get_actor_grants
from app.services.phase_calculator import calculate_phase
from app.services.phase_permissions import (
    ActorSnapshot,
    PhasePermission,
    can_perform_action,
    evaluate_phase_permission,
)
from app.services.role_resolver import get_workspace_role

logger = logging.getLogger(__name__)


# ── Actor snapshots ──────────────────────────────────────────────────────────


def build_actor_snapshot(user_id: int | None, workspace_id: int) -> ActorSnapshot:
    """Load role and grants for a user in a workspace.

    Raises:
        NotFoundError: the workspace does not exist.
        PermissionDenied: the user is not a member of the owning team.
    """
    workspace, role = get_workspace_role(user_id, workspace_id)
    if workspace is None:
        raise NotFoundError(resource="Workspace", resource_id=workspace_id)
    if role is None:
        logger.warning(
            "Non-member access attempt: user=%s workspace=%s", user_id, workspace_id,
            extra={"event_type": "phase_permission_denied", "workspace_id": workspace_id},
        )
        raise PermissionDenied(
            "You are not a member of this team",
            required="team membership",
            user_id=user_id,
            action="view",
        )
    grants = get_actor_grants(workspace_id, user_id)
    return ActorSnapshot(
        user_id=user_id,
        team_id=workspace.team_id,
        workspace_id=workspace_id,
        role=role,
        grants=grants,
    )


# ── Evaluation ───────────────────────────────────────────────────────────────


def load_work_item(snapshot: ActorSnapshot, work_item_id: int, *, for_update: bool = False) -> WorkItem:
    """Fetch a work item in the snapshot's workspace.

    Items from other workspaces are reported as missing.  ``for_update``
    takes a row lock on backends that support it (SQLite ignores it).
    """
    stmt = select(WorkItem).where(
        WorkItem.id == work_item_id,
        WorkItem.workspace_id == snapshot.workspace_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    item = db.session.execute(stmt).scalar_one_or_none()
    if item is None:
        raise NotFoundError(
            resource="WorkItem", resource_id=work_item_id, workspace_id=snapshot.workspace_id,
        )
    return item


def derive_phase(work_item: WorkItem) -> str:
    return calculate_phase(work_item.override_status, work_item.tasks)


def evaluate_state(snapshot: ActorSnapshot, override_status, tasks: Iterable) -> PhasePermission:
    """Evaluate against an in-memory item state (override + tasks)."""
    return evaluate_phase_permission(snapshot, calculate_phase(override_status, tasks))


def evaluate(snapshot: ActorSnapshot, work_item_id: int) -> PhasePermission:
    """Permission triple for the actor on a persisted work item."""
    item = load_work_item(snapshot, work_item_id)
    return evaluate_phase_permission(snapshot, derive_phase(item))


# ── Enforcement ──────────────────────────────────────────────────────────────


def _deny(snapshot: ActorSnapshot, work_item: WorkItem, phase: str, action: str, stage: str):
    logger.warning(
        "Phase permission denied: user=%s role=%s action=%s item=%s phase=%s (%s)",
        snapshot.user_id, snapshot.role, action, work_item.id, phase, stage,
        extra={
            "event_type": "phase_permission_denied",
            "workspace_id": snapshot.workspace_id,
            "work_item_id": work_item.id,
            "phase": phase,
        },
    )
    raise PermissionDenied(
        f"You cannot {action} work items in the {phase} phase",
        denied_phase=phase,
        required=REQUIRED_FOR_EDIT,
        role=snapshot.role,
        user_id=snapshot.user_id,
        action=action,
    )


def require_permission(
    snapshot: ActorSnapshot,
    work_item: WorkItem,
    action: str = "edit",
    *,
    stage: str = "current",
) -> str:
    """Raise PermissionDenied unless ``action`` is allowed at the item's derived phase.

    Returns the derived phase.
    """
    phase = derive_phase(work_item)
    if not can_perform_action(snapshot, phase, action):
        _deny(snapshot, work_item, phase, action, stage)
    return phase


def authorize_mutation(snapshot: ActorSnapshot, work_item: WorkItem, action: str = "edit") -> str:
    """Post-mutation check.

    Call after the pending changes are flushed and before commit; the
    caller rolls back on denial.
    """
    db.session.flush()
    db.session.expire(work_item, ["tasks"])
    return require_permission(snapshot, work_item, action, stage="after change")
