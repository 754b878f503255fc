"""
Phase Assignment Service — CRUD for per-phase grants.

Business context:
    A PhaseAssignment lets a plain team member edit work items in one
    phase of one workspace.  Only owners and admins of the owning team
    may create, change or delete assignments; every member may read them.

    Invariants:
      - at most one assignment per (workspace, user, canonical phase);
        legacy rows are compared after ``migrate_phase``, so a stored
        ``execution`` row blocks a new ``build`` row.  Duplicates are
        rejected, never upserted.
      - workspace_id, user_id and phase are immutable after creation;
        only can_edit, is_lead and notes may be patched.
      - removing a team member removes all of that member's assignments.

Layer contract:
    - All DB work and commits for assignments live here.
    - Every mutation appends an AuditLog row in the same transaction.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.phase_assignment import PhaseAssignment
from app.models.team import TeamMember, User, Workspace
from app.services.phase_permissions import PhaseGrant
from app.services.phase_taxonomy import PHASE_ORDER, migrate_phase
from app.services.role_resolver import get_team_role, is_elevated

logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("can_edit", "is_lead", "notes")
IMMUTABLE_FIELDS = ("workspace_id", "user_id", "phase", "team_id")
NOTES_MAX_LENGTH = 1000

# Lead-coverage thresholds for analytics
MAX_HEALTHY_LEADS = 2


# ── Validation ───────────────────────────────────────────────────────────────


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_flags_and_notes(data: dict, errors: dict) -> None:
    for flag in ("can_edit", "is_lead"):
        if flag in data and not isinstance(data[flag], bool):
            errors[flag] = "Must be a boolean."
    if "notes" in data and data["notes"] is not None:
        if not isinstance(data["notes"], str):
            errors["notes"] = "Must be a string."
        elif len(data["notes"]) > NOTES_MAX_LENGTH:
            errors["notes"] = f"Must be ≤ {NOTES_MAX_LENGTH} characters."


def validate_phase_assignment(data: dict) -> dict:
    """Check a create payload without touching the database.

    Returns the normalised payload (canonical phase, defaulted flags).

    Raises:
        ValidationError: with a field → reason map in ``details``.
    """
    if not isinstance(data, dict):
        raise ValidationError("Assignment payload must be an object")

    errors: dict[str, str] = {}

    if data.get("workspace_id") is None:
        errors["workspace_id"] = "workspace_id is required."
    elif not _is_int(data["workspace_id"]):
        errors["workspace_id"] = "Must be an integer."

    if data.get("user_id") is None:
        errors["user_id"] = "user_id is required."
    elif not _is_int(data["user_id"]):
        errors["user_id"] = "Must be an integer."

    phase = None
    if data.get("phase") is None:
        errors["phase"] = "phase is required."
    else:
        try:
            phase = migrate_phase(data["phase"])
        except ValidationError as exc:
            errors["phase"] = exc.details.get("phase", str(exc))

    _validate_flags_and_notes(data, errors)

    if errors:
        raise ValidationError("Invalid phase assignment", details=errors)

    return {
        "workspace_id": data["workspace_id"],
        "user_id": data["user_id"],
        "phase": phase,
        "can_edit": data.get("can_edit", True),
        "is_lead": data.get("is_lead", False),
        "notes": data.get("notes"),
    }


# ── Authorization helper ─────────────────────────────────────────────────────


def _require_manager(actor_id: int | None, team_id: int) -> str:
    """Return the actor's role if owner/admin, else raise PermissionDenied."""
    role = get_team_role(actor_id, team_id)
    if not is_elevated(role):
        logger.warning(
            "Assignment management denied: user=%s team=%s role=%s",
            actor_id, team_id, role,
            extra={"event_type": "phase_assignment_denied"},
        )
        raise PermissionDenied(
            "Only team owners and admins can manage phase assignments",
            required="owner/admin",
            role=role,
            user_id=actor_id,
            action="assign",
        )
    return role


def _get_workspace(workspace_id: int) -> Workspace:
    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFoundError(resource="Workspace", resource_id=workspace_id)
    return workspace


def _get_assignment(assignment_id: int) -> PhaseAssignment:
    assignment = db.session.get(PhaseAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="PhaseAssignment", resource_id=assignment_id)
    return assignment


# ── Mutations ────────────────────────────────────────────────────────────────


def create_assignment(actor_id: int | None, workspace_id: int, data: dict) -> PhaseAssignment:
    """Grant a team member access to one phase of a workspace.

    Raises:
        NotFoundError: workspace does not exist.
        PermissionDenied: actor is not owner/admin of the owning team.
        ValidationError: bad payload, or target user is not a team member.
        ConflictError: the user already holds this phase (after migration).
    """
    workspace = _get_workspace(workspace_id)
    _require_manager(actor_id, workspace.team_id)

    payload = validate_phase_assignment({**data, "workspace_id": workspace_id})
    user_id = payload["user_id"]
    phase = payload["phase"]

    if get_team_role(user_id, workspace.team_id) is None:
        raise ValidationError(
            "Target user is not a member of this team",
            details={"user_id": "Must be a member of the workspace's team."},
        )

    existing_phases = db.session.execute(
        select(PhaseAssignment.phase).where(
            PhaseAssignment.workspace_id == workspace_id,
            PhaseAssignment.user_id == user_id,
        )
    ).scalars().all()
    if any(migrate_phase(p) == phase for p in existing_phases):
        raise ConflictError(resource="PhaseAssignment", field="phase", value=phase)

    assignment = PhaseAssignment(
        team_id=workspace.team_id,
        workspace_id=workspace_id,
        user_id=user_id,
        phase=phase,
        can_edit=payload["can_edit"],
        is_lead=payload["is_lead"],
        notes=payload["notes"],
        assigned_by=actor_id,
    )
    db.session.add(assignment)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        # membership removed concurrently: the composite FK failed, not the unique key
        if get_team_role(user_id, workspace.team_id) is None:
            raise ValidationError(
                "Target user is not a member of this team",
                details={"user_id": "Must be a member of the workspace's team."},
            ) from None
        raise ConflictError(resource="PhaseAssignment", field="phase", value=phase) from None

    write_audit(
        entity_type="phase_assignment",
        entity_id=assignment.id,
        action="phase_assignment.create",
        actor_user_id=actor_id,
        team_id=workspace.team_id,
        workspace_id=workspace_id,
        diff=assignment.to_dict(),
    )
    db.session.commit()
    logger.info(
        "Phase assignment created: user=%s phase=%s can_edit=%s by=%s",
        user_id, phase, assignment.can_edit, actor_id,
        extra={"workspace_id": workspace_id, "phase": phase},
    )
    return assignment


def update_assignment(actor_id: int | None, assignment_id: int, patch: dict) -> PhaseAssignment:
    """Set can_edit / is_lead / notes.

    Values are assigned, never toggled, so replaying the same patch is a
    no-op.  Immutable fields in the patch are rejected.
    """
    if not isinstance(patch, dict):
        raise ValidationError("Patch payload must be an object")

    assignment = _get_assignment(assignment_id)
    _require_manager(actor_id, assignment.team_id)

    errors: dict[str, str] = {}
    for key in patch:
        if key in IMMUTABLE_FIELDS:
            errors[key] = "Field is immutable; delete and recreate the assignment."
        elif key not in MUTABLE_FIELDS:
            errors[key] = "Unknown field."
    _validate_flags_and_notes(patch, errors)
    if errors:
        raise ValidationError("Invalid phase assignment update", details=errors)

    diff = {}
    for key in MUTABLE_FIELDS:
        if key in patch and getattr(assignment, key) != patch[key]:
            diff[key] = {"old": getattr(assignment, key), "new": patch[key]}
            setattr(assignment, key, patch[key])

    if diff:
        write_audit(
            entity_type="phase_assignment",
            entity_id=assignment.id,
            action="phase_assignment.update",
            actor_user_id=actor_id,
            team_id=assignment.team_id,
            workspace_id=assignment.workspace_id,
            diff=diff,
        )
        db.session.commit()
        logger.info(
            "Phase assignment %s updated: %s by=%s", assignment.id, sorted(diff), actor_id,
            extra={"workspace_id": assignment.workspace_id, "phase": assignment.phase},
        )
    return assignment


def delete_assignment(actor_id: int | None, assignment_id: int) -> None:
    assignment = _get_assignment(assignment_id)
    _require_manager(actor_id, assignment.team_id)

    snapshot = assignment.to_dict()
    db.session.delete(assignment)
    write_audit(
        entity_type="phase_assignment",
        entity_id=assignment_id,
        action="phase_assignment.delete",
        actor_user_id=actor_id,
        team_id=snapshot["team_id"],
        workspace_id=snapshot["workspace_id"],
        diff=snapshot,
    )
    db.session.commit()
    logger.info(
        "Phase assignment %s deleted by=%s", assignment_id, actor_id,
        extra={"workspace_id": snapshot["workspace_id"], "phase": snapshot["phase"]},
    )


def remove_team_member(actor_id: int | None, team_id: int, user_id: int) -> int:
    """Remove a member from a team, cascading their phase assignments.

    Admins cannot remove owners, and the last owner cannot be removed.

    Returns:
        Number of phase assignments removed with the membership.
    """
    actor_role = _require_manager(actor_id, team_id)

    member = db.session.execute(
        select(TeamMember).where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
    ).scalar_one_or_none()
    if member is None:
        raise NotFoundError(resource="TeamMember", resource_id=user_id)

    if member.role == "owner":
        if actor_role != "owner":
            raise PermissionDenied(
                "Only owners can remove an owner",
                required="owner",
                role=actor_role,
                user_id=actor_id,
                action="manage",
            )
        owner_count = db.session.execute(
            select(func.count(TeamMember.id)).where(
                TeamMember.team_id == team_id, TeamMember.role == "owner",
            )
        ).scalar_one()
        if owner_count <= 1:
            raise ValidationError(
                "Cannot remove the last owner of a team",
                details={"user_id": "Team must keep at least one owner."},
            )

    removed = len(member.phase_assignments)
    snapshot = member.to_dict()
    db.session.delete(member)
    write_audit(
        entity_type="team_member",
        entity_id=member.id,
        action="team_member.remove",
        actor_user_id=actor_id,
        team_id=team_id,
        diff={**snapshot, "phase_assignments_removed": removed},
    )
    db.session.commit()
    logger.info(
        "Team member removed: team=%s user=%s assignments_removed=%d by=%s",
        team_id, user_id, removed, actor_id,
    )
    return removed


# ── Reads ────────────────────────────────────────────────────────────────────


def _phase_sort_key(assignment: PhaseAssignment) -> tuple:
    return (assignment.user_id, PHASE_ORDER.index(migrate_phase(assignment.phase)))


def list_assignments(workspace_id: int, user_id: int | None = None) -> list[PhaseAssignment]:
    stmt = select(PhaseAssignment).where(PhaseAssignment.workspace_id == workspace_id)
    if user_id is not None:
        stmt = stmt.where(PhaseAssignment.user_id == user_id)
    rows = db.session.execute(stmt).scalars().all()
    return sorted(rows, key=_phase_sort_key)


def get_actor_grants(workspace_id: int, user_id: int) -> tuple[PhaseGrant, ...]:
    """The user's grants in a workspace, as evaluator value objects."""
    return tuple(
        PhaseGrant.from_assignment(a) for a in list_assignments(workspace_id, user_id)
    )


def get_phase_leads(workspace_id: int) -> dict[str, list[dict]]:
    """Leads per canonical phase, with basic user details."""
    rows = db.session.execute(
        select(PhaseAssignment, User)
        .join(User, User.id == PhaseAssignment.user_id)
        .where(
            PhaseAssignment.workspace_id == workspace_id,
            PhaseAssignment.is_lead.is_(True),
        )
        .order_by(PhaseAssignment.assigned_at)
    ).all()

    leads: dict[str, list[dict]] = {phase: [] for phase in PHASE_ORDER}
    for assignment, user in rows:
        leads[migrate_phase(assignment.phase)].append({
            "user_id": user.id,
            "email": user.email,
            "full_name": user.full_name,
            "can_edit": assignment.can_edit,
            "assigned_at": assignment.assigned_at.isoformat() if assignment.assigned_at else None,
        })
    return leads


def _lead_status(lead_count: int) -> str:
    if lead_count == 0:
        return "needs_lead"
    if lead_count > MAX_HEALTHY_LEADS:
        return "too_many_leads"
    if lead_count == 1:
        return "optimal"
    return "adequate"


def get_phase_analytics(workspace_id: int) -> dict:
    """Lead and contributor coverage per phase for a workspace."""
    workspace = _get_workspace(workspace_id)
    assignments = list_assignments(workspace_id)
    leads = get_phase_leads(workspace_id)

    lead_counts = {p: 0 for p in PHASE_ORDER}
    contributor_counts = {p: 0 for p in PHASE_ORDER}
    member_counts = {p: 0 for p in PHASE_ORDER}
    for a in assignments:
        phase = migrate_phase(a.phase)
        if a.is_lead:
            lead_counts[phase] += 1
        elif a.can_edit:
            contributor_counts[phase] += 1
        member_counts[phase] += 1

    phases_with_leads = sum(1 for p in PHASE_ORDER if lead_counts[p] > 0)
    return {
        "workspace_id": workspace.id,
        "workspace_name": workspace.name,
        "summary": {
            "total_phases": len(PHASE_ORDER),
            "phases_with_leads": phases_with_leads,
            "coverage_percentage": round(phases_with_leads / len(PHASE_ORDER) * 100),
            "total_leads": sum(lead_counts.values()),
            "total_contributors": sum(contributor_counts.values()),
            "total_assignments": len(assignments),
        },
        "lead_counts": lead_counts,
        "contributor_counts": contributor_counts,
        "total_member_counts": member_counts,
        "phases_needing_attention": [
            {
                "phase": p,
                "lead_count": lead_counts[p],
                "issue": "no_leads" if lead_counts[p] == 0 else "too_many_leads",
            }
            for p in PHASE_ORDER
            if lead_counts[p] == 0 or lead_counts[p] > MAX_HEALTHY_LEADS
        ],
        "phase_breakdown": [
            {
                "phase": p,
                "leads": lead_counts[p],
                "contributors": contributor_counts[p],
                "total_members": member_counts[p],
                "lead_details": leads[p],
                "status": _lead_status(lead_counts[p]),
            }
            for p in PHASE_ORDER
        ],
    }
