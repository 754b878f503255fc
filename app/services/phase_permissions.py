"""
Phase Permission Evaluator — the single source of truth for phase access.

Business context:
    Editability of a work item is never stored.  It is decided from three
    inputs:
      1. the actor's team role (owner / admin / member),
      2. the actor's phase grants in the workspace,
      3. the item's current phase (derived from tasks, or a manual override).

    Rules (PHASE_EDIT_RULE):
      - view:    every team member, every phase.
      - edit:    owner/admin, OR a grant for the item's phase with can_edit.
      - delete:  same as edit.
      - assign:  owner/admin only (managing grants).

    ``is_lead`` is informational; it never grants edit.  Grants can only
    target the four canonical phases, so items pinned ``on_hold`` or
    ``cancelled`` are editable by owner/admin only.

    The same rule table is rendered into the database row-security policy
    (see ``phase_policy_sql``), and the same functions back the advisory
    client hooks (see ``app.client.hooks``), so UI and server cannot
    disagree about a decision.

Usage:
    snapshot = ActorSnapshot(user_id=7, team_id=1, workspace_id=3,
                             role="member",
                             grants=(PhaseGrant("build", can_edit=True),))
    evaluate_phase_permission(snapshot, "build").can_edit    # True
    evaluate_phase_permission(snapshot, "launch").can_edit   # False
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from app.core.exceptions import ValidationError
from app.services.phase_taxonomy import (
    PHASE_ORDER,
    migrate_phase,
    resolve_lifecycle_state,
)

# ── Roles ────────────────────────────────────────────────────────────────────

TEAM_ROLES: tuple[str, ...] = ("owner", "admin", "member")
ELEVATED_ROLES: frozenset[str] = frozenset({"owner", "admin"})

# ── Rule table ───────────────────────────────────────────────────────────────
# roles: team roles allowed unconditionally
# grant: assignment flag that allows the action for the assignment's phase
#        (None → no grant can allow it)

PHASE_EDIT_RULE: dict[str, dict] = {
    "view": {"roles": frozenset(TEAM_ROLES), "grant": None},
    "edit": {"roles": ELEVATED_ROLES, "grant": "can_edit"},
    "delete": {"roles": ELEVATED_ROLES, "grant": "can_edit"},
    "assign": {"roles": ELEVATED_ROLES, "grant": None},
}

ACTIONS: tuple[str, ...] = tuple(PHASE_EDIT_RULE)


def is_elevated(role: str | None) -> bool:
    return role in ELEVATED_ROLES


# ── Value types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PhasePermission:
    can_view: bool
    can_edit: bool
    can_delete: bool

    def to_dict(self) -> dict:
        return {
            "can_view": self.can_view,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
        }


@dataclass(frozen=True)
class PhaseGrant:
    """One phase assignment as seen by the evaluator.

    The phase is migrated to its canonical form on construction, so a
    grant stored under a legacy name compares equal to the canonical one.
    """

    phase: str
    can_edit: bool = False
    is_lead: bool = False

    def __post_init__(self):
        object.__setattr__(self, "phase", migrate_phase(self.phase))
        object.__setattr__(self, "can_edit", self.can_edit is True)
        object.__setattr__(self, "is_lead", self.is_lead is True)

    @classmethod
    def from_assignment(cls, assignment) -> "PhaseGrant":
        """Build from a PhaseAssignment row or an equivalent mapping."""
        if isinstance(assignment, dict):
            return cls(
                phase=assignment.get("phase"),
                can_edit=assignment.get("can_edit", False),
                is_lead=assignment.get("is_lead", False),
            )
        return cls(
            phase=assignment.phase,
            can_edit=assignment.can_edit,
            is_lead=assignment.is_lead,
        )


@dataclass(frozen=True)
class ActorSnapshot:
    """Everything the evaluator needs about an actor, immutable and hashable.

    ``role`` is None for a non-member; such a snapshot is denied everything.
    """

    user_id: int | None
    team_id: int | None
    workspace_id: int | None
    role: str | None
    grants: tuple[PhaseGrant, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.role is not None and self.role not in TEAM_ROLES:
            raise ValidationError(
                f"Unknown team role {self.role!r}",
                details={"role": f"Must be one of: {', '.join(TEAM_ROLES)}"},
            )
        object.__setattr__(self, "grants", tuple(self.grants))

    @property
    def is_elevated(self) -> bool:
        return is_elevated(self.role)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "role": self.role,
            "grants": [
                {"phase": g.phase, "can_edit": g.can_edit, "is_lead": g.is_lead}
                for g in self.grants
            ],
        }


# ── Decision core ────────────────────────────────────────────────────────────


def _rule_allows(action: str, role: str | None, grants: Iterable[PhaseGrant], target: str) -> bool:
    rule = PHASE_EDIT_RULE.get(action)
    if rule is None:
        raise ValidationError(
            f"Unknown action {action!r}",
            details={"action": f"Must be one of: {', '.join(ACTIONS)}"},
        )
    if role is None:
        return False
    if role in rule["roles"]:
        return True
    flag = rule["grant"]
    if flag is None:
        return False
    return any(g.phase == target and getattr(g, flag) is True for g in grants)


def evaluate_phase_permission(snapshot: ActorSnapshot, target_phase) -> PhasePermission:
    """Decide view / edit / delete for one phase (or override state).

    Pure: the same snapshot and target always produce the same result.

    Raises:
        ValidationError: when ``target_phase`` is not a phase, a legacy
            phase name or an override state.
    """
    target = resolve_lifecycle_state(target_phase)
    return PhasePermission(
        can_view=_rule_allows("view", snapshot.role, snapshot.grants, target),
        can_edit=_rule_allows("edit", snapshot.role, snapshot.grants, target),
        can_delete=_rule_allows("delete", snapshot.role, snapshot.grants, target),
    )


def get_user_phase_permissions(snapshot: ActorSnapshot) -> dict[str, PhasePermission]:
    """Permission triple for every canonical phase, in phase order."""
    return {phase: evaluate_phase_permission(snapshot, phase) for phase in PHASE_ORDER}


def can_perform_action(snapshot: ActorSnapshot, target_phase, action: str) -> bool:
    """Check one action (view | edit | delete | assign) against a phase."""
    return _rule_allows(
        action, snapshot.role, snapshot.grants, resolve_lifecycle_state(target_phase),
    )


# ── Convenience views ────────────────────────────────────────────────────────


def editable_phases(snapshot: ActorSnapshot) -> list[str]:
    return [p for p, perm in get_user_phase_permissions(snapshot).items() if perm.can_edit]


def lead_phases(snapshot: ActorSnapshot) -> list[str]:
    """Phases the actor leads.  Display only; leading implies nothing."""
    return [p for p in PHASE_ORDER if any(g.phase == p and g.is_lead for g in snapshot.grants)]


def has_any_edit_permission(snapshot: ActorSnapshot) -> bool:
    return bool(editable_phases(snapshot))


def filter_work_items_by_phase(
    work_items: Iterable,
    phase_of: Callable[[object], str],
    snapshot: ActorSnapshot,
    filter_type: str = "view",
) -> list:
    """Keep the items the actor may view (or edit) at their current phase.

    ``phase_of`` must derive the phase the same way the gate does
    (``phase_calculator.calculate_phase``), not read a cached column.
    """
    if filter_type not in ("view", "edit"):
        raise ValidationError(
            f"Unknown filter type {filter_type!r}",
            details={"filter_type": "Must be one of: view, edit"},
        )
    return [
        item for item in work_items
        if can_perform_action(snapshot, phase_of(item), filter_type)
    ]
