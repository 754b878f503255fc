"""
Role Resolver — team role lookup.

Every authorization decision starts here: a user's role in the team that
owns a workspace.  Owners and admins are "elevated" and bypass phase
grants entirely; plain members rely on PhaseAssignment rows.
"""

import logging

from sqlalchemy import select

from app.models import db
from app.models.team import TeamMember, Workspace
from app.services.phase_permissions import ELEVATED_ROLES, TEAM_ROLES, is_elevated  # noqa: F401

logger = logging.getLogger(__name__)


def get_team_role(user_id: int | None, team_id: int) -> str | None:
    """Return the user's role in the team, or None when not a member."""
    if user_id is None:
        return None
    role = db.session.execute(
        select(TeamMember.role).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
        )
    ).scalar_one_or_none()
    if role is not None and role not in TEAM_ROLES:
        # CHECK constraint makes this unreachable on a healthy schema
        logger.error("Unknown team role %r for user=%s team=%s", role, user_id, team_id)
        return None
    return role


def get_workspace_role(user_id: int | None, workspace_id: int) -> tuple[Workspace | None, str | None]:
    """Resolve the owning team of a workspace and the user's role in it."""
    workspace = db.session.get(Workspace, workspace_id)
    if workspace is None:
        return None, None
    return workspace, get_team_role(user_id, workspace.team_id)
