"""
Phase Access Platform
Team domain models.

Models:
    - User: platform account (identity only; authentication is JWT-based).
    - Team: the unit that owns workspaces and grants roles.
    - TeamMember: one row per (team, user) carrying exactly one role.
    - Workspace: a product workspace inside a team; work items live here.
"""

from datetime import UTC, datetime

from app.models import db
from app.services.phase_permissions import TEAM_ROLES

_ROLE_CHECK = "role IN (" + ", ".join(f"'{r}'" for r in TEAM_ROLES) + ")"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    full_name = db.Column(db.String(200), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    members = db.relationship(
        "TeamMember", back_populates="team",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    workspaces = db.relationship(
        "Workspace", back_populates="team",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<Team {self.id}: {self.name}>"


class TeamMember(db.Model):
    """
    A user's membership in a team.

    Exactly one role per (team, user).  Phase assignments reference the
    membership through the composite (team_id, user_id) key so that
    removing the member removes every grant they held.
    """

    __tablename__ = "team_members"
    __table_args__ = (
        db.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        db.CheckConstraint(_ROLE_CHECK, name="ck_team_members_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    role = db.Column(
        db.String(20), nullable=False, default="member",
        comment="owner | admin | member",
    )
    joined_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    team = db.relationship("Team", back_populates="members")
    user = db.relationship("User")
    phase_assignments = db.relationship(
        "PhaseAssignment",
        back_populates="member",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f"<TeamMember team={self.team_id} user={self.user_id} role={self.role}>"


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    team = db.relationship("Team", back_populates="workspaces")

    def to_dict(self) -> dict:
        return {"id": self.id, "team_id": self.team_id, "name": self.name}

    def __repr__(self):
        return f"<Workspace {self.id}: {self.name}>"
