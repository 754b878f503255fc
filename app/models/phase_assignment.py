"""
Phase Access Platform
Phase assignment model.

Models:
    - PhaseAssignment: per-workspace, per-user, per-phase grant.

A grant with ``can_edit`` lets a plain team member edit work items whose
derived phase equals the grant's phase.  ``is_lead`` is an
informational flag and never implies edit rights.
"""

from datetime import UTC, datetime

from app.models import db
from app.services.phase_taxonomy import LEGACY_PHASE_MAP, PHASE_ORDER

_ALLOWED_PHASE_VALUES = (*PHASE_ORDER, *LEGACY_PHASE_MAP)


class PhaseAssignment(db.Model):
    __tablename__ = "user_phase_assignments"
    __table_args__ = (
        db.UniqueConstraint(
            "workspace_id", "user_id", "phase",
            name="uq_phase_assignment_workspace_user_phase",
        ),
        db.ForeignKeyConstraint(
            ["team_id", "user_id"],
            ["team_members.team_id", "team_members.user_id"],
            ondelete="CASCADE",
            name="fk_phase_assignment_team_member",
        ),
        db.CheckConstraint(
            "phase IN (" + ", ".join(f"'{p}'" for p in _ALLOWED_PHASE_VALUES) + ")",
            name="ck_phase_assignment_phase",
        ),
        db.Index("idx_phase_assignment_lookup", "workspace_id", "user_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, nullable=False, index=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, nullable=False, index=True)
    phase = db.Column(
        db.String(20), nullable=False,
        comment="design | build | refine | launch (legacy values readable)",
    )
    can_edit = db.Column(db.Boolean, nullable=False, default=True)
    is_lead = db.Column(db.Boolean, nullable=False, default=False)
    assigned_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    notes = db.Column(db.Text, nullable=True)

    member = db.relationship("TeamMember", back_populates="phase_assignments")
    workspace = db.relationship("Workspace")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "user_id": self.user_id,
            "phase": self.phase,
            "can_edit": self.can_edit,
            "is_lead": self.is_lead,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "notes": self.notes,
        }

    def __repr__(self):
        return (
            f"<PhaseAssignment {self.id}: user={self.user_id} "
            f"ws={self.workspace_id} phase={self.phase} edit={self.can_edit}>"
        )
