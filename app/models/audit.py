"""
Phase Access Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of access-control changes.
"""

import json
from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"phase_assignment", "team_member", "work_item", "task"}

AUDIT_ACTIONS = {
    "phase_assignment.create",
    "phase_assignment.update",
    "phase_assignment.delete",
    "team_member.remove",
    "work_item.update",
    "work_item.delete",
    "work_item.override_set",
    "work_item.override_clear",
    "task.create",
    "task.update",
    "task.delete",
}


class AuditLog(db.Model):
    """
    One row per access-control or lifecycle change.

    ``diff_json`` carries ``{field: {old, new}}`` for updates and the full
    row snapshot for creates and deletes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_workspace", "workspace_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="SET NULL"),
        nullable=True,
    )
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "workspace_id": self.workspace_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    team_id: int | None = None,
    workspace_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control; a rolled-back mutation leaves no audit row.
    """
    log = AuditLog(
        team_id=team_id,
        workspace_id=workspace_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
