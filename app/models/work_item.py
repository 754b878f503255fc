"""
Phase Access Platform
Work item domain models.

Models:
    - WorkItem: a feature / concept / bug / enhancement inside a workspace.
    - Task: a weighted unit of work whose status drives the item's phase.

``WorkItem.phase`` is a derived snapshot used for listing and analytics.
It is rewritten whenever a task changes and is never consulted for
authorization; the access gate always re-derives from the tasks.
"""

from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

WORK_ITEM_TYPES = ("feature", "concept", "bug", "enhancement")
TASK_STATUSES = ("todo", "in_progress", "done")


class WorkItem(db.Model):
    __tablename__ = "work_items"
    __table_args__ = (
        db.Index("idx_work_items_workspace_phase", "workspace_id", "phase"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workspace_id = db.Column(
        db.Integer, db.ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(
        db.String(20), nullable=False, default="feature",
        comment="feature | concept | bug | enhancement",
    )
    override_status = db.Column(
        db.String(20), nullable=True,
        comment="Sticky manual override: a canonical phase, on_hold or cancelled",
    )
    phase = db.Column(
        db.String(20), nullable=False, default="design",
        comment="Derived snapshot; refreshed on every task mutation",
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    tasks = db.relationship(
        "Task", back_populates="work_item",
        cascade="all, delete-orphan", order_by="Task.id",
    )

    def to_dict(self, include_tasks: bool = False) -> dict:
        d = {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "team_id": self.team_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "override_status": self.override_status,
            "phase": self.phase,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_tasks:
            d["tasks"] = [t.to_dict() for t in self.tasks]
        return d

    def __repr__(self):
        return f"<WorkItem {self.id}: {self.title[:30]} ({self.phase})>"


class Task(db.Model):
    __tablename__ = "tasks"
    __table_args__ = (
        db.CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in TASK_STATUSES) + ")",
            name="ck_tasks_status",
        ),
        db.CheckConstraint("effort_weight >= 0", name="ck_tasks_effort_weight"),
    )

    id = db.Column(db.Integer, primary_key=True)
    work_item_id = db.Column(
        db.Integer, db.ForeignKey("work_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="todo")
    effort_weight = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    work_item = db.relationship("WorkItem", back_populates="tasks")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_item_id": self.work_item_id,
            "title": self.title,
            "status": self.status,
            "effort_weight": self.effort_weight,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.status} w={self.effort_weight}>"
