"""phase_access_initial

Creates the phase access-control schema:
  - users, teams, team_members, workspaces
  - work_items, tasks              — tasks drive the derived phase
  - user_phase_assignments         — per-phase grants, composite FK to team_members
  - audit_logs

On PostgreSQL also installs the row-security policy rendered from the
phase rule table (``flask phase-policy-sql`` prints the same DDL).

Tables are created conditionally so the migration can run against a
database that already received them via db.create_all().

Revision ID: a1f0c2d3e401
Revises:
Create Date: 2026-10-19 09:12:40.118305
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect

from app.models.work_item import TASK_STATUSES
from app.services.phase_permissions import TEAM_ROLES
from app.services.phase_taxonomy import LEGACY_PHASE_MAP, PHASE_ORDER


# revision identifiers, used by Alembic.
revision = "a1f0c2d3e401"
down_revision = None
branch_labels = None
depends_on = None


def _in_list(values):
    return ", ".join(f"'{v}'" for v in values)


_PHASE_VALUES = _in_list((*PHASE_ORDER, *LEGACY_PHASE_MAP))


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.func.now())


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Identity & teams ──────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=255), nullable=False, unique=True),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            _timestamp("created_at"),
        )

    if "teams" not in existing:
        op.create_table(
            "teams",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            _timestamp("created_at"),
        )

    if "team_members" not in existing:
        op.create_table(
            "team_members",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="member",
                      comment="owner | admin | member"),
            _timestamp("joined_at"),
            sa.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
            sa.CheckConstraint(f"role IN ({_in_list(TEAM_ROLES)})", name="ck_team_members_role"),
        )

    if "workspaces" not in existing:
        op.create_table(
            "workspaces",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            _timestamp("created_at"),
        )

    # ── Work items & tasks ────────────────────────────────────────────────
    if "work_items" not in existing:
        op.create_table(
            "work_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=False, server_default="feature"),
            sa.Column("override_status", sa.String(length=20), nullable=True),
            sa.Column("phase", sa.String(length=20), nullable=False, server_default="design",
                      comment="Derived snapshot; refreshed on every task mutation"),
            sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"),
                      nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
        )
        op.create_index("idx_work_items_workspace_phase", "work_items", ["workspace_id", "phase"])

    if "tasks" not in existing:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("work_item_id", sa.Integer(), sa.ForeignKey("work_items.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="todo"),
            sa.Column("effort_weight", sa.Integer(), nullable=False, server_default="1"),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.CheckConstraint(f"status IN ({_in_list(TASK_STATUSES)})", name="ck_tasks_status"),
            sa.CheckConstraint("effort_weight >= 0", name="ck_tasks_effort_weight"),
        )

    # ── Phase assignments ─────────────────────────────────────────────────
    if "user_phase_assignments" not in existing:
        op.create_table(
            "user_phase_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("team_id", sa.Integer(), nullable=False, index=True),
            sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
                      nullable=False, index=True),
            sa.Column("user_id", sa.Integer(), nullable=False, index=True),
            sa.Column("phase", sa.String(length=20), nullable=False),
            sa.Column("can_edit", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_lead", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("assigned_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"),
                      nullable=True),
            _timestamp("assigned_at"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.UniqueConstraint("workspace_id", "user_id", "phase",
                                name="uq_phase_assignment_workspace_user_phase"),
            sa.ForeignKeyConstraint(
                ["team_id", "user_id"], ["team_members.team_id", "team_members.user_id"],
                ondelete="CASCADE", name="fk_phase_assignment_team_member",
            ),
            sa.CheckConstraint(f"phase IN ({_PHASE_VALUES})", name="ck_phase_assignment_phase"),
        )
        op.create_index("idx_phase_assignment_lookup", "user_phase_assignments",
                        ["workspace_id", "user_id"])

    # ── Audit ─────────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id", ondelete="SET NULL"),
                      nullable=True),
            sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id", ondelete="SET NULL"),
                      nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"),
                      nullable=True, index=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            _timestamp("timestamp"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_workspace", "audit_logs", ["workspace_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    # ── Row-security policy (PostgreSQL only) ─────────────────────────────
    if bind.dialect.name == "postgresql":
        from app.services.phase_policy_sql import render_policy_sql
        op.execute(render_policy_sql())


def downgrade():
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        from app.services.phase_policy_sql import render_drop_sql
        op.execute(render_drop_sql())

    for table in ("audit_logs", "user_phase_assignments", "tasks", "work_items",
                  "workspaces", "team_members", "teams", "users"):
        op.drop_table(table)
