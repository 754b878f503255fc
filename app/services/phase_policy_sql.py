"""
Row-security policy renderer (PostgreSQL).

The database enforces the same rules as ``phase_permissions`` as a
backstop for writes that bypass the application.  Nothing here is written
by hand: the SQL is rendered from PHASE_EDIT_RULE, ELEVATED_ROLES,
LEGACY_PHASE_MAP and the calculator constants, so a change to the Python
rule table changes the policy on the next ``flask phase-policy-sql`` /
migration run.

Rendered objects:
    migrate_phase(text)                  legacy → canonical phase
    resolve_lifecycle_state(text)        phase or override state
    derive_work_item_phase(text, int)    override, else weighted task progress
    work_item_workspace(int)             parent lookups for task policies
    work_item_phase(int)
    phase_rule_<action>(int, text)       one boolean function per rule action
    policies on work_items, tasks and user_phase_assignments

Every function that reads a protected table is SECURITY DEFINER with a
pinned search_path, and policy expressions only call functions.  A policy
on one table therefore never evaluates the policy of another.

The current user is read from ``current_setting('app.user_id')``;
``bind_current_user`` sets it with ``set_config(..., true)`` at the start
of every PostgreSQL transaction opened during a request.

Usage:
    flask phase-policy-sql > policy.sql
"""

from flask import g, has_request_context
from sqlalchemy import event, text
from sqlalchemy.orm import Session

from app.services.phase_calculator import INFLIGHT_CREDIT
from app.services.phase_permissions import PHASE_EDIT_RULE
from app.services.phase_taxonomy import (
    ACTIVE_PHASE,
    INITIAL_PHASE,
    LEGACY_PHASE_MAP,
    OVERRIDE_STATES,
    PHASE_ORDER,
    TERMINAL_PHASE,
)

CURRENT_USER_SQL = "NULLIF(current_setting('app.user_id', true), '')::integer"
DEFINER = "SECURITY DEFINER SET search_path = public"

PROTECTED_TABLES = ("work_items", "tasks", "user_phase_assignments")


# ── Session binding ──────────────────────────────────────────────────────────


@event.listens_for(Session, "after_begin")
def bind_current_user(session, transaction, connection):
    """Expose the authenticated user to the policies for this transaction."""
    if connection.dialect.name != "postgresql" or not has_request_context():
        return
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        return
    connection.execute(
        text("SELECT set_config('app.user_id', :uid, true)"),
        {"uid": str(user_id)},
    )


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _in_list(values) -> str:
    return ", ".join(_quote(v) for v in sorted(values))


# ── Functions ────────────────────────────────────────────────────────────────


def render_migrate_phase_function() -> str:
    cases = [f"        WHEN {_quote(p)} THEN {_quote(p)}" for p in PHASE_ORDER]
    cases += [
        f"        WHEN {_quote(legacy)} THEN {_quote(canonical)}"
        for legacy, canonical in LEGACY_PHASE_MAP.items()
    ]
    return (
        "CREATE OR REPLACE FUNCTION migrate_phase(p text) RETURNS text\n"
        "LANGUAGE sql IMMUTABLE AS $$\n"
        "    SELECT CASE lower(btrim(p))\n"
        + "\n".join(cases) + "\n"
        "        ELSE NULL\n"
        "    END\n"
        "$$;"
    )


def render_lifecycle_state_function() -> str:
    return (
        "CREATE OR REPLACE FUNCTION resolve_lifecycle_state(p text) RETURNS text\n"
        "LANGUAGE sql IMMUTABLE AS $$\n"
        f"    SELECT CASE WHEN lower(btrim(p)) IN ({_in_list(OVERRIDE_STATES)})\n"
        "        THEN lower(btrim(p))\n"
        "        ELSE migrate_phase(p)\n"
        "    END\n"
        "$$;"
    )


def render_derive_phase_function() -> str:
    done = "SUM(CASE WHEN t.status = 'done' THEN t.effort_weight ELSE 0 END)"
    inflight = "SUM(CASE WHEN t.status = 'in_progress' THEN t.effort_weight ELSE 0 END)"
    weighted = f"({done} + {INFLIGHT_CREDIT} * {inflight})"
    return (
        "CREATE OR REPLACE FUNCTION derive_work_item_phase(override_status text, item_id integer)\n"
        f"RETURNS text LANGUAGE sql STABLE {DEFINER} AS $$\n"
        "    SELECT CASE\n"
        "        WHEN override_status IS NOT NULL AND override_status <> ''\n"
        "            THEN resolve_lifecycle_state(override_status)\n"
        "        ELSE (\n"
        "            SELECT CASE\n"
        f"                WHEN COALESCE(SUM(t.effort_weight), 0) = 0 THEN {_quote(INITIAL_PHASE)}\n"
        f"                WHEN {weighted} >= SUM(t.effort_weight) THEN {_quote(TERMINAL_PHASE)}\n"
        f"                WHEN {weighted} > 0 THEN {_quote(ACTIVE_PHASE)}\n"
        f"                ELSE {_quote(INITIAL_PHASE)}\n"
        "            END\n"
        "            FROM tasks t WHERE t.work_item_id = item_id\n"
        "        )\n"
        "    END\n"
        "$$;"
    )


def render_parent_lookup_functions() -> list[str]:
    """Workspace and derived phase of a task's parent work item."""
    return [
        "CREATE OR REPLACE FUNCTION work_item_workspace(item_id integer) RETURNS integer\n"
        f"LANGUAGE sql STABLE {DEFINER} AS $$\n"
        "    SELECT wi.workspace_id FROM work_items wi WHERE wi.id = item_id\n"
        "$$;",
        "CREATE OR REPLACE FUNCTION work_item_phase(item_id integer) RETURNS text\n"
        f"LANGUAGE sql STABLE {DEFINER} AS $$\n"
        "    SELECT derive_work_item_phase(wi.override_status, wi.id)\n"
        "    FROM work_items wi WHERE wi.id = item_id\n"
        "$$;",
    ]


def render_rule_function(action: str) -> str:
    """Boolean function mirroring one PHASE_EDIT_RULE entry."""
    rule = PHASE_EDIT_RULE[action]
    clauses = [
        "EXISTS (\n"
        "        SELECT 1 FROM workspaces w\n"
        "        JOIN team_members m ON m.team_id = w.team_id\n"
        f"        WHERE w.id = ws AND m.user_id = {CURRENT_USER_SQL}\n"
        f"          AND m.role IN ({_in_list(rule['roles'])})\n"
        "    )"
    ]
    if rule["grant"] is not None:
        clauses.append(
            "EXISTS (\n"
            "        SELECT 1 FROM user_phase_assignments a\n"
            f"        WHERE a.workspace_id = ws AND a.user_id = {CURRENT_USER_SQL}\n"
            "          AND migrate_phase(a.phase) = target\n"
            f"          AND a.{rule['grant']} IS TRUE\n"
            "    )"
        )
    return (
        f"CREATE OR REPLACE FUNCTION phase_rule_{action}(ws integer, target text) RETURNS boolean\n"
        f"LANGUAGE sql STABLE {DEFINER} AS $$\n"
        "    SELECT " + "\n    OR ".join(clauses) + "\n"
        "$$;"
    )


# ── Policies ─────────────────────────────────────────────────────────────────


def _policy(name: str, table: str, command: str, *, using: str | None = None, check: str | None = None) -> str:
    sql = f"DROP POLICY IF EXISTS {name} ON {table};\nCREATE POLICY {name} ON {table} FOR {command}"
    if using is not None:
        sql += f"\n    USING ({using})"
    if check is not None:
        sql += f"\n    WITH CHECK ({check})"
    return sql + ";"


def render_policies() -> list[str]:
    item_phase = "derive_work_item_phase(override_status, id)"
    parent_ws = "work_item_workspace(work_item_id)"
    parent_phase = "work_item_phase(work_item_id)"
    return [
        # work_items: USING checks the old row, WITH CHECK the new one
        _policy("work_items_view", "work_items", "SELECT",
                using=f"phase_rule_view(workspace_id, {item_phase})"),
        _policy("work_items_insert", "work_items", "INSERT",
                check=f"phase_rule_edit(workspace_id, {item_phase})"),
        _policy("work_items_update", "work_items", "UPDATE",
                using=f"phase_rule_edit(workspace_id, {item_phase})",
                check=f"phase_rule_edit(workspace_id, {item_phase})"),
        _policy("work_items_delete", "work_items", "DELETE",
                using=f"phase_rule_delete(workspace_id, {item_phase})"),
        # tasks inherit the parent item's derived phase
        _policy("tasks_view", "tasks", "SELECT",
                using=f"phase_rule_view({parent_ws}, {parent_phase})"),
        _policy("tasks_insert", "tasks", "INSERT",
                check=f"phase_rule_edit({parent_ws}, {parent_phase})"),
        _policy("tasks_update", "tasks", "UPDATE",
                using=f"phase_rule_edit({parent_ws}, {parent_phase})",
                check=f"phase_rule_edit({parent_ws}, {parent_phase})"),
        _policy("tasks_delete", "tasks", "DELETE",
                using=f"phase_rule_edit({parent_ws}, {parent_phase})"),
        # grants: readable by the team, managed by owner/admin
        _policy("phase_assignments_view", "user_phase_assignments", "SELECT",
                using="phase_rule_view(workspace_id, migrate_phase(phase))"),
        _policy("phase_assignments_insert", "user_phase_assignments", "INSERT",
                check="phase_rule_assign(workspace_id, migrate_phase(phase))"),
        _policy("phase_assignments_update", "user_phase_assignments", "UPDATE",
                using="phase_rule_assign(workspace_id, migrate_phase(phase))",
                check="phase_rule_assign(workspace_id, migrate_phase(phase))"),
        _policy("phase_assignments_delete", "user_phase_assignments", "DELETE",
                using="phase_rule_assign(workspace_id, migrate_phase(phase))"),
    ]


def render_policy_sql() -> str:
    """Full, idempotent DDL for the mirrored row-security policy."""
    parts = [
        "-- Generated from app.services.phase_permissions.PHASE_EDIT_RULE; do not edit by hand.",
        render_migrate_phase_function(),
        render_lifecycle_state_function(),
        render_derive_phase_function(),
        *render_parent_lookup_functions(),
        *(render_rule_function(action) for action in PHASE_EDIT_RULE),
        *(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;" for table in PROTECTED_TABLES),
        *render_policies(),
    ]
    return "\n\n".join(parts) + "\n"


def render_drop_sql() -> str:
    """Reverse of ``render_policy_sql`` (used by the migration downgrade)."""
    statements = []
    for sql in render_policies():
        statements.append(sql.split("\n", 1)[0])   # the DROP POLICY line
    statements += [f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;" for table in PROTECTED_TABLES]
    statements += [f"DROP FUNCTION IF EXISTS phase_rule_{action}(integer, text);" for action in PHASE_EDIT_RULE]
    statements += [
        "DROP FUNCTION IF EXISTS work_item_phase(integer);",
        "DROP FUNCTION IF EXISTS work_item_workspace(integer);",
        "DROP FUNCTION IF EXISTS derive_work_item_phase(text, integer);",
        "DROP FUNCTION IF EXISTS resolve_lifecycle_state(text);",
        "DROP FUNCTION IF EXISTS migrate_phase(text);",
    ]
    return "\n".join(statements) + "\n"
