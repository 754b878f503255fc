"""Row-security DDL rendered from the rule table."""

from flask import g

from app.services.phase_permissions import ELEVATED_ROLES, PHASE_EDIT_RULE
from app.services.phase_policy_sql import (
    PROTECTED_TABLES,
    bind_current_user,
    render_derive_phase_function,
    render_drop_sql,
    render_migrate_phase_function,
    render_policy_sql,
    render_rule_function,
)
from app.services.phase_taxonomy import LEGACY_PHASE_MAP


def test_every_action_gets_a_rule_function():
    sql = render_policy_sql()
    for action in PHASE_EDIT_RULE:
        assert f"FUNCTION phase_rule_{action}(ws integer, target text)" in sql


def test_edit_rule_combines_roles_and_grant():
    sql = render_rule_function("edit")
    for role in ELEVATED_ROLES:
        assert f"'{role}'" in sql
    assert "a.can_edit IS TRUE" in sql
    assert "migrate_phase(a.phase) = target" in sql


def test_assign_rule_has_no_grant_clause():
    sql = render_rule_function("assign")
    assert "user_phase_assignments" not in sql
    assert "'member'" not in sql


def test_view_rule_includes_members():
    assert "'member'" in render_rule_function("view")


def test_legacy_map_is_rendered():
    sql = render_migrate_phase_function()
    for legacy, canonical in LEGACY_PHASE_MAP.items():
        assert f"WHEN '{legacy}' THEN '{canonical}'" in sql


def test_derivation_uses_inflight_credit():
    sql = render_derive_phase_function()
    assert "0.5 *" in sql
    assert "'launch'" in sql and "'build'" in sql and "'design'" in sql
    assert "'refine'" not in sql


def test_policies_cover_protected_tables():
    sql = render_policy_sql()
    for table in PROTECTED_TABLES:
        assert f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;" in sql
    assert "CREATE POLICY work_items_update ON work_items FOR UPDATE" in sql
    assert "WITH CHECK (phase_rule_edit(workspace_id, derive_work_item_phase(override_status, id)))" in sql


def test_drop_reverses_create():
    drop = render_drop_sql()
    assert "DROP POLICY IF EXISTS tasks_update ON tasks;" in drop
    assert "DROP FUNCTION IF EXISTS migrate_phase(text);" in drop
    assert "CREATE" not in drop


def test_cli_prints_policy(app):
    result = app.test_cli_runner().invoke(args=["phase-policy-sql"])
    assert result.exit_code == 0
    assert "CREATE POLICY" in result.output


def _statements(sql):
    return [s for s in sql.split("\n\n") if not s.startswith("--")]


def test_policy_expressions_only_call_functions():
    # a subquery on another protected table would evaluate that table's policy
    for stmt in _statements(render_policy_sql()):
        if "CREATE POLICY" not in stmt:
            continue
        body = stmt.split("\n", 2)[2]
        assert "SELECT" not in body
        for table in PROTECTED_TABLES:
            assert f"FROM {table}" not in body


def test_functions_reading_protected_tables_are_definer():
    for stmt in _statements(render_policy_sql()):
        if "CREATE OR REPLACE FUNCTION" not in stmt:
            continue
        reads_table = any(
            f"FROM {table}" in stmt for table in (*PROTECTED_TABLES, "workspaces")
        )
        if reads_table:
            assert "SECURITY DEFINER SET search_path = public" in stmt


def test_task_policies_use_parent_lookups():
    sql = render_policy_sql()
    assert "USING (phase_rule_view(work_item_workspace(work_item_id), work_item_phase(work_item_id)))" in sql
    assert "DROP FUNCTION IF EXISTS work_item_phase(integer);" in render_drop_sql()


class _FakeDialect:
    def __init__(self, name):
        self.name = name


class _FakeConnection:
    def __init__(self, dialect):
        self.dialect = _FakeDialect(dialect)
        self.calls = []

    def execute(self, statement, params=None):
        self.calls.append((str(statement), params))


def test_transaction_binds_request_user_on_postgres(app):
    conn = _FakeConnection("postgresql")
    with app.test_request_context():
        g.jwt_user_id = 7
        bind_current_user(None, None, conn)
    assert conn.calls == [("SELECT set_config('app.user_id', :uid, true)", {"uid": "7"})]


def test_binding_skipped_off_postgres_and_without_user(app):
    sqlite_conn = _FakeConnection("sqlite")
    anon_conn = _FakeConnection("postgresql")
    with app.test_request_context():
        g.jwt_user_id = 7
        bind_current_user(None, None, sqlite_conn)
        g.jwt_user_id = None
        bind_current_user(None, None, anon_conn)
    bind_current_user(None, None, anon_conn)
    assert sqlite_conn.calls == []
    assert anon_conn.calls == []
