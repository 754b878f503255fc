"""Initial migration stays in step with the model constraints."""

import importlib.util
from pathlib import Path

from app.models.phase_assignment import PhaseAssignment
from app.models.team import TeamMember
from app.models.work_item import Task

MIGRATION = (
    Path(__file__).resolve().parent.parent
    / "migrations" / "versions" / "a1f0c2d3e401_phase_access_initial.py"
)


def _load_migration():
    spec = importlib.util.spec_from_file_location("phase_access_initial", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _check_sql(model, name):
    for constraint in model.__table__.constraints:
        if constraint.name == name:
            return str(constraint.sqltext)
    raise AssertionError(f"{name} missing on {model.__tablename__}")


def test_phase_check_matches_model():
    migration = _load_migration()
    assert f"phase IN ({migration._PHASE_VALUES})" == _check_sql(PhaseAssignment, "ck_phase_assignment_phase")


def test_role_and_status_lists_match_model():
    source = MIGRATION.read_text()
    assert "_in_list(TEAM_ROLES)" in source
    assert "_in_list(TASK_STATUSES)" in source
    migration = _load_migration()
    assert _check_sql(TeamMember, "ck_team_members_role") == (
        f"role IN ({migration._in_list(migration.TEAM_ROLES)})"
    )
    assert _check_sql(Task, "ck_tasks_status") == (
        f"status IN ({migration._in_list(migration.TASK_STATUSES)})"
    )
