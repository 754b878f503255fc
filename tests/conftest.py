"""
Shared pytest fixtures for the Phase Access Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - team: Team with owner / admin / member / outsider users and one workspace
    - auth_headers: Bearer-token header factory
    - make_work_item: Work item + tasks factory
"""

from types import SimpleNamespace

import pytest

from app import create_app
from app.models import db as _db
from app.models.phase_assignment import PhaseAssignment
from app.models.team import Team, TeamMember, User, Workspace
from app.models.work_item import Task, WorkItem
from app.services.jwt_service import generate_access_token
from app.services.phase_calculator import recompute_work_item_phase


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def team():
    """One team, one workspace, and a user per role.

    ``outsider`` exists as a user but is not a member of the team.
    """
    users = {
        name: User(email=f"{name}@example.com", full_name=name.title())
        for name in ("owner", "admin", "member", "outsider")
    }
    _db.session.add_all(users.values())
    t = Team(name="Product Team")
    _db.session.add(t)
    _db.session.flush()

    for name in ("owner", "admin", "member"):
        _db.session.add(TeamMember(team_id=t.id, user_id=users[name].id, role=name))
    ws = Workspace(team_id=t.id, name="Mobile App")
    _db.session.add(ws)
    _db.session.commit()

    return SimpleNamespace(
        team_id=t.id,
        workspace_id=ws.id,
        owner_id=users["owner"].id,
        admin_id=users["admin"].id,
        member_id=users["member"].id,
        outsider_id=users["outsider"].id,
    )


@pytest.fixture()
def grant():
    """Insert a PhaseAssignment row directly (bypasses the service)."""

    def _grant(team, user_id, phase, can_edit=True, is_lead=False):
        row = PhaseAssignment(
            team_id=team.team_id,
            workspace_id=team.workspace_id,
            user_id=user_id,
            phase=phase,
            can_edit=can_edit,
            is_lead=is_lead,
        )
        _db.session.add(row)
        _db.session.commit()
        return row

    return _grant


@pytest.fixture()
def make_work_item():
    """Create a work item with ``tasks`` given as (status, effort_weight) pairs."""

    def _make(team, tasks=(), override_status=None, title="Checkout flow"):
        item = WorkItem(
            workspace_id=team.workspace_id,
            team_id=team.team_id,
            title=title,
            override_status=override_status,
            created_by=team.owner_id,
        )
        _db.session.add(item)
        _db.session.flush()
        for i, (status, weight) in enumerate(tasks):
            _db.session.add(Task(
                work_item_id=item.id, title=f"Task {i + 1}",
                status=status, effort_weight=weight,
            ))
        _db.session.flush()
        _db.session.expire(item, ["tasks"])
        recompute_work_item_phase(item)
        _db.session.commit()
        return item

    return _make


@pytest.fixture()
def auth_headers():
    """Return ``{"Authorization": "Bearer <token>"}`` for a user id."""

    def _headers(user_id):
        return {"Authorization": f"Bearer {generate_access_token(user_id)}"}

    return _headers
