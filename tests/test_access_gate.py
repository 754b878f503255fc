"""Access gate and phase-gated work item writes (service level)."""

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    NotFoundError,
    PermissionDenied,
    StaleDerivationError,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.team import Workspace
from app.models.work_item import Task, WorkItem
from app.services import work_item_service
from app.services.access_gate import build_actor_snapshot, evaluate, evaluate_state


def _task_ids(item_id):
    return db.session.execute(
        select(Task.id).where(Task.work_item_id == item_id).order_by(Task.id)
    ).scalars().all()


class TestSnapshot:
    def test_member_snapshot_carries_grants(self, team, grant):
        grant(team, team.member_id, "complete", can_edit=True)
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        assert snap.role == "member"
        assert [g.phase for g in snap.grants] == ["launch"]

    def test_outsider_denied(self, team):
        with pytest.raises(PermissionDenied):
            build_actor_snapshot(team.outsider_id, team.workspace_id)

    def test_missing_workspace(self, team):
        with pytest.raises(NotFoundError):
            build_actor_snapshot(team.owner_id, 4242)


class TestEvaluate:
    def test_gate_ignores_stale_snapshot_column(self, team, grant, make_work_item):
        grant(team, team.member_id, "design", can_edit=True)
        item = make_work_item(team, tasks=[("done", 1)])
        # corrupt the cached column; the gate re-derives from tasks
        item.phase = "design"
        db.session.commit()
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        assert evaluate(snap, item.id).can_edit is False

    def test_other_workspace_item_is_not_found(self, team, make_work_item):
        other = Workspace(team_id=team.team_id, name="Other")
        db.session.add(other)
        db.session.commit()
        item = make_work_item(team)
        item.workspace_id = other.id
        db.session.commit()
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(NotFoundError):
            evaluate(snap, item.id)

    def test_in_memory_state(self, team, grant):
        grant(team, team.member_id, "build", can_edit=True)
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        tasks = [{"status": "done", "effort_weight": 1}, {"status": "todo", "effort_weight": 1}]
        assert evaluate_state(snap, None, tasks).can_edit is True
        assert evaluate_state(snap, "on_hold", tasks).can_edit is False


class TestGatedWrites:
    def test_member_with_build_grant_cannot_edit_launch_item(self, team, grant, make_work_item):
        grant(team, team.member_id, "build", can_edit=True)
        item = make_work_item(team, tasks=[("done", 2)])
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied) as exc:
            work_item_service.update_work_item(snap, item.id, {"title": "Renamed"})
        assert exc.value.denied_phase == "launch"
        assert exc.value.role == "member"
        assert db.session.get(WorkItem, item.id).title == "Checkout flow"

    def test_member_edits_item_in_granted_phase(self, team, grant, make_work_item):
        grant(team, team.member_id, "build", can_edit=True)
        item = make_work_item(team, tasks=[("done", 1), ("todo", 1)])
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        work_item_service.update_work_item(snap, item.id, {"title": "Renamed", "type": "bug"})
        fresh = db.session.get(WorkItem, item.id)
        assert (fresh.title, fresh.type) == ("Renamed", "bug")

    def test_completing_last_task_into_ungranted_phase_is_denied(self, team, grant, make_work_item):
        grant(team, team.member_id, "build", can_edit=True)
        item = make_work_item(team, tasks=[("done", 1), ("in_progress", 1)])
        last = _task_ids(item.id)[1]
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied) as exc:
            work_item_service.update_task(snap, last, {"status": "done"})
        assert exc.value.denied_phase == "launch"
        # rolled back: task unchanged, snapshot column unchanged, no audit row
        assert db.session.get(Task, last).status == "in_progress"
        assert db.session.get(WorkItem, item.id).phase == "build"
        assert db.session.execute(select(AuditLog)).first() is None

    def test_admin_completing_last_task_moves_to_launch(self, team, make_work_item):
        item = make_work_item(team, tasks=[("done", 1), ("in_progress", 1)])
        last = _task_ids(item.id)[1]
        snap = build_actor_snapshot(team.admin_id, team.workspace_id)
        work_item_service.update_task(snap, last, {"status": "done"})
        assert db.session.get(WorkItem, item.id).phase == "launch"
        audit = db.session.execute(select(AuditLog)).scalar_one()
        assert audit.action == "task.update"
        assert audit.diff["phase"] == {"old": "build", "new": "launch"}

    def test_batch_task_updates_are_atomic(self, team, grant, make_work_item):
        grant(team, team.member_id, "build", can_edit=True)
        item = make_work_item(team, tasks=[("done", 1), ("todo", 1), ("todo", 1)])
        _, second, third = _task_ids(item.id)
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied):
            work_item_service.update_work_item(snap, item.id, {}, task_updates=[
                {"id": second, "status": "done"},
                {"id": third, "status": "done"},
            ])
        assert db.session.get(Task, second).status == "todo"

    def test_stale_expected_phase(self, team, make_work_item):
        item = make_work_item(team, tasks=[("done", 1), ("todo", 1)])
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(StaleDerivationError) as exc:
            work_item_service.update_work_item(snap, item.id, {"title": "x"}, expected_phase="design")
        assert exc.value.actual_phase == "build"
        work_item_service.update_work_item(snap, item.id, {"title": "x"}, expected_phase="execution")
        assert db.session.get(WorkItem, item.id).title == "x"

    def test_derived_fields_cannot_be_patched(self, team, make_work_item):
        item = make_work_item(team)
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(ValidationError) as exc:
            work_item_service.update_work_item(snap, item.id, {"phase": "launch"})
        assert "phase" in exc.value.details

    def test_create_and_delete_task_recompute_phase(self, team, make_work_item):
        item = make_work_item(team)
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        task = work_item_service.create_task(snap, item.id, {"title": "Wireframes", "status": "in_progress"})
        assert db.session.get(WorkItem, item.id).phase == "build"
        work_item_service.delete_task(snap, task.id)
        assert db.session.get(WorkItem, item.id).phase == "design"

    def test_task_from_other_item_is_not_found(self, team, make_work_item):
        a = make_work_item(team, tasks=[("todo", 1)], title="A")
        b = make_work_item(team, tasks=[("todo", 1)], title="B")
        foreign = _task_ids(b.id)[0]
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(NotFoundError):
            work_item_service.update_work_item(snap, a.id, {}, task_updates=[{"id": foreign, "status": "done"}])

    @pytest.mark.parametrize("bad_id", [True, False, "1", 1.0])
    def test_task_update_id_must_be_integer(self, team, make_work_item, bad_id):
        item = make_work_item(team, tasks=[("todo", 1)])
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(ValidationError) as exc:
            work_item_service.update_work_item(snap, item.id, {}, task_updates=[{"id": bad_id, "status": "done"}])
        assert "task_updates" in exc.value.details
        assert [t.status for t in db.session.get(WorkItem, item.id).tasks] == ["todo"]

    def test_member_cannot_delete_outside_grant(self, team, make_work_item):
        item = make_work_item(team)
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied):
            work_item_service.delete_work_item(snap, item.id)
        assert db.session.get(WorkItem, item.id) is not None


class TestOverride:
    def test_override_is_sticky_across_task_changes(self, team, make_work_item):
        item = make_work_item(team, tasks=[("todo", 1)])
        task_id = _task_ids(item.id)[0]
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        work_item_service.set_override(snap, item.id, "refine")
        work_item_service.update_task(snap, task_id, {"status": "done"})
        fresh = db.session.get(WorkItem, item.id)
        assert fresh.override_status == "refine"
        assert fresh.phase == "refine"

        work_item_service.clear_override(snap, item.id)
        assert db.session.get(WorkItem, item.id).phase == "launch"

    def test_member_locked_out_of_held_item(self, team, grant, make_work_item):
        grant(team, team.member_id, "design", can_edit=True)
        item = make_work_item(team)
        owner = build_actor_snapshot(team.owner_id, team.workspace_id)
        work_item_service.set_override(owner, item.id, "on_hold")
        member = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied) as exc:
            work_item_service.update_work_item(member, item.id, {"title": "x"})
        assert exc.value.denied_phase == "on_hold"

    def test_member_cannot_override_into_ungranted_phase(self, team, grant, make_work_item):
        grant(team, team.member_id, "design", can_edit=True)
        item = make_work_item(team)
        snap = build_actor_snapshot(team.member_id, team.workspace_id)
        with pytest.raises(PermissionDenied):
            work_item_service.set_override(snap, item.id, "launch")
        assert db.session.get(WorkItem, item.id).override_status is None

    def test_invalid_override(self, team, make_work_item):
        item = make_work_item(team)
        snap = build_actor_snapshot(team.owner_id, team.workspace_id)
        with pytest.raises(ValidationError):
            work_item_service.set_override(snap, item.id, "paused")


def test_phase_distribution(team, make_work_item):
    make_work_item(team, title="A")
    make_work_item(team, tasks=[("done", 1)], title="B")
    make_work_item(team, tasks=[("done", 1)], title="C")
    make_work_item(team, override_status="cancelled", title="D")
    data = work_item_service.get_phase_distribution(team.workspace_id)
    assert data["total"] == 4
    assert data["distribution"]["launch"] == {"count": 2, "percentage": 50.0}
    assert data["distribution"]["cancelled"]["count"] == 1
    assert data["distribution"]["refine"]["count"] == 0
