"""Phase assignment CRUD: uniqueness, immutability, authorization, cascade."""

import pytest
from sqlalchemy import select

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.models import db
from app.models.audit import AuditLog
from app.models.phase_assignment import PhaseAssignment
from app.services import phase_assignment_service as svc


def _audit_actions():
    return [a.action for a in db.session.execute(select(AuditLog).order_by(AuditLog.id)).scalars()]


class TestValidate:
    def test_normalises_legacy_phase_and_defaults(self):
        payload = svc.validate_phase_assignment({"workspace_id": 1, "user_id": 2, "phase": "review"})
        assert payload["phase"] == "refine"
        assert payload["can_edit"] is True
        assert payload["is_lead"] is False

    def test_collects_field_errors(self):
        with pytest.raises(ValidationError) as exc:
            svc.validate_phase_assignment({"phase": "nowhere", "can_edit": "yes"})
        assert set(exc.value.details) == {"workspace_id", "user_id", "phase", "can_edit"}

    def test_notes_length(self):
        with pytest.raises(ValidationError) as exc:
            svc.validate_phase_assignment({
                "workspace_id": 1, "user_id": 2, "phase": "build",
                "notes": "x" * (svc.NOTES_MAX_LENGTH + 1),
            })
        assert "notes" in exc.value.details


class TestCreate:
    def test_admin_creates_assignment(self, team):
        row = svc.create_assignment(team.admin_id, team.workspace_id, {
            "user_id": team.member_id, "phase": "build", "notes": "API work",
        })
        assert row.id is not None
        assert row.phase == "build"
        assert row.assigned_by == team.admin_id
        assert row.team_id == team.team_id
        assert _audit_actions() == ["phase_assignment.create"]

    def test_legacy_input_is_stored_canonical(self, team):
        row = svc.create_assignment(team.owner_id, team.workspace_id, {
            "user_id": team.member_id, "phase": "execution",
        })
        assert row.phase == "build"

    def test_duplicate_rejected(self, team):
        svc.create_assignment(team.owner_id, team.workspace_id, {"user_id": team.member_id, "phase": "build"})
        with pytest.raises(ConflictError) as exc:
            svc.create_assignment(team.owner_id, team.workspace_id, {
                "user_id": team.member_id, "phase": "build", "can_edit": False,
            })
        assert exc.value.field == "phase"
        assert len(svc.list_assignments(team.workspace_id)) == 1

    def test_duplicate_of_legacy_row_rejected(self, team, grant):
        grant(team, team.member_id, "execution")
        with pytest.raises(ConflictError):
            svc.create_assignment(team.owner_id, team.workspace_id, {
                "user_id": team.member_id, "phase": "build",
            })

    def test_member_cannot_create(self, team):
        with pytest.raises(PermissionDenied) as exc:
            svc.create_assignment(team.member_id, team.workspace_id, {
                "user_id": team.member_id, "phase": "build",
            })
        assert exc.value.required == "owner/admin"
        assert exc.value.role == "member"
        assert svc.list_assignments(team.workspace_id) == []

    def test_outsider_cannot_be_assigned(self, team):
        with pytest.raises(ValidationError) as exc:
            svc.create_assignment(team.owner_id, team.workspace_id, {
                "user_id": team.outsider_id, "phase": "build",
            })
        assert "user_id" in exc.value.details

    def test_membership_removed_mid_create_is_not_a_conflict(self, team, monkeypatch):
        # target looks like a member at the pre-check, then the row is gone at flush
        real_get_team_role = svc.get_team_role
        seen = []

        def racing_get_team_role(user_id, team_id):
            if user_id == team.outsider_id and not seen:
                seen.append(user_id)
                return "member"
            return real_get_team_role(user_id, team_id)

        monkeypatch.setattr(svc, "get_team_role", racing_get_team_role)
        with pytest.raises(ValidationError) as exc:
            svc.create_assignment(team.owner_id, team.workspace_id, {
                "user_id": team.outsider_id, "phase": "build",
            })
        assert "user_id" in exc.value.details
        assert svc.list_assignments(team.workspace_id) == []

    def test_missing_workspace(self, team):
        with pytest.raises(NotFoundError):
            svc.create_assignment(team.owner_id, 9999, {"user_id": team.member_id, "phase": "build"})


class TestUpdate:
    def test_immutable_fields_rejected(self, team, grant):
        row = grant(team, team.member_id, "build")
        with pytest.raises(ValidationError) as exc:
            svc.update_assignment(team.admin_id, row.id, {"phase": "launch"})
        assert "phase" in exc.value.details
        assert db.session.get(PhaseAssignment, row.id).phase == "build"

    def test_unknown_field_rejected(self, team, grant):
        row = grant(team, team.member_id, "build")
        with pytest.raises(ValidationError):
            svc.update_assignment(team.admin_id, row.id, {"colour": "red"})

    def test_patch_is_idempotent(self, team, grant):
        row = grant(team, team.member_id, "build", can_edit=True)
        svc.update_assignment(team.admin_id, row.id, {"can_edit": False, "is_lead": True})
        svc.update_assignment(team.admin_id, row.id, {"can_edit": False, "is_lead": True})
        fresh = db.session.get(PhaseAssignment, row.id)
        assert fresh.can_edit is False
        assert fresh.is_lead is True
        # second call changed nothing, so it left no audit row
        assert _audit_actions() == ["phase_assignment.update"]

    def test_member_cannot_update(self, team, grant):
        row = grant(team, team.member_id, "build")
        with pytest.raises(PermissionDenied):
            svc.update_assignment(team.member_id, row.id, {"can_edit": False})


class TestDelete:
    def test_delete(self, team, grant):
        row = grant(team, team.member_id, "design")
        row_id = row.id
        svc.delete_assignment(team.owner_id, row_id)
        assert db.session.get(PhaseAssignment, row_id) is None
        assert _audit_actions() == ["phase_assignment.delete"]

    def test_delete_missing(self, team):
        with pytest.raises(NotFoundError):
            svc.delete_assignment(team.owner_id, 12345)


class TestRemoveMember:
    def test_removal_cascades_assignments(self, team, grant):
        grant(team, team.member_id, "design")
        grant(team, team.member_id, "build")
        removed = svc.remove_team_member(team.admin_id, team.team_id, team.member_id)
        assert removed == 2
        assert svc.list_assignments(team.workspace_id, team.member_id) == []
        assert "team_member.remove" in _audit_actions()

    def test_admin_cannot_remove_owner(self, team):
        with pytest.raises(PermissionDenied):
            svc.remove_team_member(team.admin_id, team.team_id, team.owner_id)

    def test_last_owner_cannot_be_removed(self, team):
        with pytest.raises(ValidationError):
            svc.remove_team_member(team.owner_id, team.team_id, team.owner_id)

    def test_member_cannot_remove(self, team):
        with pytest.raises(PermissionDenied):
            svc.remove_team_member(team.member_id, team.team_id, team.admin_id)


class TestReads:
    def test_list_sorted_by_phase_order(self, team, grant):
        grant(team, team.member_id, "launch")
        grant(team, team.member_id, "design")
        grant(team, team.member_id, "execution")
        phases = [a.phase for a in svc.list_assignments(team.workspace_id)]
        assert phases == ["design", "execution", "launch"]

    def test_actor_grants_are_canonical(self, team, grant):
        grant(team, team.member_id, "execution", can_edit=True)
        grants = svc.get_actor_grants(team.workspace_id, team.member_id)
        assert [(g.phase, g.can_edit) for g in grants] == [("build", True)]

    def test_phase_leads(self, team, grant):
        grant(team, team.member_id, "review", can_edit=False, is_lead=True)
        leads = svc.get_phase_leads(team.workspace_id)
        assert [entry["user_id"] for entry in leads["refine"]] == [team.member_id]
        assert leads["design"] == []

    def test_analytics(self, team, grant):
        grant(team, team.member_id, "design", is_lead=True)
        grant(team, team.admin_id, "design", can_edit=True)
        grant(team, team.member_id, "build", can_edit=True)
        data = svc.get_phase_analytics(team.workspace_id)
        assert data["lead_counts"]["design"] == 1
        assert data["contributor_counts"]["design"] == 1
        assert data["contributor_counts"]["build"] == 1
        assert data["summary"]["phases_with_leads"] == 1
        assert data["summary"]["coverage_percentage"] == 25
        needing = {p["phase"] for p in data["phases_needing_attention"]}
        assert needing == {"build", "refine", "launch"}
        design = data["phase_breakdown"][0]
        assert design["phase"] == "design"
        assert design["status"] == "optimal"
