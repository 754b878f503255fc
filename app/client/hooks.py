"""
Client-side permission hooks (advisory).

These drive UI affordances: which phases show an edit button, whether
the admin panel is visible.  They fetch the actor's role and grants once
and compute every answer locally with the same evaluator the server
uses (``phase_permissions``), so a hook never disagrees with the gate.
The server still decides every mutation; nothing here is authoritative.

Results are memoised per (ActorSnapshot, workspace_id).  The snapshot is
a frozen value, so a changed role or grant set is a different key; the
memo is only dropped by ``refetch()``.

Usage:
    client = PermissionsApiClient("https://app.example.com", token)
    hook = PhasePermissionsHook(client.fetch_snapshot, workspace_id=3)
    if hook.can_edit("build"): ...
    hook.refetch()   # after grants change
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import requests

from app.core.exceptions import ValidationError
from app.services.phase_permissions import (
    ActorSnapshot,
    PhaseGrant,
    PhasePermission,
    evaluate_phase_permission,
    get_user_phase_permissions,
    is_elevated,
)
from app.services.phase_taxonomy import resolve_lifecycle_state

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


# ── Memo ─────────────────────────────────────────────────────────────────────


class PermissionMemo:
    """Explicit cache of UserPhasePermissions keyed by (snapshot, workspace_id)."""

    def __init__(self) -> None:
        self._entries: dict[tuple[ActorSnapshot, int], dict[str, PhasePermission]] = {}

    def get(self, snapshot: ActorSnapshot, workspace_id: int) -> dict[str, PhasePermission]:
        key = (snapshot, workspace_id)
        if key not in self._entries:
            self._entries[key] = get_user_phase_permissions(snapshot)
        return self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# ── Hooks ────────────────────────────────────────────────────────────────────


class PhasePermissionsHook:
    """Phase permissions for the current user in one workspace.

    Attributes mirror the UI hook: ``permissions``, ``loading``, ``error``,
    ``can_edit(phase)``, ``can_view(phase)``, ``can_delete(phase)``,
    ``refetch()``.  Until the first successful fetch (or after a failed
    one) every check answers False.
    """

    def __init__(
        self,
        fetch_snapshot: Callable[[int], ActorSnapshot],
        workspace_id: int,
        memo: PermissionMemo | None = None,
    ) -> None:
        self._fetch_snapshot = fetch_snapshot
        self.workspace_id = workspace_id
        self._memo = memo if memo is not None else PermissionMemo()
        self.snapshot: ActorSnapshot | None = None
        self.loading = False
        self.error: Exception | None = None
        self._fetched = False

    def _ensure_loaded(self) -> None:
        if not self._fetched:
            self.refetch()

    def refetch(self) -> None:
        """Fetch a fresh snapshot and drop memoised permissions."""
        self.loading = True
        self._memo.clear()
        try:
            self.snapshot = self._fetch_snapshot(self.workspace_id)
            self.error = None
        except (requests.RequestException, ValidationError, ValueError, LookupError) as exc:
            logger.warning("Phase permission fetch failed for workspace %s: %s", self.workspace_id, exc)
            self.snapshot = None
            self.error = exc
        finally:
            self.loading = False
            self._fetched = True

    @property
    def permissions(self) -> dict[str, PhasePermission]:
        self._ensure_loaded()
        if self.snapshot is None:
            return {}
        return self._memo.get(self.snapshot, self.workspace_id)

    def _permission(self, phase) -> PhasePermission | None:
        self._ensure_loaded()
        if self.snapshot is None:
            return None
        state = resolve_lifecycle_state(phase)
        perms = self._memo.get(self.snapshot, self.workspace_id)
        if state in perms:
            return perms[state]
        # override states are not in the phase map
        return evaluate_phase_permission(self.snapshot, state)

    def can_view(self, phase) -> bool:
        perm = self._permission(phase)
        return bool(perm and perm.can_view)

    def can_edit(self, phase) -> bool:
        perm = self._permission(phase)
        return bool(perm and perm.can_edit)

    def can_delete(self, phase) -> bool:
        perm = self._permission(phase)
        return bool(perm and perm.can_delete)


class AdminCheckHook:
    """Whether the current user is owner/admin of a team."""

    def __init__(self, fetch_role: Callable[[int], str | None], team_id: int) -> None:
        self._fetch_role = fetch_role
        self.team_id = team_id
        self.role: str | None = None
        self.loading = False
        self.error: Exception | None = None
        self._fetched = False

    def refetch(self) -> None:
        self.loading = True
        try:
            self.role = self._fetch_role(self.team_id)
            self.error = None
        except (requests.RequestException, ValidationError, ValueError, LookupError) as exc:
            logger.warning("Role fetch failed for team %s: %s", self.team_id, exc)
            self.role = None
            self.error = exc
        finally:
            self.loading = False
            self._fetched = True

    @property
    def is_admin(self) -> bool:
        if not self._fetched:
            self.refetch()
        return is_elevated(self.role)


# ── HTTP client ──────────────────────────────────────────────────────────────


def snapshot_from_payload(payload: dict) -> ActorSnapshot:
    """Build an ActorSnapshot from the ``/permissions`` response body."""
    data = payload["snapshot"]
    return ActorSnapshot(
        user_id=data.get("user_id"),
        team_id=data.get("team_id"),
        workspace_id=data.get("workspace_id"),
        role=data.get("role"),
        grants=tuple(PhaseGrant.from_assignment(g) for g in data.get("grants", [])),
    )


class PermissionsApiClient:
    """Thin requests-based client for the permission endpoints.

    Pass a custom ``session`` in tests to intercept HTTP calls.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _get(self, path: str) -> dict:
        resp = self.session.get(
            f"{self.base_url}/api/v1{path}",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def get_permissions(self, workspace_id: int) -> dict:
        return self._get(f"/workspaces/{workspace_id}/permissions")

    def fetch_snapshot(self, workspace_id: int) -> ActorSnapshot:
        return snapshot_from_payload(self.get_permissions(workspace_id))

    def fetch_team_role(self, team_id: int) -> str | None:
        return self._get(f"/teams/{team_id}/role").get("role")
