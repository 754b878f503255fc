"""
Domain exceptions for phase access control.

Services raise these types; blueprints register handlers against them
once (see ``app.blueprints.register_error_handlers``) and get consistent
HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise ValidationError("Unknown phase", details={"phase": "..."})
    raise PermissionDenied("Cannot edit", denied_phase="launch")
"""

REQUIRED_FOR_EDIT = "owner/admin or phase assignment with can_edit"


class NotFoundError(Exception):
    """A workspace, work item, task or assignment is missing (HTTP 404).

    Work items that exist in another workspace are reported the same way,
    so ids cannot be probed across workspaces.

    Args:
        resource: Model name, e.g. "WorkItem".
        resource_id: Looked-up id; logged, never echoed to the client.
        workspace_id: Workspace the lookup was scoped to, if any.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        workspace_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.workspace_id = workspace_id
        parts = [resource]
        if resource_id is not None:
            parts.append(f"id={resource_id}")
        parts.append("not found")
        if workspace_id is not None:
            parts.append(f"(workspace={workspace_id})")
        super().__init__(" ".join(parts))


class ValidationError(Exception):
    """Input breaks a domain rule: unknown phase, bad task weight, immutable field.

    HTTP 422.  ``details`` maps field name → reason.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """The write would duplicate a unique row, e.g. a second grant for the
    same (workspace, user, phase).  HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDenied(Exception):
    """Raised when the caller's role and phase grants do not allow an action.

    Maps to HTTP 403.  The response names the phase that was denied and
    what would have been required, so the UI can explain the refusal.

    Args:
        message: Human-readable reason.
        denied_phase: Derived phase (or override state) of the target item.
        required: What would grant the action.
        role: The caller's resolved team role, if any.
        user_id: Caller id, for logs.
        action: view | edit | delete | assign | manage.
    """

    def __init__(
        self,
        message: str = "Permission denied",
        *,
        denied_phase: str | None = None,
        required: str | None = None,
        role: str | None = None,
        user_id: int | None = None,
        action: str | None = None,
    ) -> None:
        self.denied_phase = denied_phase
        self.required = required
        self.role = role
        self.user_id = user_id
        self.action = action
        super().__init__(message)


class StaleDerivationError(Exception):
    """Raised when a write names the phase it expects and the item has moved on.

    Maps to HTTP 409.  Clients refetch and retry.
    """

    def __init__(self, expected_phase: str, actual_phase: str) -> None:
        self.expected_phase = expected_phase
        self.actual_phase = actual_phase
        super().__init__(
            f"Work item phase changed: expected {expected_phase!r}, now {actual_phase!r}"
        )
