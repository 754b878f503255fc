"""Uniform JSON error bodies for the access-control API.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}?, ...extra}

``details`` carries field-level validation reasons; ``extra`` keys sit at
the top level so a 403 can name ``denied_phase`` and ``required`` where
the UI expects them.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.UNAUTHENTICATED, "Token expired")
    return api_error(E.FORBIDDEN, "Cannot edit", extra={"denied_phase": "launch"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error codes ───────────────────────────────────────────────────────
class E:
    """Machine-readable error codes (``ERR_`` prefix)."""

    # request body missing or not an object – 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    # business-rule validation (unknown phase, bad weight, immutable field) – 422
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    # role / phase grant does not allow the action
    FORBIDDEN = "ERR_FORBIDDEN"

    NOT_FOUND = "ERR_NOT_FOUND"

    # duplicate (workspace, user, phase) assignment
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    # caller's expected_phase no longer matches the derived phase
    STALE_DERIVATION = "ERR_STALE_DERIVATION"

    INTERNAL = "ERR_INTERNAL"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.STALE_DERIVATION: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    extra: dict | None = None,
):
    """Build ``(response, status)`` for a Flask view or error handler.

    The status defaults to the code's mapping above (400 for unknown codes).
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if extra:
        body.update(extra)
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
