"""
Phase Access Platform
Blueprint helpers shared by every API blueprint.

- ``register_error_handlers`` maps the core exception types to HTTP
  responses once per blueprint.
- ``json_object_body`` reads a JSON object body or signals a 400.
- ``current_user_id`` returns the authenticated caller.
"""

import logging

from flask import g, request

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    StaleDerivationError,
    ValidationError,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


class BadRequestBody(Exception):
    """Request body is missing or not a JSON object."""


def current_user_id() -> int | None:
    return getattr(g, "jwt_user_id", None)


def json_object_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequestBody()
    return data


def register_error_handlers(bp) -> None:
    """Attach the standard exception → response mapping to a blueprint."""

    @bp.errorhandler(BadRequestBody)
    def _handle_bad_body(error: BadRequestBody):
        return api_error(E.VALIDATION_REQUIRED, "Request body must be a JSON object")

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.debug("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(
            E.CONFLICT_DUPLICATE, str(error),
            extra={"field": error.field, "value": error.value},
        )

    @bp.errorhandler(StaleDerivationError)
    def _handle_stale(error: StaleDerivationError):
        return api_error(
            E.STALE_DERIVATION, str(error),
            extra={"expected_phase": error.expected_phase, "actual_phase": error.actual_phase},
        )

    @bp.errorhandler(PermissionDenied)
    def _handle_denied(error: PermissionDenied):
        return api_error(
            E.FORBIDDEN, str(error),
            extra={
                "denied_phase": error.denied_phase,
                "required": error.required,
                "role": error.role,
            },
        )
