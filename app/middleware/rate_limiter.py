"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter
instance is created in app/__init__.py with no default limits; this
module applies limits per route category, keyed by the authenticated
user when there is one and by remote IP otherwise.

The key function reads the bearer token itself when the JWT hook has
not run yet, so the budget is per user regardless of hook order.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

import jwt as pyjwt
from flask import g, request as flask_request

from app.services.jwt_service import decode_access_token, user_id_from_payload

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Blueprints whose routes mutate access-control state
WRITE_BLUEPRINTS = ("phase_assignment", "work_item", "team")
READ_BLUEPRINTS = ("permissions",)


def _bearer_user_id():
    auth_header = flask_request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        return user_id_from_payload(decode_access_token(auth_header[7:]))
    except pyjwt.InvalidTokenError:
        return None


def rate_limit_key() -> str:
    """User id if authenticated, else remote IP."""
    user_id = getattr(g, "jwt_user_id", None) or _bearer_user_id()
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Write blueprints (assignments, work items, team): 60/minute
        - Read blueprints (permissions, analytics):        200/minute
        - Health check:                                     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
