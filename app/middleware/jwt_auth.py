"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_user_id.

Every /api/v1/ route except the skip list requires a valid bearer token.
Missing, expired or malformed tokens get a 401 before any view runs.
"""

import logging

import jwt as pyjwt
from flask import g, request

from app.services.jwt_service import decode_access_token, user_id_from_payload
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None

        path = request.path
        if not path.startswith("/api/v1/") or request.method == "OPTIONS":
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHENTICATED, "Authentication required")

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = user_id_from_payload(payload)
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHENTICATED, "Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            return api_error(E.UNAUTHENTICATED, "Invalid token")
        return None
