"""
Security headers middleware.

The service only serves JSON, so the Content-Security-Policy is locked
down completely.  API responses are marked ``no-store``: permission
answers depend on grants that can change at any moment and must never be
served from a shared cache.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request

API_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault("Content-Security-Policy", API_CSP)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        if request.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")

        response.headers.pop("Server", None)
        return response
