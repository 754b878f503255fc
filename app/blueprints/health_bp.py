"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       — simple 200 for load balancers
    GET /api/v1/health/live  — database latency and access-control table check
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import inspect as sa_inspect

from app.middleware.diagnostics import REQUIRED_TABLES
from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "app": "Phase Access Platform"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    if overall:
        tables = set(sa_inspect(db.engine).get_table_names())
        missing = [t for t in REQUIRED_TABLES if t not in tables]
        checks["tables"] = {"status": "ok" if not missing else "missing", "missing": missing}
        overall = not missing

    checks["app"] = {"debug": current_app.debug, "testing": current_app.testing}
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
