"""
Phase Access Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.diagnostics import run_startup_diagnostics
from app.middleware.security_headers import init_security_headers
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.jwt_auth import init_jwt_middleware

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # instantiate so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.jwt_user_id, 401 otherwise) ──────────
    init_jwt_middleware(app)

    # ── Rate limiter (its before_request hook runs after JWT auth) ───────
    limiter.init_app(app)

    @app.before_request
    def _guard_request():
        from flask import abort, request as _req
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import team as _team_models                  # noqa: F401
    from app.models import work_item as _work_item_models        # noqa: F401
    from app.models import phase_assignment as _assignment_models  # noqa: F401
    from app.models import audit as _audit_models                # noqa: F401

    # ── Row-security session binding (sets app.user_id on PostgreSQL) ───
    from app.services import phase_policy_sql as _row_security     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.health_bp import health_bp
    from app.blueprints.permissions_bp import permissions_bp
    from app.blueprints.phase_assignment_bp import phase_assignment_bp
    from app.blueprints.team_bp import team_bp
    from app.blueprints.work_item_bp import work_item_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(permissions_bp)
    app.register_blueprint(phase_assignment_bp)
    app.register_blueprint(team_bp)
    app.register_blueprint(work_item_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("phase-policy-sql")
    @click.option("--drop", is_flag=True, help="Print the DROP statements instead.")
    def phase_policy_sql_cmd(drop):
        """Print the row-security policy DDL generated from the phase rule table."""
        from app.services.phase_policy_sql import render_drop_sql, render_policy_sql
        click.echo(render_drop_sql() if drop else render_policy_sql())

    # ── Error handlers ───────────────────────────────────────────────────
    from app.utils.errors import E, api_error

    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return api_error(E.NOT_FOUND, "Not found", extra={"path": request.path})

    @app.errorhandler(500)
    def server_error(e):
        logger.exception("500 error: %s", e)
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
