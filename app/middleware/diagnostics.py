"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database, the access-control tables and (on PostgreSQL)
whether the row-security policy is installed, then logs a summary banner.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect

from app.models import db
from app.services.phase_policy_sql import PROTECTED_TABLES

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("teams", "team_members", "workspaces", "work_items", "tasks", "user_phase_assignments")


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = f"FAILED ({exc})"
            issues.append(f"Database unreachable: {exc}")

        # ── Access-control tables ────────────────────────────────────
        try:
            tables = set(sa_inspect(db.engine).get_table_names())
            missing = [t for t in REQUIRED_TABLES if t not in tables]
            table_status = "ok" if not missing else f"missing {', '.join(missing)}"
            if missing:
                issues.append("Access-control tables missing — run 'flask db upgrade'")
        except Exception:
            table_status = "check failed"

        # ── Row-security policy (PostgreSQL only) ────────────────────
        rls_status = "n/a (SQLite)"
        if "postgresql" in db_uri:
            try:
                rows = db.session.execute(
                    db.text("SELECT relname FROM pg_class WHERE relrowsecurity AND relname = ANY(:t)"),
                    {"t": list(PROTECTED_TABLES)},
                ).fetchall()
                enabled = {r[0] for r in rows}
                rls_status = f"{len(enabled)}/{len(PROTECTED_TABLES)} tables"
                if len(enabled) < len(PROTECTED_TABLES):
                    issues.append("Row-security policy incomplete — run 'flask db upgrade'")
            except Exception:
                rls_status = "check failed"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Phase Access Platform — Startup Diagnostics                 ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46.46s}║
║  Tables      : {table_status:<46.46s}║
║  Row security: {rls_status:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
