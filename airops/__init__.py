"""
Airfield Operations Platform
Flask Application Factory.

Usage:
    from airops import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from airops.config import config
from airops.models import db
from airops.middleware.logging_config import configure_logging
from airops.middleware.rate_limiter import init_rate_limits
from airops.middleware.timing import init_request_timing
from airops.utils.errors import E, api_error

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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",  # Redis in production, memory for dev
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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from airops.models import approval as _approval_models          # noqa: F401
    from airops.models import approver as _approver_models          # noqa: F401
    from airops.models import audit as _audit_models                # noqa: F401
    from airops.models import notification as _notification_models  # noqa: F401
    from airops.models import work_request as _work_request_models  # noqa: F401

    # ── Auto-create tables in dev / test (migrations own production) ─────
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from airops.blueprints.approval_bp import approval_bp
    from airops.blueprints.health_bp import health_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-approval-rules")
    @click.argument("organization_id")
    def seed_approval_rules_cmd(organization_id):
        """Store the built-in approval rules for an organization."""
        from airops.services.approval_workflow_service import seed_default_rules
        count = seed_default_rules(organization_id)
        logger.info("Seeded %s approval rules for %s.", count, organization_id)

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered scheduled job once (cron entry point)."""
        from airops.services.scheduler_service import SchedulerService
        outcome = SchedulerService.run_job(job_name)
        click.echo(json.dumps(outcome, default=str))
        if outcome["status"] != "success":
            raise SystemExit(1)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("airops.services.scheduled_jobs")  # registers @register_job handlers
    from airops.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app
