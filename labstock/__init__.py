"""
Lab Reagent Stock Management
Flask Application Factory.

Usage:
    from labstock import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from labstock.config import config
from labstock.models import db
from labstock.auth import init_auth
from labstock.core.exceptions import ConflictError, NotFoundError, ValidationError
from labstock.middleware.logging_config import configure_logging
from labstock.middleware.rate_limiter import init_rate_limits
from labstock.middleware.timing import init_request_timing
from labstock.utils.errors import E, api_error

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


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per-blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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
    config_cls = config[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    from labstock.services.email_service import MailSender
    app.extensions["mail_sender"] = MailSender.from_config(app.config)

    # ── Authentication middleware ────────────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    # ── Import all models so create_all sees them ────────────────────────
    from labstock.models import inventory as _inventory_models   # noqa: F401
    from labstock.models import alerting as _alerting_models     # noqa: F401
    from labstock.models import export as _export_models         # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from labstock.blueprints.alerts_bp import alerts_bp, alerts_cron_bp
    from labstock.blueprints.export_bp import export_bp
    from labstock.blueprints.health_bp import health_bp
    from labstock.blueprints.scheduler_bp import scheduler_bp

    app.register_blueprint(alerts_cron_bp)
    app.register_blueprint(alerts_bp)
    app.register_blueprint(export_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(scheduler_bp)

    _register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (registers jobs) ────────────────────────
    from labstock.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if not app.config.get("TESTING"):
        SchedulerService.ensure_jobs_registered()

    _register_cli(app)

    return app


def _register_error_handlers(app):
    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return e

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        if request.path.startswith("/api/"):
            return {"error": "Internal server error"}, 500
        return "<h1>500 - Internal Server Error</h1>", 500


def _register_cli(app):
    @app.cli.command("run-digest")
    def run_digest_cmd():
        """Run the daily alert digest once (same path as the cron trigger)."""
        from labstock.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job("alert_digest")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")

    @app.cli.command("sweep-exports")
    def sweep_exports_cmd():
        """Fail export jobs that never finished."""
        from labstock.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job("export_job_sweep")
        click.echo(f"{result['status']}: {result.get('result') or result.get('error')}")
