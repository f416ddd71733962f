"""
Memo Desk
Flask Application Factory.

Usage:
    from memodesk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_migrate import Migrate

from memodesk.config import config
from memodesk.integrations.attachment_store import build_attachment_store
from memodesk.middleware.logging_config import configure_logging
from memodesk.middleware.timing import init_request_timing
from memodesk.models import db
from memodesk.models.auth import ROLE_DESK_HEAD, ROLE_LEO, ROLE_STAFF

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

DEFAULT_ACTORS = (
    ("staff@memodesk.local", "Staff Officer", ROLE_STAFF),
    ("deskhead@memodesk.local", "Desk Head", ROLE_DESK_HEAD),
    ("leo@memodesk.local", "Leading Executive Officer", ROLE_LEO),
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
    migrate.init_app(app, db)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Attachment store (shared by upload worker threads) ───────────────
    app.extensions["attachment_store"] = build_attachment_store(app.config)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from memodesk.models import auth as _auth_models    # noqa: F401
    from memodesk.models import memo as _memo_models    # noqa: F401
    from memodesk.models import audit as _audit_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from memodesk.blueprints.memo_bp import memo_bp

    app.register_blueprint(memo_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-actors")
    @click.option("--department", default="General Affairs", show_default=True)
    def seed_actors_cmd(department):
        """Seed a STAFF creator, a DESK_HEAD and a LEO for local use."""
        from memodesk.models.auth import User

        for email, full_name, role in DEFAULT_ACTORS:
            user = User.query.filter_by(email=email).first()
            if user is None:
                user = User(email=email)
                db.session.add(user)
            user.full_name = full_name
            user.role = role
            user.department = department
            user.status = "active"
        db.session.commit()

        for email, _, _ in DEFAULT_ACTORS:
            user = User.query.filter_by(email=email).first()
            click.echo(f"{user.id}\t{user.role}\t{user.email}")
        logger.info("Seeded %d actors.", len(DEFAULT_ACTORS))

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Memo Desk"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large", "code": "ERR_VALIDATION_INVALID"}, 413

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    return app
