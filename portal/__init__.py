"""
Studio Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from portal.config import config
from portal.models import db
from portal.middleware.actor import init_actor_context
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits

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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None, *, estimator=None, email_sender=None, clock=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        estimator: HourEstimator override (default: built from config).
        email_sender: Object with ``send_from_template``/``absolute_url``
                      (default: EmailService).
        clock: Zero-arg callable returning an aware datetime (default: UTC now).

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

    # ── Acting user (X-User-Id) ──────────────────────────────────────────
    # Registered before the limiter so its key function sees g.current_user.
    init_actor_context(app)

    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Import all models so create_all sees them ────────────────────────
    from portal.models import auth as _auth_models                  # noqa: F401
    from portal.models import project as _project_models            # noqa: F401
    from portal.models import delivery as _delivery_models          # noqa: F401
    from portal.models import change_request as _cr_models          # noqa: F401
    from portal.models import project_update as _update_models      # noqa: F401
    from portal.models import notification as _notification_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]), exist_ok=True)
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Transition engine ────────────────────────────────────────────────
    from portal.services.email_service import EmailService
    from portal.services.transition_engine import EXTENSION_KEY, TransitionEngine

    app.extensions[EXTENSION_KEY] = TransitionEngine.from_config(
        app.config,
        estimator=estimator,
        email_sender=email_sender or EmailService,
        clock=clock,
    )

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints import register_error_handlers
    from portal.blueprints.projects_bp import projects_bp
    from portal.blueprints.deliverables_bp import deliverables_bp
    from portal.blueprints.milestones_bp import milestones_bp
    from portal.blueprints.epics_bp import epics_bp
    from portal.blueprints.sprints_bp import sprints_bp
    from portal.blueprints.change_requests_bp import change_requests_bp
    from portal.blueprints.notification_bp import notification_bp
    from portal.blueprints.health_bp import health_bp

    app.register_blueprint(projects_bp)
    app.register_blueprint(deliverables_bp)
    app.register_blueprint(milestones_bp)
    app.register_blueprint(epics_bp)
    app.register_blueprint(sprints_bp)
    app.register_blueprint(change_requests_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    register_error_handlers(app)

    # ── Rate limiting (after blueprints are registered) ──────────────────
    init_rate_limits(app, limiter)

    return app
