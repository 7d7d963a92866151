"""
SDLC Governance Approval Engine
Flask Application Factory.

Usage:
    from sdlc_governance import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from sdlc_governance.config import config
from sdlc_governance.models import db
from sdlc_governance.middleware.logging_config import configure_logging
from sdlc_governance.middleware.timing import init_request_timing

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
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

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

    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from sdlc_governance.models import auth as _auth_models                   # noqa: F401
    from sdlc_governance.models import project as _project_models             # noqa: F401
    from sdlc_governance.models import document as _document_models           # noqa: F401
    from sdlc_governance.models import approval as _approval_models           # noqa: F401
    from sdlc_governance.models import audit as _audit_models                 # noqa: F401
    from sdlc_governance.models import signature as _signature_models         # noqa: F401
    from sdlc_governance.models import notification as _notification_models   # noqa: F401

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from sdlc_governance.blueprints.approval_bp import approval_bp
    from sdlc_governance.blueprints.project_status_bp import project_status_bp
    from sdlc_governance.blueprints.audit_bp import audit_bp
    from sdlc_governance.blueprints.signature_bp import signature_bp
    from sdlc_governance.blueprints.health_bp import health_bp

    decision_limit = app.config.get("DECISION_RATE_LIMIT")
    if decision_limit:
        limiter.limit(decision_limit)(approval_bp)
        limiter.limit(decision_limit)(project_status_bp)

    app.register_blueprint(approval_bp)
    app.register_blueprint(project_status_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(signature_bp)
    app.register_blueprint(health_bp)

    # ── Notifications (post-commit hook handlers) ────────────────────────
    from sdlc_governance.services.notification import register_default_handlers
    register_default_handlers()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Create demo users, a project and a draft document."""
        from sdlc_governance.models.auth import User
        from sdlc_governance.models.document import Document
        from sdlc_governance.models.project import Project

        if db.session.execute(db.select(User).limit(1)).first():
            logger.info("Database already has users; skipping seed.")
            return
        owner = User(name="Demo Requester", email="requester@example.com", role="REQUESTER")
        approvers = [
            User(name=f"Demo Approver {i}", email=f"approver{i}@example.com", role="APPROVER")
            for i in (1, 2)
        ]
        db.session.add_all([owner, *approvers])
        db.session.flush()
        project = Project(code="DEMO-001", title="Demo initiative", owner_id=owner.id)
        db.session.add(project)
        db.session.flush()
        db.session.add(Document(project_id=project.id, type="BRD", filename="demo-brd.pdf",
                                lifecycle_step=project.status, created_by_id=owner.id))
        db.session.commit()
        logger.info("Seeded demo users, project %s and one draft document.", project.code)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
