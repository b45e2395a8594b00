"""
AI Use-Case Portfolio Service
Flask application factory.

    from portfolio import create_app
    app = create_app()                              # APP_ENV or "development"
    app = create_app("testing", event_sink=sink)    # tests record domain events
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from portfolio.blueprints import activation_blocked_response
from portfolio.config import config
from portfolio.core.exceptions import (
    ActivationBlocked,
    ConflictError,
    GateSequenceError,
    NotFoundError,
    PhaseTransitionRequiresJustification,
    ValidationError,
)
from portfolio.middleware.logging_config import configure_logging
from portfolio.middleware.rate_limiter import init_rate_limits
from portfolio.middleware.timing import init_request_timing
from portfolio.models import db
from portfolio.services.events import init_event_sink
from portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores foreign keys unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(key_func=get_remote_address, default_limits=[])


# ═════════════════════════════════════════════════════════════════════════════
# Error envelope
# ═════════════════════════════════════════════════════════════════════════════

# exception type -> response builder
_DOMAIN_ERRORS = {
    ValidationError: lambda exc: api_error(
        E.VALIDATION_INVALID, str(exc), issues=exc.issues, details=exc.details),
    NotFoundError: lambda exc: api_error(E.NOT_FOUND, f"{exc.resource} not found"),
    ConflictError: lambda exc: api_error(E.CONFLICT_STATE, str(exc)),
    GateSequenceError: lambda exc: api_error(
        E.GATE_SEQUENCE, str(exc), details={"gate": exc.gate, "required_gate": exc.required_gate}),
    ActivationBlocked: activation_blocked_response,
    PhaseTransitionRequiresJustification: lambda exc: api_error(
        E.PHASE_TRANSITION_REQUIRES_JUSTIFICATION, str(exc), details=exc.transition.to_dict()),
}


def _register_error_handlers(app):
    """Service exceptions become the JSON envelope. The session is rolled back first."""

    def _handler_for(build):
        def _handle(exc):
            db.session.rollback()
            logger.info("%s: %s", type(exc).__name__, exc)
            return build(exc)
        return _handle

    for exc_type, build in _DOMAIN_ERRORS.items():
        app.register_error_handler(exc_type, _handler_for(build))

    @app.errorhandler(404)
    def _unknown_route(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _init_cors(app):
    origins = (app.config.get("CORS_ORIGINS") or "").strip()
    if origins == "*":
        CORS(app)
    elif origins:
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])


# ═════════════════════════════════════════════════════════════════════════════
# Factory
# ═════════════════════════════════════════════════════════════════════════════

def create_app(config_name=None, event_sink=None):
    """
    Build the Flask app.

    Args:
        config_name: "development", "testing" or "production". Defaults to
                     the APP_ENV env var, then "development".
        event_sink: Receiver for domain events (phase changes, gate decisions,
                    deactivations). Defaults to the logging sink.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    _init_cors(app)
    init_event_sink(app, event_sink)
    init_request_timing(app)

    # model modules must be imported before create_all / autogenerate
    from portfolio.models import audit, client, metadata_config, use_case  # noqa: F401

    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                os.makedirs(app.instance_path, exist_ok=True)
                db.create_all()
            except Exception as exc:
                app.logger.warning("db.create_all() failed: %s", exc)

    from portfolio.blueprints.clients_bp import clients_bp
    from portfolio.blueprints.derivation_bp import derivation_bp
    from portfolio.blueprints.governance_bp import governance_bp
    from portfolio.blueprints.health_bp import health_bp
    from portfolio.blueprints.metadata_bp import metadata_bp
    from portfolio.blueprints.portfolio_bp import portfolio_bp
    from portfolio.blueprints.use_cases_bp import use_cases_bp

    for blueprint in (use_cases_bp, governance_bp, derivation_bp, metadata_bp,
                      portfolio_bp, clients_bp, health_bp):
        app.register_blueprint(blueprint)

    _register_error_handlers(app)
    init_rate_limits(app, limiter)
    return app
