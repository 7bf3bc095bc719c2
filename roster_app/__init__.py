# roster_app/__init__.py
"""
Donor roster application package: Flask app factory and extension wiring
"""

import logging
import os

from flask import Flask, jsonify
from flask_login import LoginManager
from sqlalchemy import event

from config import DevelopmentConfig, ProductionConfig, TestingConfig
from config.monitoring import DevelopmentMonitoringConfig, ProductionMonitoringConfig, TestingMonitoringConfig
from config.validation import validate_and_exit

from .cli import roster_cli
from .importer import init_importer
from .models import User, db
from .routes import init_routes
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

_CONFIG_BY_ENV = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}

login_manager = LoginManager()


def _configure_sqlite_connection_factory(*, enable_foreign_keys: bool):
    """Return a connection hook applying concurrency-friendly pragmas."""

    def _configure_sqlite_connection(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside a real transaction.
        dbapi_connection.isolation_level = None
        try:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            if enable_foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)

    return _configure_sqlite_connection


def _emit_sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


def _configure_sqlite_engine(app):
    engine = db.engine
    if not engine.url.drivername.startswith("sqlite"):
        return
    if getattr(engine, "_sqlite_pragmas_configured", False):
        return
    pragma_hook = _configure_sqlite_connection_factory(enable_foreign_keys=not app.config.get("TESTING", False))
    event.listen(engine, "connect", pragma_hook)
    event.listen(engine, "begin", _emit_sqlite_begin)
    # Connections opened before the hooks were attached would skip them.
    engine.dispose()
    engine._sqlite_pragmas_configured = True  # type: ignore[attr-defined]


def _register_login_manager(app):
    login_manager.init_app(app)
    app.extensions["login_manager"] = login_manager

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(User, int(user_id))
        except (ValueError, TypeError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "unauthorized", "message": "Authentication required."}), 401


def create_app(config_name=None, config_overrides=None):
    """
    Build a configured Flask application.

    ``config_name`` is ``development``, ``testing`` or ``production`` and
    defaults to ``FLASK_ENV``. ``config_overrides`` is applied last.
    """
    flask_env = config_name or os.environ.get("FLASK_ENV", "development")
    if flask_env == "production":
        validate_and_exit(flask_env)
    config_class, monitoring_class = _CONFIG_BY_ENV.get(flask_env, _CONFIG_BY_ENV["development"])

    app = Flask(__name__, instance_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), "instance"))
    app.config.from_object(config_class)
    app.config.from_object(monitoring_class)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app)
    db.init_app(app)
    _register_login_manager(app)

    with app.app_context():
        _configure_sqlite_engine(app)
        # Tests create their own schema per fixture.
        if not app.config.get("TESTING", False):
            db.create_all()

    init_importer(app)
    init_routes(app)
    app.cli.add_command(roster_cli)

    return app
