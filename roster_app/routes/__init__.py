# roster_app/routes/__init__.py
"""
Application routes package
"""

from http import HTTPStatus

from flask import Response, current_app, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from werkzeug.exceptions import HTTPException

from roster_app.errors import RosterError
from roster_app.models import db

from .auth import register_auth_routes
from .donors import register_donor_routes
from .events import register_event_routes
from .lists import register_list_routes


def register_error_handlers(app):
    """Render domain and HTTP errors as JSON"""

    @app.errorhandler(RosterError)
    def handle_roster_error(error):
        if error.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
            current_app.logger.error(f"Request failed: {error.message}", extra={"error_code": error.error_code})
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.name.lower().replace(" ", "_"), "message": error.description}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


def register_metrics_route(app):
    """Expose Prometheus metrics when ``MONITORING_ENABLED`` is set"""
    if not app.config.get("MONITORING_ENABLED", False):
        return

    @app.route(app.config.get("METRICS_ENDPOINT", "/metrics"), methods=["GET"])
    def metrics():
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


def init_routes(app):
    """Initialize all application routes"""
    register_error_handlers(app)
    register_metrics_route(app)
    register_auth_routes(app)
    register_donor_routes(app)
    register_event_routes(app)
    register_list_routes(app)
