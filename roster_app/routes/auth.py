# roster_app/routes/auth.py

"""
Session login/logout for API clients
"""

from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from roster_app.errors import ValidationError
from roster_app.models import User, db
from roster_app.models.base import utcnow


def _serialize_user(user):
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "name": user.get_full_name(),
        "is_super_admin": bool(user.is_super_admin),
    }


def register_auth_routes(app):
    """Register authentication routes"""

    @app.route("/login", methods=["POST"])
    def login():
        data = request.get_json(silent=True) or request.form
        username = (data.get("username") or "").strip()
        password = data.get("password") or ""
        if not username or not password:
            raise ValidationError("Username and password are required.")

        user = User.find_by_username(username)
        if user is None or not user.is_active or not user.check_password(password):
            current_app.logger.warning(f"Failed login attempt for username: {username}")
            return jsonify({"error": "invalid_credentials", "message": "Invalid username or password"}), 401

        login_user(user, remember=bool(data.get("remember")))
        user.last_login = utcnow()
        db.session.commit()
        current_app.logger.info(f"User {user.username} logged in")
        return jsonify({"user": _serialize_user(user)}), 200

    @app.route("/logout", methods=["POST"])
    @login_required
    def logout():
        username = current_user.username
        logout_user()
        current_app.logger.info(f"User {username} logged out")
        return jsonify({"message": "Logged out"}), 200

    @app.route("/api/me", methods=["GET"])
    @login_required
    def current_user_profile():
        return jsonify({"user": _serialize_user(current_user)}), 200
