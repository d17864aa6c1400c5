"""Auth blueprint: /auth/*

JSON login / logout for operators and end users. Accepts a JSON body or
form fields.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from premium.extensions import limiter
from premium.models.user import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Standard email + password login."""
    if current_user.is_authenticated:
        return jsonify({"user": current_user.to_api()})

    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").lower().strip()
    password = payload.get("password") or ""
    remember = bool(payload.get("remember"))

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not user.check_password(password):
        logger.info(f"Failed login attempt for {email}")
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "Your account has been deactivated."}), 403

    login_user(user, remember=remember)
    logger.info(f"User {user.id} logged in")
    return jsonify({"user": user.to_api()})


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})
