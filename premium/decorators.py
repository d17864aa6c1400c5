"""
Route guards for the operator API.

- admin_required: logged in (401 otherwise), active operator (403 otherwise).
"""

import logging
from functools import wraps

from flask import abort, request
from flask_login import current_user, login_required

logger = logging.getLogger(__name__)


def admin_required(f):
    """Require login + an active account with the is_admin flag."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not (current_user.is_admin and current_user.is_active):
            logger.warning(f"Non-operator {current_user.id} denied {request.method} {request.path}")
            abort(403)
        return f(*args, **kwargs)

    return decorated
