"""
storefront/auth/decorators.py
-----------------------------
Reusable route-protection decorators.

Sign-in itself is handled by the external identity provider, which puts
the shopper's id in the Flask session under 'user_id'.

Usage:
    from storefront.auth.decorators import login_required, admin_required

    @loyalty.route('/redeem', methods=['POST'])
    @login_required
    def redeem():
        ...

    @admin.route('/loyalty/adjust', methods=['POST'])
    @admin_required
    def adjust():
        ...
"""
import hmac
from functools import wraps

from flask import current_app, request, session

from storefront.errors import Forbidden, Unauthorized

USER_KEY = 'user_id'
ADMIN_TOKEN_HEADER = 'X-Admin-Token'


def current_user_id():
    """Signed-in user id from the session, or None."""
    user_id = str(session.get(USER_KEY) or '').strip()
    return user_id or None


def login_required(f):
    """401 unless the session carries a signed-in user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user_id():
            raise Unauthorized()
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to callers presenting ADMIN_API_TOKEN in the
    X-Admin-Token header. With no token configured every admin route is 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get('ADMIN_API_TOKEN')
        given = request.headers.get(ADMIN_TOKEN_HEADER, '')
        if not expected or not hmac.compare_digest(str(given), str(expected)):
            current_app.logger.warning(f"Admin access denied: {request.method} {request.path}")
            raise Forbidden()
        return f(*args, **kwargs)
    return decorated
