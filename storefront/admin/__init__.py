"""
storefront/admin/__init__.py
----------------------------
Admin blueprint (token protected).
URL prefix: /admin
"""
from flask import Blueprint

admin = Blueprint('admin', __name__)

from storefront.admin import routes  # noqa: E402, F401
