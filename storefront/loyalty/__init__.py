"""
storefront/loyalty/__init__.py
------------------------------
Loyalty blueprint.
URL prefix: /loyalty
"""
from flask import Blueprint

loyalty = Blueprint('loyalty', __name__)

from storefront.loyalty import routes  # noqa: E402, F401
from storefront.loyalty import models  # noqa: E402, F401
