"""
storefront/pricing/__init__.py
------------------------------
Pricing blueprint.
URL prefix: /pricing
"""
from flask import Blueprint

pricing = Blueprint('pricing', __name__)

from storefront.pricing import routes  # noqa: E402, F401
from storefront.pricing import models  # noqa: E402, F401
