"""
storefront/orders/__init__.py
-----------------------------
Orders blueprint.
URL prefix: /orders
"""
from flask import Blueprint

orders = Blueprint('orders', __name__)

from storefront.orders import routes  # noqa: E402, F401
from storefront.orders import models  # noqa: E402, F401
