"""
storefront/checkout/__init__.py
-------------------------------
Checkout blueprint: tax preview, payment intent, Stripe webhook.
URL prefix: /checkout
"""
from flask import Blueprint

checkout = Blueprint('checkout', __name__)

from storefront.checkout import routes  # noqa: E402, F401
