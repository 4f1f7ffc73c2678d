"""
storefront/checkout/stripe_client.py
------------------------------------
Per-request Stripe options built from app config.

The secret is read when a call is about to be made, never at import
time, so the app (and its CLI) start without Stripe credentials.
"""
from flask import current_app

from storefront.errors import StripeNotConfigured


def stripe_options(cfg=None) -> dict:
    """Keyword options for stripe-python resource calls."""
    cfg = cfg if cfg is not None else current_app.config
    key = cfg.get('STRIPE_SECRET_KEY')
    if not key:
        raise StripeNotConfigured()
    opts = {'api_key': key}
    if cfg.get('STRIPE_API_VERSION'):
        opts['stripe_version'] = cfg['STRIPE_API_VERSION']
    return opts


def field(obj, name, default=None):
    """Read a field from a StripeObject (a dict) or any attribute holder."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
