"""
storefront/errors.py
--------------------
Domain exceptions. Each carries the HTTP status and machine-readable code
the JSON error handler renders, so routes can simply raise.
"""


class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    code = 'internal_error'

    def __init__(self, message=None, code=None, status_code=None):
        super().__init__(message or self.__class__.__doc__)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> str:
        return str(self)


class InvalidRequest(StorefrontError):
    """Invalid request body."""
    status_code = 400
    code = 'invalid_request'


class NotFound(StorefrontError):
    """Resource not found."""
    status_code = 404
    code = 'not_found'


class InvalidAddress(StorefrontError):
    """Tax address is missing a country or postal code."""
    status_code = 400
    code = 'invalid_address'


class NoTaxableLines(StorefrontError):
    """No taxable line items."""
    status_code = 409
    code = 'no_taxable_lines'


class StripeNotConfigured(StorefrontError):
    """Missing STRIPE_SECRET_KEY (or STRIPE_API_KEY)."""
    status_code = 500
    code = 'stripe_not_configured'


class Unauthorized(StorefrontError):
    """Sign-in required."""
    status_code = 401
    code = 'unauthorized'


class Forbidden(StorefrontError):
    """Access denied."""
    status_code = 403
    code = 'forbidden'
