"""
storefront/checkout/routes.py
-----------------------------
Cart lines → discount allocation → net lines → Stripe Tax → PaymentIntent.
The webhook closes the loop and writes the order.
"""
from datetime import datetime, timezone

import stripe
from flask import current_app, request

from storefront.cart.service import (
    get_open_cart, get_sid, shipping_cents, shipping_destination,
)
from storefront.checkout import checkout
from storefront.checkout.stripe_client import field, stripe_options
from storefront.checkout.tax import TaxAddress, create_tax_calculation, normalize_currency
from storefront.checkout.totals import cart_taxable_lines, compute_cart_totals
from storefront.errors import NoTaxableLines, NotFound, StripeNotConfigured
from storefront.orders.models import PROVIDER_FREE, PROVIDER_STRIPE
from storefront.utils.api import json_error, json_ok


# ── ERRORS ────────────────────────────────────────────────────────

@checkout.errorhandler(stripe.StripeError)
def stripe_error(exc):
    status = 400 if isinstance(exc, stripe.InvalidRequestError) else 502
    current_app.logger.error(f"Stripe error on {request.path}: {exc!r}")
    return json_error(status, exc.user_message or 'Payment provider error.', code='stripe_error')


# ── HELPERS ───────────────────────────────────────────────────────

def _require_cart():
    cart = get_open_cart(get_sid())
    if cart is None:
        raise NotFound('Cart not found.')
    return cart


def _tax_address(cart, body) -> TaxAddress:
    """Address from the body, falling back to the chosen shipping destination."""
    raw = body.get('address')
    if isinstance(raw, dict) and raw:
        return TaxAddress.from_dict(raw)
    return TaxAddress.from_dict(shipping_destination(cart))


def _calculate(cart, body, taxable):
    opts = stripe_options()
    result = create_tax_calculation(
        cart.currency,
        _tax_address(cart, body),
        taxable,
        shipping_cents=shipping_cents(cart),
        shipping_tax_code=current_app.config.get('STRIPE_SHIPPING_TAX_CODE'),
        expand_tax_breakdown=bool(body.get('expandTaxBreakdown')),
        api_key=opts['api_key'],
        api_version=opts.get('stripe_version'),
    )
    return result, opts


def _optional_stripe_options() -> dict:
    try:
        return stripe_options()
    except StripeNotConfigured:
        return {}


# ── TAX PREVIEW ───────────────────────────────────────────────────

@checkout.route('/tax', methods=['POST'])
def tax():
    """
    Stripe Tax calculation for the current cart.
    Body: {"address": {country, postalCode, state?, city?, line1?, line2?}}
    """
    cart = _require_cart()
    body = request.get_json(silent=True) or {}
    taxable, allocation = cart_taxable_lines(cart)
    result, _ = _calculate(cart, body, taxable)
    return json_ok({
        **result.to_dict(),
        'currency':      cart.currency,
        'discountCents': sum(allocation.values()),
        'allocation':    allocation,
        'shippingCents': shipping_cents(cart),
    })


# ── PAYMENT INTENT ────────────────────────────────────────────────

@checkout.route('/payment-intent', methods=['POST'])
def payment_intent():
    """
    Create the PaymentIntent for the Stripe-computed total.

    A cart whose credits cover every line and that has no shipping cost
    is a free order: it is placed directly, no PaymentIntent.
    """
    cart = _require_cart()
    body = request.get_json(silent=True) or {}

    taxable, allocation = cart_taxable_lines(cart)
    if not taxable:
        # imported here: orders.finalize depends on checkout.totals
        from storefront.orders.finalize import finalize_paid_order

        totals = compute_cart_totals(cart)
        if not totals.lines or totals.net_subtotal_cents + totals.shipping_cents > 0:
            raise NoTaxableLines()
        order, created = finalize_paid_order(
            PROVIDER_FREE, f'free_{cart.id}',
            cart_id=cart.id, sid=cart.sid, settled_total_cents=0,
        )
        current_app.logger.info(f"Free order {order.order_number} for cart {cart.id} (created={created})")
        return json_ok({
            'free':        True,
            'orderId':     order.id,
            'orderNumber': order.order_number,
        })

    calc, opts = _calculate(cart, body, taxable)

    intent = stripe.PaymentIntent.create(
        amount=calc.amount_total_cents,
        currency=normalize_currency(cart.currency),
        automatic_payment_methods={'enabled': True},
        metadata={
            'sid':                cart.sid,
            'cartId':             cart.id,
            'tax_calculation_id': calc.id,
        },
        **opts,
    )
    current_app.logger.info(
        f"PaymentIntent {field(intent, 'id')} for cart {cart.id}: "
        f"{calc.amount_total_cents} {cart.currency} (tax {calc.tax_cents})"
    )
    return json_ok({
        'clientSecret':     field(intent, 'client_secret'),
        'paymentIntentId':  field(intent, 'id'),
        'discountCents':    sum(allocation.values()),
        **calc.to_dict(),
    })


# ── WEBHOOK ───────────────────────────────────────────────────────

def _settled_amount(obj, *names):
    """First positive integer amount among `names` on a Stripe object."""
    for name in names:
        value = field(obj, name)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    value = field(obj, names[-1])
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _paid_at(event):
    """Event creation time as naive UTC; None when Stripe did not send one."""
    created = field(event, 'created')
    if not isinstance(created, int) or isinstance(created, bool):
        return None
    return datetime.fromtimestamp(created, tz=timezone.utc).replace(tzinfo=None)


def _finalize_response(order, created):
    if order is None:
        return json_ok({'skipped': 'cart_not_found'})
    return json_ok({'orderId': order.id, 'orderNumber': order.order_number, 'created': created})


@checkout.route('/webhook', methods=['POST'])
def webhook():
    from storefront.orders.finalize import finalize_paid_order

    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        raise StripeNotConfigured('Missing STRIPE_WEBHOOK_SECRET')

    signature = request.headers.get('Stripe-Signature')
    if not signature:
        return json_error(400, 'missing_signature', code='missing_signature')

    try:
        event = stripe.Webhook.construct_event(request.get_data(), signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        current_app.logger.warning(f"Webhook signature rejected: {exc}")
        return json_error(400, 'bad_signature', code='bad_signature')

    event_type = field(event, 'type')
    obj = field(field(event, 'data'), 'object')
    opts = _optional_stripe_options()
    current_app.logger.info(f"Webhook {field(event, 'id')} {event_type}")

    if event_type == 'payment_intent.succeeded':
        metadata = field(obj, 'metadata') or {}
        order, created = finalize_paid_order(
            PROVIDER_STRIPE, field(obj, 'id'),
            cart_id=metadata.get('cartId'),
            sid=metadata.get('sid'),
            settled_total_cents=_settled_amount(obj, 'amount_received', 'amount'),
            tax_calculation_id=metadata.get('tax_calculation_id'),
            paid_at=_paid_at(event),
            api_key=opts.get('api_key'),
            api_version=opts.get('stripe_version'),
        )
        return _finalize_response(order, created)

    if event_type == 'checkout.session.completed':
        metadata = field(obj, 'metadata') or {}
        intent = field(obj, 'payment_intent')
        intent_id = intent if isinstance(intent, str) else field(intent, 'id')

        tax_calculation_id = None
        if intent_id:
            try:
                if isinstance(intent, str):
                    intent = stripe.PaymentIntent.retrieve(intent_id, **opts)
                tax_calculation_id = (field(intent, 'metadata') or {}).get('tax_calculation_id')
            except stripe.StripeError as exc:
                current_app.logger.warning(f"PaymentIntent {intent_id} retrieve failed: {exc}")

        order, created = finalize_paid_order(
            PROVIDER_STRIPE, intent_id or field(obj, 'id'),
            cart_id=metadata.get('cartId'),
            sid=metadata.get('sid'),
            settled_total_cents=_settled_amount(obj, 'amount_total'),
            tax_calculation_id=tax_calculation_id,
            paid_at=_paid_at(event),
            api_key=opts.get('api_key'),
            api_version=opts.get('stripe_version'),
        )
        return _finalize_response(order, created)

    return json_ok({'ignored': event_type})
