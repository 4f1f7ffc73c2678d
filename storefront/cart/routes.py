import math

from flask import current_app, request

from storefront import db
from storefront.cart import cart as cart_bp
from storefront.cart.service import (
    get_sid, get_open_cart, credits_cents, add_line, set_line_quantity,
    cart_summary,
)
from storefront.cart.models import CartLine
from storefront.errors import InvalidRequest, NotFound
from storefront.pricing.quote import quote_line
from storefront.pricing.stores import (
    currency_to_store_code, store_to_currency,
)
from storefront.pricing.variants import normalize_option_ids, resolve_price
from storefront.utils.api import json_error, json_ok
from storefront.utils.money import clamp_int, to_int


def _require_cart():
    cart = get_open_cart(get_sid())
    if cart is None:
        raise NotFound('Cart not found.')
    return cart


def _own_line(cart, line_id):
    line = db.session.get(CartLine, line_id)
    if line is None or line.cart_id != cart.id:
        raise NotFound('Cart line not found.')
    return line


def _price_miss(resolution):
    current_app.logger.info(
        f"Cart price miss: product={resolution.product_id} key={resolution.key} "
        f"reason={resolution.reason}"
    )
    return json_error(409, 'No local price for this configuration.',
                      code='price_miss', **resolution.to_dict())


# ── CURRENT CART ──────────────────────────────────────────────────

@cart_bp.route('/current')
def current():
    """Current cart with ordered lines and display totals."""
    cart = get_open_cart(get_sid())
    if cart is None:
        return json_ok({'cart': None})
    return json_ok({'cart': cart_summary(cart)})


# ── LINES ─────────────────────────────────────────────────────────

@cart_bp.route('/lines', methods=['POST'])
def add():
    """
    Add a configured product. The line is priced from the local variant
    table; a miss is answered with 409 and the structured miss reason.
    """
    body = request.get_json(silent=True) or {}

    product_id = to_int(body.get('productId'), 0)
    quantity   = to_int(body.get('quantity', 1), 0)
    option_ids = normalize_option_ids(body.get('optionIds'))
    currency   = store_to_currency(body.get('store') or current_app.config['DEFAULT_STORE'])

    if product_id <= 0 or quantity <= 0 or not option_ids:
        raise InvalidRequest('productId, optionIds and a positive quantity are required.')

    cart = get_open_cart(get_sid(create=True), create=True, currency=currency)
    if cart.currency != currency:
        raise InvalidRequest(f'Cart is priced in {cart.currency}; cannot add a {currency} line.')

    resolution, sell = quote_line(product_id, option_ids, quantity, currency)
    if sell is None:
        db.session.commit()   # keep the newly opened cart
        return _price_miss(resolution)

    line = add_line(
        cart, product_id, option_ids, quantity,
        unit_price_cents=sell.unit_sell_cents,
        variant_key=resolution.key,
    )
    db.session.commit()
    current_app.logger.info(f"Cart {cart.id}: added line {line.id} product={product_id} qty={quantity}")
    return json_ok({'line': line.to_dict(), 'cart': cart_summary(cart)}, status=201)


@cart_bp.route('/lines/<line_id>', methods=['PATCH'])
def update_quantity(line_id):
    """Change a line's quantity; the unit price is re-quoted for the new tier."""
    cart = _require_cart()
    line = _own_line(cart, line_id)

    body = request.get_json(silent=True) or {}
    quantity = to_int(body.get('quantity'), 0)
    if quantity <= 0:
        raise InvalidRequest('quantity must be a positive integer.')

    resolution, sell = quote_line(line.product_id, line.option_ids, quantity, cart.currency)
    if sell is None:
        return _price_miss(resolution)

    line.unit_price_cents = sell.unit_sell_cents
    set_line_quantity(line, quantity)
    db.session.commit()
    return json_ok({'line': line.to_dict(), 'cart': cart_summary(cart)})


@cart_bp.route('/lines/<line_id>', methods=['DELETE'])
def remove(line_id):
    cart = _require_cart()
    line = _own_line(cart, line_id)
    db.session.delete(line)
    db.session.commit()
    return json_ok({'cart': cart_summary(cart)})


@cart_bp.route('/lines/reprice', methods=['POST'])
def reprice():
    """
    Batch lookup of local vendor prices.
    Body: {"store": "US"|"CA", "lines": [{lineId, productId, optionIds, quantity}]}
    Read-only; misses are reported per line.
    """
    body = request.get_json(silent=True) or {}
    store = body.get('store')
    lines = body.get('lines')
    if store not in ('US', 'CA') or not isinstance(lines, list):
        raise InvalidRequest('Invalid request body')

    store_code = currency_to_store_code(store_to_currency(store))
    out = []
    for raw in lines:
        if not isinstance(raw, dict):
            continue
        line_id  = str(raw.get('lineId') or '').strip()
        quantity = to_int(raw.get('quantity'), 0)
        if not line_id or quantity <= 0:
            continue
        resolution = resolve_price(raw.get('productId'), raw.get('optionIds'), store_code)
        if resolution.reason in ('invalid_product', 'no_options'):
            continue
        entry = {'lineId': line_id, **resolution.to_dict()}
        out.append(entry)

    return json_ok({'storeCode': store_code, 'lines': out})


# ── SHIPPING ──────────────────────────────────────────────────────

@cart_bp.route('/shipping', methods=['POST'])
def choose_shipping():
    """Store the chosen shipping rate (cost in dollars) and its destination."""
    cart = _require_cart()
    body = request.get_json(silent=True) or {}

    carrier = str(body.get('carrier') or '').strip()
    method  = str(body.get('method') or '').strip()
    if not carrier or not method:
        raise InvalidRequest('Missing carrier/method')

    try:
        cost = float(body.get('cost', 0))
    except (TypeError, ValueError):
        raise InvalidRequest('cost must be a number.')
    if not math.isfinite(cost) or cost < 0:
        raise InvalidRequest('cost must be a non-negative number.')

    days = body.get('days')
    cart.selected_shipping = {
        'carrier': carrier,
        'method':  method,
        'cost':    cost,
        'days':    None if days is None else clamp_int(days),
        'currency': cart.currency,
        'country': 'CA' if str(body.get('country', '')).upper() == 'CA' else 'US',
        'state':   str(body.get('state') or '').strip(),
        'zip':     str(body.get('zip') or '').strip(),
    }
    db.session.commit()
    return json_ok({'cart': cart_summary(cart)})


@cart_bp.route('/shipping', methods=['DELETE'])
def clear_shipping():
    cart = _require_cart()
    cart.selected_shipping = None
    db.session.commit()
    return json_ok({'cart': cart_summary(cart)})


# ── CREDITS ───────────────────────────────────────────────────────

@cart_bp.route('/credits')
def credits():
    cart = _require_cart()
    return json_ok({'cartId': cart.id, 'creditsCents': credits_cents(cart)})
