"""
storefront/pricing/routes.py
----------------------------
Price preview for a configured product (product page configurator).
"""
from flask import current_app, request

from storefront.errors import InvalidRequest
from storefront.pricing import pricing
from storefront.pricing.quote import quote_line
from storefront.pricing.stores import store_to_currency
from storefront.utils.api import json_error, json_ok
from storefront.utils.money import to_int


@pricing.route('/resolve', methods=['POST'])
def resolve():
    body = request.get_json(silent=True) or {}

    product_id = to_int(body.get('productId'), 0)
    quantity   = to_int(body.get('quantity', 1), 0)
    store      = body.get('store') or current_app.config['DEFAULT_STORE']

    if product_id <= 0 or quantity <= 0:
        raise InvalidRequest('productId and a positive quantity are required.')

    resolution, sell = quote_line(product_id, body.get('optionIds'), quantity, store)
    if sell is None:
        return json_error(409, 'No local price for this configuration.',
                          code='price_miss', **resolution.to_dict())

    return json_ok({
        **resolution.to_dict(),
        'currency':      store_to_currency(store),
        'quantity':      quantity,
        'unitSellCents': sell.unit_sell_cents,
        'lineSellCents': sell.line_sell_cents,
    })
