"""
storefront/pricing/quote.py
---------------------------
Sell price for a configured product: local vendor cost, then store markup.
"""
from flask import current_app

from storefront.pricing.markup import MarkupRules, apply_tiered_markup
from storefront.pricing.stores import currency_to_store_code, store_to_currency
from storefront.pricing.variants import resolve_price


def quote_line(product_id, option_ids, quantity, store):
    """
    Returns (PriceResolution, MarkupResult | None).
    The markup result is None on a local miss; the resolution says why.
    """
    currency = store_to_currency(store)
    resolution = resolve_price(product_id, option_ids, currency_to_store_code(currency))
    if not resolution.is_hit:
        return resolution, None

    sell = apply_tiered_markup(
        currency, quantity,
        unit_cost_cents=resolution.unit_price_cents,
        rules=MarkupRules.from_config(current_app.config),
    )
    return resolution, sell
