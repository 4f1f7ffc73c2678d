"""
storefront/admin/routes.py
--------------------------
Admin-only routes: loyalty balance adjustments and manual cart credits.
Every route requires the X-Admin-Token header.
"""
from flask import current_app, request

from storefront import db
from storefront.admin import admin
from storefront.auth.decorators import admin_required
from storefront.cart.models import Cart
from storefront.cart.service import LOYALTY_REASON, cart_summary, replace_credit
from storefront.errors import InvalidRequest, NotFound
from storefront.loyalty.rules import compute_loyalty
from storefront.loyalty.wallet import adjust_points
from storefront.utils.api import json_ok
from storefront.utils.money import to_int

CREDIT_REASONS = ('manual', 'promo', 'credit')


def _note(value):
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value[:500] or None


@admin.route('/loyalty/adjust', methods=['POST'])
@admin_required
def loyalty_adjust():
    """
    Body: {"targetUserId": "...", "points": -200, "note": "goodwill"}
    """
    body = request.get_json(silent=True) or {}
    target = str(body.get('targetUserId') or '').strip()
    points = to_int(body.get('points'), 0)
    if not target or points == 0:
        raise InvalidRequest('Invalid request')

    wallet = adjust_points(target, points, note=_note(body.get('note')))
    db.session.commit()

    current_app.logger.info(f"Admin loyalty adjust: user={target} delta={points} balance={wallet.points_balance}")
    return json_ok({'wallet': compute_loyalty(wallet.points_balance)})


@admin.route('/carts/<cart_id>/credits', methods=['POST'])
@admin_required
def cart_credit(cart_id):
    """
    Set a manual / promo credit on an open cart.
    Body: {"amountCents": 500, "reason": "manual", "note": "..."}
    An amount of 0 removes the credit for that reason.
    """
    cart = db.session.get(Cart, cart_id)
    if cart is None or not cart.is_open:
        raise NotFound('Cart not found.')

    body = request.get_json(silent=True) or {}
    amount = to_int(body.get('amountCents'), -1)
    reason = str(body.get('reason') or 'manual').strip().lower()
    if amount < 0:
        raise InvalidRequest('amountCents must be a non-negative integer.')
    if reason == LOYALTY_REASON or reason not in CREDIT_REASONS:
        raise InvalidRequest(f'reason must be one of: {", ".join(CREDIT_REASONS)}.')

    replace_credit(cart, amount, reason=reason, note=_note(body.get('note')))
    db.session.commit()

    current_app.logger.info(f"Admin cart credit: cart={cart.id} reason={reason} amount={amount}")
    return json_ok({'cart': cart_summary(cart)})
