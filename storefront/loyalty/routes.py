from flask import current_app, request

from storefront import db
from storefront.auth.decorators import current_user_id, login_required
from storefront.cart.service import (
    LOYALTY_REASON, cart_summary, get_open_cart, get_sid, ordered_lines,
    replace_credit, subtotal_cents,
)
from storefront.errors import InvalidRequest, NotFound
from storefront.loyalty import loyalty
from storefront.loyalty.models import LoyaltyTransaction
from storefront.loyalty.rules import (
    REDEEM_INCREMENT, REDEEM_MIN_POINTS, REDEEM_POINTS_PER_UNIT,
    compute_loyalty, credit_cents_to_points, is_valid_redeem_request,
    normalize_redeem_points, points_to_credit_cents,
)
from storefront.loyalty.wallet import get_wallet, held_points
from storefront.utils.api import json_ok
from storefront.utils.money import to_int


def _snapshot(user_id) -> dict:
    wallet  = get_wallet(user_id)
    balance = wallet.points_balance if wallet else 0
    held    = held_points(user_id)
    snap = compute_loyalty(balance)
    snap.update({
        'lifetimeEarned':   wallet.lifetime_earned if wallet else 0,
        'lifetimeRedeemed': wallet.lifetime_redeemed if wallet else 0,
        'heldPoints':       held,
        'availablePoints':  max(0, balance - held),
    })
    return snap


# ── WALLET ────────────────────────────────────────────────────────

@loyalty.route('/')
@login_required
def wallet():
    return json_ok({
        'wallet': _snapshot(current_user_id()),
        'rules': {
            'redeemMinPoints':     REDEEM_MIN_POINTS,
            'redeemIncrement':     REDEEM_INCREMENT,
            'redeemPointsPerUnit': REDEEM_POINTS_PER_UNIT,
        },
    })


@loyalty.route('/history')
@login_required
def history():
    """Latest ledger rows, newest first. ?limit=1..100 (default 50)."""
    limit = max(1, min(100, to_int(request.args.get('limit', 50), 50)))
    w = get_wallet(current_user_id())
    rows = []
    if w is not None:
        rows = (
            w.transactions
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
            .limit(limit)
            .all()
        )
    return json_ok({'transactions': [r.to_dict() for r in rows]})


# ── REDEEM ────────────────────────────────────────────────────────

@loyalty.route('/redeem', methods=['POST'])
@login_required
def redeem():
    """
    Turn points into a credit on the current cart.
    Body: {"points": 200}

    Points must be >= the minimum and a multiple of the increment. The
    redemption is bounded by the spendable balance and clamped down so the
    credit never exceeds the cart subtotal. Points are held on the cart and
    debited when the order is placed; redeeming again replaces the hold.
    """
    user_id = current_user_id()
    body = request.get_json(silent=True) or {}
    requested = to_int(body.get('points'), 0)
    if not is_valid_redeem_request(requested):
        raise InvalidRequest(
            f'Invalid points. Min {REDEEM_MIN_POINTS}, multiples of {REDEEM_INCREMENT}.',
            code='invalid_points',
        )

    cart = get_open_cart(get_sid())
    if cart is None:
        raise NotFound('Cart not found.')
    # held points are debited from the cart owner at order placement
    cart.user_id = user_id

    w = get_wallet(user_id)
    balance = w.points_balance if w else 0
    available = max(0, balance - held_points(user_id, exclude_cart_id=cart.id))
    if requested > available:
        raise InvalidRequest('Insufficient points.', code='insufficient_points')

    cap = normalize_redeem_points(credit_cents_to_points(subtotal_cents(ordered_lines(cart))))
    points = min(requested, cap)
    if points <= 0:
        raise InvalidRequest('Cart total is too small to redeem points.', code='cart_too_small')

    credit = points_to_credit_cents(points)
    replace_credit(cart, credit, reason=LOYALTY_REASON,
                   note=f'Redeemed {points} points', points=points)
    db.session.commit()

    current_app.logger.info(f"Loyalty hold: user={user_id} cart={cart.id} points={points} credit={credit}")
    return json_ok({
        'redeemedPoints': points,
        'creditCents':    credit,
        'wallet':         _snapshot(user_id),
        'cart':           cart_summary(cart),
    })


@loyalty.route('/redeem', methods=['DELETE'])
@login_required
def release():
    """Drop the loyalty credit from the current cart; held points are released."""
    cart = get_open_cart(get_sid())
    if cart is None:
        raise NotFound('Cart not found.')
    replace_credit(cart, 0, reason=LOYALTY_REASON)
    db.session.commit()
    return json_ok({'wallet': _snapshot(current_user_id()), 'cart': cart_summary(cart)})
