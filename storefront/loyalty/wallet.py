"""
storefront/loyalty/wallet.py
----------------------------
Wallet balance changes. None of these commit: callers own the
transaction, so a balance change and the order / credit it belongs to
land together.

Redeemed points are *held* on the cart's loyalty credit
(CartCredit.points) and only debited when the order is placed. The
spendable balance is therefore balance minus points held on open carts.
"""
from sqlalchemy import func

from storefront import db
from storefront.cart.models import Cart, CartCredit
from storefront.cart.service import LOYALTY_REASON
from storefront.errors import InvalidRequest
from storefront.loyalty.models import LoyaltyTransaction, LoyaltyWallet
from storefront.utils.money import clamp_int

MAX_ADJUST_POINTS = 1_000_000


def get_wallet(user_id, create: bool = False, lock: bool = False):
    """The user's wallet; optionally created, optionally row-locked (FOR UPDATE)."""
    if not user_id:
        return None
    query = LoyaltyWallet.query.filter(LoyaltyWallet.user_id == user_id)
    if lock:
        query = query.with_for_update()
    wallet = query.first()
    if wallet is None and create:
        wallet = LoyaltyWallet(user_id=user_id, points_balance=0,
                               lifetime_earned=0, lifetime_redeemed=0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def held_points(user_id, exclude_cart_id=None) -> int:
    """Points held by loyalty credits on the user's open carts."""
    query = (
        db.session.query(func.coalesce(func.sum(CartCredit.points), 0))
        .join(Cart, Cart.id == CartCredit.cart_id)
        .filter(Cart.user_id == user_id,
                Cart.status != 'closed',
                CartCredit.reason == LOYALTY_REASON)
    )
    if exclude_cart_id:
        query = query.filter(Cart.id != exclude_cart_id)
    return clamp_int(query.scalar())


def _record(wallet, delta, reason, order_id=None, note=None):
    db.session.add(LoyaltyTransaction(
        wallet_id=wallet.id,
        delta_points=delta,
        reason=reason,
        order_id=order_id,
        note=note,
    ))


def award_points(user_id, points, reason='purchase', order_id=None, note=None):
    """Add points; a non-positive amount is a no-op. Returns the wallet."""
    points = clamp_int(points)
    if not user_id or points <= 0:
        return get_wallet(user_id)
    wallet = get_wallet(user_id, create=True, lock=True)
    wallet.points_balance  += points
    wallet.lifetime_earned += points
    _record(wallet, points, reason, order_id, note)
    db.session.flush()
    return wallet


def debit_points(user_id, points, reason='redeem', order_id=None, note=None) -> int:
    """
    Remove up to `points`, never below zero. Returns the points actually
    debited.
    """
    points = clamp_int(points)
    if not user_id or points <= 0:
        return 0
    wallet = get_wallet(user_id, create=True, lock=True)
    debited = min(points, clamp_int(wallet.points_balance))
    if debited <= 0:
        return 0
    wallet.points_balance    -= debited
    wallet.lifetime_redeemed += debited
    _record(wallet, -debited, reason, order_id, note)
    db.session.flush()
    return debited


def adjust_points(user_id, delta, note=None):
    """
    Admin balance adjustment. Raises InvalidRequest for a zero or absurd
    delta, or one that would take the balance below zero.
    """
    delta = int(delta)
    if delta == 0 or abs(delta) > MAX_ADJUST_POINTS:
        raise InvalidRequest('points must be a non-zero integer within ±1,000,000.')

    wallet = get_wallet(user_id, create=True, lock=True)
    new_balance = clamp_int(wallet.points_balance) + delta
    if new_balance < 0:
        raise InvalidRequest('Insufficient balance', code='insufficient_points')

    wallet.points_balance     = new_balance
    wallet.lifetime_earned   += max(delta, 0)
    wallet.lifetime_redeemed += max(-delta, 0)
    _record(wallet, delta, 'adjustment', note=note)
    db.session.flush()
    return wallet
