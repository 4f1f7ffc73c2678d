"""
storefront/cart/service.py
--------------------------
Helpers for the sid-keyed, database-backed cart.

The shopper is identified by a random `sid` kept in the Flask session.
Lines are always read in a stable order (position, created_at, id):
discount allocation gives its rounding remainder to the last line, so the
order must be reproducible between the tax preview, the payment intent and
the webhook.

All money is integer cents. Shipping is the one exception on the way in:
the chosen rate stores its cost in dollars and is converted here.
"""
import uuid

from flask import session
from sqlalchemy import func

from storefront import db
from storefront.auth.decorators import current_user_id
from storefront.cart.models import Cart, CartCredit, CartLine
from storefront.utils.money import clamp_int, dollars_to_cents


SID_KEY = 'sid'
LOYALTY_REASON = 'loyalty'


# ── Session ───────────────────────────────────────────────────────

def get_sid(create: bool = False):
    """Return the session's sid, minting one when `create` is set."""
    sid = session.get(SID_KEY)
    if not sid and create:
        sid = uuid.uuid4().hex
        session[SID_KEY] = sid
        session.modified = True
    return sid


# ── Read ──────────────────────────────────────────────────────────

def get_open_cart(sid, create: bool = False, currency: str = 'USD'):
    """The sid's open cart; optionally create it."""
    if not sid:
        return None
    cart = (
        Cart.query
        .filter(Cart.sid == sid, Cart.status != 'closed')
        .order_by(Cart.created_at.desc())
        .first()
    )
    if cart is None and create:
        cart = Cart(sid=sid, user_id=current_user_id(), currency=currency, status='open')
        db.session.add(cart)
        db.session.flush()
    return cart


def ordered_lines(cart) -> list:
    return (
        CartLine.query
        .filter(CartLine.cart_id == cart.id)
        .order_by(CartLine.position, CartLine.created_at, CartLine.id)
        .all()
    )


def subtotal_cents(lines) -> int:
    """Sum of line totals, before credits."""
    return sum(clamp_int(line.line_total_cents) for line in lines)


def credits_cents(cart) -> int:
    """Sum of all credits on the cart, computed in SQL."""
    total = (
        db.session.query(func.coalesce(func.sum(CartCredit.amount_cents), 0))
        .filter(CartCredit.cart_id == cart.id)
        .scalar()
    )
    return clamp_int(total)


def shipping_cents(cart) -> int:
    """Chosen shipping cost in cents; 0 when nothing is chosen."""
    chosen = cart.selected_shipping
    if not isinstance(chosen, dict):
        return 0
    return dollars_to_cents(chosen.get('cost', 0))


def shipping_destination(cart) -> dict:
    """Destination captured with the chosen shipping rate (may be empty)."""
    chosen = cart.selected_shipping if isinstance(cart.selected_shipping, dict) else {}
    return {
        'country':     chosen.get('country'),
        'state':       chosen.get('state'),
        'postal_code': chosen.get('zip'),
    }


# ── Write ─────────────────────────────────────────────────────────

def add_line(cart, product_id: int, option_ids: list, quantity: int,
             unit_price_cents: int, variant_key: str) -> CartLine:
    """Append a priced line at the end of the cart."""
    next_pos = (
        db.session.query(func.coalesce(func.max(CartLine.position), -1))
        .filter(CartLine.cart_id == cart.id)
        .scalar()
    ) + 1
    line = CartLine(
        cart_id=cart.id,
        position=next_pos,
        product_id=product_id,
        quantity=quantity,
        option_ids=list(option_ids),
        variant_key=variant_key,
        unit_price_cents=unit_price_cents,
        currency=cart.currency,
    )
    line.retotal()
    db.session.add(line)
    db.session.flush()
    return line


def set_line_quantity(line, quantity: int) -> None:
    line.quantity = quantity
    line.retotal()


def replace_credit(cart, amount_cents: int, reason: str = LOYALTY_REASON,
                   note: str = None, points: int = 0) -> int:
    """
    Keep exactly one credit row for `reason` on the cart.
    Returns the cart's new credits total.
    """
    CartCredit.query.filter_by(cart_id=cart.id, reason=reason).delete()
    if amount_cents > 0:
        db.session.add(CartCredit(
            cart_id=cart.id,
            amount_cents=amount_cents,
            reason=reason,
            note=note,
            points=points,
        ))
    db.session.flush()
    return credits_cents(cart)


# ── Totals ────────────────────────────────────────────────────────

def cart_summary(cart) -> dict:
    """
    Display totals for the cart. Tax is not known until checkout, so
    totalCents here is net subtotal + shipping.
    """
    from storefront.checkout.allocation import AllocationLine, allocate_discount_across_lines

    lines = ordered_lines(cart)
    subtotal = subtotal_cents(lines)
    credits  = credits_cents(cart)
    discount = sum(allocate_discount_across_lines(
        [AllocationLine(line.id, line.line_total_cents) for line in lines], credits,
    ).values())
    shipping = shipping_cents(cart)
    return {
        'cartId':           cart.id,
        'currency':         cart.currency,
        'lines':            [line.to_dict() for line in lines],
        'subtotalCents':    subtotal,
        'creditsCents':     credits,
        'discountCents':    discount,
        'netSubtotalCents': subtotal - discount,
        'shippingCents':    shipping,
        'selectedShipping': cart.selected_shipping,
        'totalCents':       subtotal - discount + shipping,
    }
