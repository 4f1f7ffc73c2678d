"""
storefront/orders/finalize.py
-----------------------------
Turn a paid cart into an Order, exactly once.

Idempotency
───────────
Stripe delivers webhooks at least once, and the same payment can arrive
as both `payment_intent.succeeded` and `checkout.session.completed`.
An order is therefore looked up by (provider, provider_id) first, then by
cart id, before anything is written. The unique constraints on those
columns catch the race where two deliveries pass the lookup together; the
loser rolls back and returns the winner's order.

Everything below happens in one transaction:
    order number (row-locked sequence, year of payment)
    Order + OrderItems (each with its allocated discount)
    loyalty: debit the held points the discount used, award earned points
    cart closed, cart credits deleted
"""
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from storefront import db
from storefront.cart.models import Cart, CartCredit
from storefront.cart.service import LOYALTY_REASON
from storefront.checkout.totals import compute_cart_totals
from storefront.loyalty.rules import earn_points_for_amount, points_spent_on_discount
from storefront.loyalty.wallet import award_points, debit_points
from storefront.orders.models import Order, OrderItem
from storefront.orders.numbering import next_order_number
from storefront.utils.money import clamp_int

log = logging.getLogger(__name__)


def find_existing_order(provider, provider_id, cart_id=None):
    if provider_id:
        order = Order.query.filter_by(provider=provider, provider_id=provider_id).first()
        if order is not None:
            return order
    if cart_id:
        return Order.query.filter_by(cart_id=cart_id).first()
    return None


def find_open_cart(cart_id=None, sid=None):
    """Open cart by id, falling back to the sid's newest open cart."""
    if cart_id:
        cart = Cart.query.filter(Cart.id == cart_id, Cart.status != 'closed').first()
        if cart is not None:
            return cart
    if sid:
        return (
            Cart.query
            .filter(Cart.sid == sid, Cart.status != 'closed')
            .order_by(Cart.created_at.desc())
            .first()
        )
    return None


def finalize_paid_order(provider, provider_id, cart_id=None, sid=None,
                        settled_total_cents=None, tax_calculation_id=None,
                        payment_status='paid', paid_at=None, api_key=None, api_version=None):
    """
    Write the order for a paid cart.

    `paid_at` is when the processor settled the payment; it becomes the
    order's placed_at and picks the order-number year (default: now).

    Returns (order, created). `order` is None when no open cart matches
    and no order exists yet; the caller decides how to answer.
    """
    existing = find_existing_order(provider, provider_id, cart_id)
    if existing is not None:
        log.info("order %s already recorded for %s %s", existing.order_number, provider, provider_id)
        return existing, False

    cart = find_open_cart(cart_id, sid)
    if cart is None:
        log.warning("no open cart for %s %s (cart=%s sid=%s)", provider, provider_id, cart_id, sid)
        return None, False

    existing = find_existing_order(provider, None, cart.id)
    if existing is not None:
        return existing, False

    totals = compute_cart_totals(
        cart,
        settled_total_cents=settled_total_cents,
        tax_calculation_id=tax_calculation_id,
        api_key=api_key,
        api_version=api_version,
    )

    cart_key = cart.id
    placed_at = paid_at or datetime.utcnow()

    try:
        order = Order(
            order_number       = next_order_number(db.session, placed_at),
            user_id            = cart.user_id,
            sid                = cart.sid,
            cart_id            = cart.id,
            status             = 'placed',
            payment_status     = payment_status,
            provider           = provider,
            provider_id        = provider_id,
            tax_calculation_id = tax_calculation_id,
            currency           = totals.currency,
            subtotal_cents     = totals.subtotal_cents,
            credits_cents      = totals.credits_cents,
            discount_cents     = totals.discount_cents,
            shipping_cents     = totals.shipping_cents,
            tax_cents          = totals.tax_cents,
            tax_source         = totals.tax_source,
            total_cents        = totals.total_cents,
            selected_shipping  = cart.selected_shipping,
            placed_at          = placed_at,
        )
        db.session.add(order)
        db.session.flush()   # assigns order.id without committing

        for line in totals.lines:
            db.session.add(OrderItem(
                order_id         = order.id,
                line_reference   = line.id,
                product_id       = line.product_id,
                quantity         = line.quantity,
                option_ids       = list(line.option_ids or []),
                variant_key      = line.variant_key,
                unit_price_cents = line.unit_price_cents,
                line_total_cents = line.line_total_cents,
                discount_cents   = totals.allocation.get(line.id, 0),
            ))

        # ── Loyalty ───────────────────────────────────────────────
        if cart.user_id:
            loyalty_credits = [c for c in cart.credits if c.reason == LOYALTY_REASON]
            loyalty_cents = sum(clamp_int(c.amount_cents) for c in loyalty_credits)
            spent = points_spent_on_discount(
                held_points=sum(clamp_int(c.points) for c in loyalty_credits),
                loyalty_credit_cents=loyalty_cents,
                other_credit_cents=totals.credits_cents - loyalty_cents,
                discount_cents=totals.discount_cents,
            )
            order.points_redeemed = debit_points(
                cart.user_id, spent, reason='redeem', order_id=order.id,
                note=f'Order {order.order_number}',
            )
            earned = earn_points_for_amount(totals.net_subtotal_cents, totals.currency)
            if earned > 0:
                award_points(cart.user_id, earned, reason='purchase', order_id=order.id,
                             note=f'Order {order.order_number}')
            order.points_earned = earned

        # ── Close the cart ────────────────────────────────────────
        cart.status = 'closed'
        CartCredit.query.filter_by(cart_id=cart.id).delete()

        db.session.commit()

    except IntegrityError as exc:
        db.session.rollback()
        log.warning("order insert raced for %s %s: %s", provider, provider_id, exc)
        existing = find_existing_order(provider, provider_id, cart_key)
        if existing is None:
            raise
        return existing, False

    log.info("order %s placed: cart=%s total=%s %s tax=%s (%s)",
             order.order_number, cart_key, order.total_cents, order.currency,
             order.tax_cents, order.tax_source)
    return order, True
