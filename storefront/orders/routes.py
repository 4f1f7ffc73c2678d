from flask import request

from storefront import db
from storefront.auth.decorators import current_user_id, login_required
from storefront.cart.service import get_sid
from storefront.errors import NotFound
from storefront.orders import orders
from storefront.orders.models import Order
from storefront.utils.api import json_ok
from storefront.utils.money import to_int


def _owns(order) -> bool:
    sid = get_sid()
    user_id = current_user_id()
    if sid and order.sid == sid:
        return True
    return bool(user_id) and order.user_id == user_id


@orders.route('/')
@login_required
def my_orders():
    """The signed-in user's orders, newest first. ?limit=1..100 (default 20)."""
    limit = max(1, min(100, to_int(request.args.get('limit', 20), 20)))
    rows = (
        Order.query
        .filter(Order.user_id == current_user_id())
        .order_by(Order.placed_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )
    return json_ok({'orders': [
        {
            'id':          o.id,
            'orderNumber': o.order_number,
            'status':      o.status,
            'totalCents':  o.total_cents,
            'currency':    o.currency,
            'placedAt':    o.placed_at.isoformat() if o.placed_at else None,
        }
        for o in rows
    ]})


@orders.route('/<int:order_id>')
def detail(order_id):
    """Order summary; only visible to the session or user that placed it."""
    order = db.session.get(Order, order_id)
    if order is None or not _owns(order):
        raise NotFound('Order not found.')
    return json_ok({'order': order.to_dict()})
