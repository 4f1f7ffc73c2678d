from datetime import datetime
from storefront import db

PROVIDER_STRIPE = 'stripe'
PROVIDER_FREE   = 'free'


class OrderSequence(db.Model):
    """
    One row per calendar year holding the last-used order sequence number.

    COUNT(orders) inside a transaction is not safe under concurrent
    webhooks: two deliveries can read the same count and mint the same
    number. With this row and SELECT FOR UPDATE the increments serialise:

        Tx A: locks row, reads last_seq=15, writes 16, commits  ┐ serialised
        Tx B: blocks until Tx A commits, reads 16, writes 17    ┘
    """
    __tablename__ = 'order_sequences'

    year     = db.Column(db.Integer, primary_key=True)   # e.g. 2026
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<OrderSequence year={self.year} last_seq={self.last_seq}>"


class Order(db.Model):
    """
    A paid (or free) order, written once from a cart.
    All amounts are integer cents; total = net subtotal + shipping + tax.
    """
    __tablename__ = 'orders'

    id                 = db.Column(db.Integer, primary_key=True)
    order_number       = db.Column(db.String(20), unique=True, nullable=False, index=True)
    user_id            = db.Column(db.String(64), nullable=True, index=True)
    sid                = db.Column(db.String(64), nullable=True, index=True)
    cart_id            = db.Column(db.String(36), unique=True, nullable=False)
    status             = db.Column(db.String(20), nullable=False, default='placed')
    payment_status     = db.Column(db.String(20), nullable=False, default='paid')
    provider           = db.Column(db.String(20), nullable=False)      # stripe | free
    provider_id        = db.Column(db.String(255), nullable=False)     # PaymentIntent id
    tax_calculation_id = db.Column(db.String(255), nullable=True)
    currency           = db.Column(db.String(3),  nullable=False, default='USD')
    subtotal_cents     = db.Column(db.Integer, nullable=False, default=0)
    credits_cents      = db.Column(db.Integer, nullable=False, default=0)
    discount_cents     = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents     = db.Column(db.Integer, nullable=False, default=0)
    tax_cents          = db.Column(db.Integer, nullable=False, default=0)
    tax_source         = db.Column(db.String(32), nullable=False, default='unknown')
    total_cents        = db.Column(db.Integer, nullable=False, default=0)
    selected_shipping  = db.Column(db.JSON, nullable=True)
    points_redeemed    = db.Column(db.Integer, nullable=False, default=0)
    points_earned      = db.Column(db.Integer, nullable=False, default=0)
    placed_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # ── Relationships ─────────────────────────────────────────────
    items = db.relationship('OrderItem', backref='order', lazy='select',
                            cascade='all, delete-orphan', order_by='OrderItem.id')

    __table_args__ = (
        db.UniqueConstraint('provider', 'provider_id', name='uq_orders_provider_id'),
    )

    def to_dict(self) -> dict:
        return {
            'id':               self.id,
            'orderNumber':      self.order_number,
            'status':           self.status,
            'paymentStatus':    self.payment_status,
            'provider':         self.provider,
            'currency':         self.currency,
            'subtotalCents':    self.subtotal_cents,
            'creditsCents':     self.credits_cents,
            'discountCents':    self.discount_cents,
            'shippingCents':    self.shipping_cents,
            'taxCents':         self.tax_cents,
            'taxSource':        self.tax_source,
            'totalCents':       self.total_cents,
            'selectedShipping': self.selected_shipping,
            'pointsRedeemed':   self.points_redeemed,
            'pointsEarned':     self.points_earned,
            'placedAt':         self.placed_at.isoformat() if self.placed_at else None,
            'items':            [item.to_dict() for item in self.items],
        }

    def __repr__(self):
        return f"<Order {self.order_number!r} {self.total_cents}c {self.currency}>"


class OrderItem(db.Model):
    """
    One line of an Order: a snapshot of the cart line plus the share of
    the cart's credits allocated to it.
    """
    __tablename__ = 'order_items'

    id               = db.Column(db.Integer, primary_key=True)
    order_id         = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    line_reference   = db.Column(db.String(36), nullable=False)   # CartLine.id
    product_id       = db.Column(db.Integer, nullable=False)
    quantity         = db.Column(db.Integer, nullable=False)
    option_ids       = db.Column(db.JSON,    nullable=False, default=list)
    variant_key      = db.Column(db.String(255), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    discount_cents   = db.Column(db.Integer, nullable=False, default=0)

    @property
    def net_cents(self) -> int:
        return self.line_total_cents - self.discount_cents

    def to_dict(self) -> dict:
        return {
            'lineReference':  self.line_reference,
            'productId':      self.product_id,
            'quantity':       self.quantity,
            'optionIds':      list(self.option_ids or []),
            'variantKey':     self.variant_key,
            'unitPriceCents': self.unit_price_cents,
            'lineTotalCents': self.line_total_cents,
            'discountCents':  self.discount_cents,
            'netCents':       self.net_cents,
        }
