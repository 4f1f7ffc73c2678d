import uuid
from datetime import datetime
from storefront import db


def _uuid() -> str:
    return str(uuid.uuid4())


class Cart(db.Model):
    """
    A shopper's cart, keyed by the browser session id (sid).
    At most one cart per sid is open at a time; checkout closes it.
    """
    __tablename__ = 'carts'

    id                = db.Column(db.String(36), primary_key=True, default=_uuid)
    sid               = db.Column(db.String(64), nullable=False, index=True)
    user_id           = db.Column(db.String(64), nullable=True, index=True)
    status            = db.Column(db.String(16), nullable=False, default='open', index=True)
    currency          = db.Column(db.String(3),  nullable=False, default='USD')
    # {"carrier", "method", "cost" (dollars), "days", "country", "state", "zip"}
    # SQL NULL until the shopper picks a rate
    selected_shipping = db.Column(db.JSON, nullable=True)
    created_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                  onupdate=datetime.utcnow)

    # ── Relationships ─────────────────────────────────────────────
    lines   = db.relationship('CartLine', backref='cart', lazy='select',
                              cascade='all, delete-orphan',
                              order_by=lambda: [CartLine.position, CartLine.created_at, CartLine.id])
    credits = db.relationship('CartCredit', backref='cart', lazy='select',
                              cascade='all, delete-orphan')

    @property
    def is_open(self) -> bool:
        return self.status != 'closed'

    def __repr__(self):
        return f"<Cart {self.id} sid={self.sid!r} {self.status}>"


class CartLine(db.Model):
    """
    One configured product in a cart.
    Stores a cents pricing snapshot so checkout totals are deterministic;
    `id` is the stable line reference used for discount allocation.
    """
    __tablename__ = 'cart_lines'

    id               = db.Column(db.String(36), primary_key=True, default=_uuid)
    cart_id          = db.Column(db.String(36), db.ForeignKey('carts.id', ondelete='CASCADE'),
                                 nullable=False, index=True)
    position         = db.Column(db.Integer, nullable=False, default=0)
    product_id       = db.Column(db.Integer, nullable=False, index=True)
    quantity         = db.Column(db.Integer, nullable=False, default=1)
    option_ids       = db.Column(db.JSON,    nullable=False, default=list)
    variant_key      = db.Column(db.String(255), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency         = db.Column(db.String(3), nullable=False, default='USD')
    created_at       = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_cart_line_qty_positive'),
        db.CheckConstraint('line_total_cents >= 0', name='check_cart_line_total_non_negative'),
    )

    def retotal(self) -> None:
        """Recompute line_total_cents from the unit snapshot."""
        self.line_total_cents = max(0, int(self.unit_price_cents or 0)) * max(0, int(self.quantity or 0))

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'productId':      self.product_id,
            'quantity':       self.quantity,
            'optionIds':      list(self.option_ids or []),
            'variantKey':     self.variant_key,
            'unitPriceCents': self.unit_price_cents,
            'lineTotalCents': self.line_total_cents,
            'currency':       self.currency,
        }

    def __repr__(self):
        return f"<CartLine {self.id} product={self.product_id} qty={self.quantity}>"


class CartCredit(db.Model):
    """
    Credit applied to a cart (loyalty redemption, promo, manual).
    Credits are a discount: they reduce the taxable base.
    """
    __tablename__ = 'cart_credits'

    id           = db.Column(db.String(36), primary_key=True, default=_uuid)
    cart_id      = db.Column(db.String(36), db.ForeignKey('carts.id', ondelete='CASCADE'),
                             nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    reason       = db.Column(db.String(32), nullable=False, default='credit', index=True)
    note         = db.Column(db.String(300), nullable=True)
    # Loyalty points held by this credit; debited from the wallet on order placement
    points       = db.Column(db.Integer, nullable=False, default=0)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<CartCredit cart={self.cart_id} {self.reason} {self.amount_cents}c>"
