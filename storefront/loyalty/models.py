from datetime import datetime
from storefront import db


class LoyaltyWallet(db.Model):
    """One points wallet per signed-in user."""
    __tablename__ = 'loyalty_wallets'

    id                = db.Column(db.Integer, primary_key=True)
    user_id           = db.Column(db.String(64), unique=True, nullable=False, index=True)
    points_balance    = db.Column(db.Integer, nullable=False, default=0)
    lifetime_earned   = db.Column(db.Integer, nullable=False, default=0)
    lifetime_redeemed = db.Column(db.Integer, nullable=False, default=0)
    created_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at        = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                  onupdate=datetime.utcnow)

    transactions = db.relationship('LoyaltyTransaction', backref='wallet', lazy='dynamic',
                                   cascade='all, delete-orphan')

    __table_args__ = (
        db.CheckConstraint('points_balance >= 0', name='check_wallet_balance_non_negative'),
    )

    def __repr__(self):
        return f"<LoyaltyWallet {self.user_id!r} {self.points_balance}pts>"


class LoyaltyTransaction(db.Model):
    """
    Ledger row for every balance change. `delta_points` is signed:
    positive for earn / credit adjustments, negative for redemptions.
    """
    __tablename__ = 'loyalty_transactions'

    id           = db.Column(db.Integer, primary_key=True)
    wallet_id    = db.Column(db.Integer, db.ForeignKey('loyalty_wallets.id'), nullable=False, index=True)
    delta_points = db.Column(db.Integer, nullable=False)
    reason       = db.Column(db.String(32), nullable=False)   # purchase | redeem | adjustment
    order_id     = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True, index=True)
    note         = db.Column(db.String(500), nullable=True)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'id':          self.id,
            'deltaPoints': self.delta_points,
            'reason':      self.reason,
            'orderId':     self.order_id,
            'note':        self.note,
            'createdAt':   self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<LoyaltyTransaction wallet={self.wallet_id} {self.delta_points:+d} {self.reason}>"
