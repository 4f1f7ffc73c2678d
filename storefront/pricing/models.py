"""
storefront/pricing/models.py
----------------------------
Locally synced vendor variant prices.

One row per (product, store code, canonical variant key). Rows are written
by the variant import (flask import-variants) and only read while pricing
carts, so concurrent readers never contend.
"""
from datetime import datetime
from decimal import Decimal
from storefront import db
from storefront.utils.money import dollars_to_cents


class ProductVariant(db.Model):
    __tablename__ = 'product_variants'

    product_id   = db.Column(db.Integer,    primary_key=True)
    store_code   = db.Column(db.String(8),  primary_key=True)    # en_us | en_ca
    key          = db.Column(db.String(255), primary_key=True)   # "5-140-447-448"
    option_ids   = db.Column(db.JSON,       nullable=False, default=list)
    price        = db.Column(db.Numeric(12, 2), nullable=True)   # vendor price, dollars
    package_info = db.Column(db.JSON,       nullable=True)
    updated_at   = db.Column(
        db.DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    __table_args__ = (
        db.Index('ix_product_variants_product_store', 'product_id', 'store_code'),
    )

    @property
    def price_cents(self):
        """Vendor price in cents, or None when the row carries no price."""
        if self.price is None:
            return None
        return dollars_to_cents(Decimal(str(self.price)))

    def __repr__(self):
        return f"<ProductVariant {self.product_id}/{self.store_code} {self.key!r} {self.price}>"
