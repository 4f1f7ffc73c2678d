"""
storefront/checkout/totals.py
-----------------------------
Single source of truth for cart money at checkout.

Credits are a discount: they are allocated over the lines and reduce the
taxable base. They are never subtracted a second time:

    total = net_subtotal + shipping + tax
    net_subtotal = subtotal - min(credits, subtotal)

Tax source, in order of preference:
    stripe_tax_calculation  the saved Stripe Tax calculation
    reconciled_from_total   backed out of the settled charge
    unknown                 neither available; tax is 0
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from storefront.cart.service import (
    credits_cents, ordered_lines, shipping_cents, subtotal_cents,
)
from storefront.checkout.allocation import (
    TaxableLine, allocate_discount_across_lines, net_taxable_lines,
)
from storefront.checkout.tax import reconcile_tax_from_total, retrieve_tax_amount

TAX_SOURCE_CALCULATION = 'stripe_tax_calculation'
TAX_SOURCE_RECONCILED  = 'reconciled_from_total'
TAX_SOURCE_UNKNOWN     = 'unknown'


@dataclass
class CartTotals:
    currency:           str
    subtotal_cents:     int
    credits_cents:      int
    discount_cents:     int
    net_subtotal_cents: int
    shipping_cents:     int
    tax_cents:          int
    tax_source:         str
    total_cents:        int
    allocation:         Dict[str, int] = field(default_factory=dict)
    lines:              list = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        return {
            'currency':         self.currency,
            'subtotalCents':    self.subtotal_cents,
            'creditsCents':     self.credits_cents,
            'discountCents':    self.discount_cents,
            'netSubtotalCents': self.net_subtotal_cents,
            'shippingCents':    self.shipping_cents,
            'taxCents':         self.tax_cents,
            'taxSource':        self.tax_source,
            'totalCents':       self.total_cents,
        }


def cart_taxable_lines(cart, lines=None):
    """
    Allocate the cart's credits over its lines (stable order) and return
    (taxable_lines, allocation).
    """
    lines = ordered_lines(cart) if lines is None else lines
    gross: List[TaxableLine] = [
        TaxableLine(
            reference=line.id,
            amount_cents=line.line_total_cents,
            quantity=line.quantity,
        )
        for line in lines
    ]
    allocation = allocate_discount_across_lines(gross, credits_cents(cart))
    return net_taxable_lines(gross, allocation), allocation


def compute_cart_totals(cart, settled_total_cents=None, tax_calculation_id=None,
                        api_key=None, api_version=None) -> CartTotals:
    """
    Full checkout totals for `cart`.

    `tax_calculation_id` is tried first; when the calculation can't be
    read, `settled_total_cents` (the amount Stripe actually charged) is
    reconciled instead.
    """
    lines = ordered_lines(cart)
    subtotal = subtotal_cents(lines)
    credits = credits_cents(cart)
    _, allocation = cart_taxable_lines(cart, lines)
    discount = sum(allocation.values())
    net = subtotal - discount
    shipping = shipping_cents(cart)

    tax, source = 0, TAX_SOURCE_UNKNOWN
    calc_tax = None
    if tax_calculation_id:
        calc_tax = retrieve_tax_amount(tax_calculation_id, api_key=api_key,
                                       api_version=api_version)
    if calc_tax is not None:
        tax, source = calc_tax, TAX_SOURCE_CALCULATION
    else:
        reconciled = reconcile_tax_from_total(settled_total_cents, net, shipping)
        if reconciled.reconciled_with_stripe:
            tax, source = reconciled.tax_cents, TAX_SOURCE_RECONCILED

    return CartTotals(
        currency=cart.currency,
        subtotal_cents=subtotal,
        credits_cents=credits,
        discount_cents=discount,
        net_subtotal_cents=net,
        shipping_cents=shipping,
        tax_cents=tax,
        tax_source=source,
        total_cents=net + shipping + tax,
        allocation=allocation,
        lines=lines,
    )
