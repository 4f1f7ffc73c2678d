"""
storefront/checkout/tax.py
--------------------------
Sales-tax adapter over Stripe Tax, plus post-hoc reconciliation.

create_tax_calculation()
    Shapes a Stripe Tax calculation request from NET (post-discount) line
    amounts plus shipping and pulls subtotal / tax / total out of the
    response. Jurisdiction and rate logic live entirely in Stripe. Call it
    before creating the PaymentIntent; the calculation id travels in the
    PaymentIntent metadata.

reconcile_tax_from_total()
    Used when the live calculation is unavailable (webhooks). Stripe is
    the source of truth for what was charged, so

        tax = settled_total - (net_subtotal + shipping)

    This assumes the settled total is exactly subtotal + shipping + tax.
    Any processor-side rounding or extra fee is attributed to tax.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field as dc_field
from typing import Any, List, Optional

import stripe

from storefront.checkout.allocation import TaxableLine
from storefront.checkout.stripe_client import field
from storefront.errors import InvalidAddress, NoTaxableLines
from storefront.utils.money import clamp_int

log = logging.getLogger(__name__)

MAX_REFERENCE_LEN = 64
TAX_BEHAVIORS = ('exclusive', 'inclusive')


@dataclass
class TaxAddress:
    country:     Optional[str] = None      # "US" | "CA" | ...
    postal_code: Optional[str] = None
    state:       Optional[str] = None      # state / province code
    city:        Optional[str] = None
    line1:       Optional[str] = None
    line2:       Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'TaxAddress':
        data = data or {}
        return cls(
            country=data.get('country'),
            postal_code=data.get('postalCode', data.get('postal_code', data.get('zip'))),
            state=data.get('state'),
            city=data.get('city'),
            line1=data.get('line1'),
            line2=data.get('line2'),
        )


@dataclass
class TaxCalculationResult:
    id:                    str
    amount_subtotal_cents: int
    tax_cents:             int
    amount_total_cents:    int
    raw:                   Any = dc_field(default=None, repr=False)

    def to_dict(self) -> dict:
        return {
            'taxCalculationId':    self.id,
            'amountSubtotalCents': self.amount_subtotal_cents,
            'taxCents':            self.tax_cents,
            'amountTotalCents':    self.amount_total_cents,
        }


@dataclass(frozen=True)
class ReconciledTax:
    tax_cents:              int
    reconciled_with_stripe: bool


# ── Request shaping ───────────────────────────────────────────────

def _norm_code(value) -> str:
    return str(value if value is not None else '').strip().upper()


def _text(value) -> str:
    return str(value if value is not None else '').strip()


def normalize_currency(currency) -> str:
    return 'cad' if _text(currency).lower() == 'cad' else 'usd'


def build_line_items(lines: List[TaxableLine]) -> List[dict]:
    """Stripe `line_items`; lines with a non-positive amount are dropped."""
    items = []
    for line in lines:
        amount = clamp_int(line.amount_cents, 0)
        if amount <= 0:
            continue
        behavior = line.tax_behavior if line.tax_behavior in TAX_BEHAVIORS else 'exclusive'
        item = {
            'reference':    str(line.reference)[:MAX_REFERENCE_LEN],
            'amount':       amount,
            'quantity':     max(1, clamp_int(line.quantity if line.quantity is not None else 1, 1)),
            'tax_behavior': behavior,
        }
        if line.tax_code:
            item['tax_code'] = str(line.tax_code)
        items.append(item)
    return items


def build_customer_address(address: TaxAddress) -> dict:
    """Stripe `customer_details.address`; raises InvalidAddress."""
    country = _norm_code(address.country)
    postal = _text(address.postal_code)
    if not country:
        raise InvalidAddress('Missing tax address country')
    if not postal:
        raise InvalidAddress('Missing tax address postalCode')

    out = {'country': country, 'postal_code': postal}
    state = _norm_code(address.state)
    if state:
        out['state'] = state
    for name in ('city', 'line1', 'line2'):
        value = _text(getattr(address, name))
        if value:
            out[name] = value
    return out


def build_calculation_params(currency, address: TaxAddress, lines: List[TaxableLine],
                             shipping_cents=0, shipping_tax_code=None,
                             expand_tax_breakdown=False) -> dict:
    customer_address = build_customer_address(address)

    line_items = build_line_items(lines)
    if not line_items:
        raise NoTaxableLines()

    params = {
        'currency': normalize_currency(currency),
        'line_items': line_items,
        'customer_details': {
            'address': customer_address,
            'address_source': 'shipping',
        },
    }

    shipping = clamp_int(shipping_cents or 0, 0)
    if shipping > 0:
        params['shipping_cost'] = {'amount': shipping, 'tax_behavior': 'exclusive'}
        if shipping_tax_code:
            params['shipping_cost']['tax_code'] = str(shipping_tax_code)

    if expand_tax_breakdown:
        params['expand'] = ['line_items.data.tax_breakdown']

    return params


# ── Stripe calls ──────────────────────────────────────────────────

def _request_opts(api_key, api_version) -> dict:
    opts = {}
    if api_key:
        opts['api_key'] = api_key
    if api_version:
        opts['stripe_version'] = api_version
    return opts


def create_tax_calculation(currency, address: TaxAddress, lines: List[TaxableLine],
                           shipping_cents=0, shipping_tax_code=None,
                           expand_tax_breakdown=False, api_key=None,
                           api_version=None) -> TaxCalculationResult:
    """
    Create a Stripe Tax calculation for the cart's net amounts.

    Raises InvalidAddress / NoTaxableLines before any network call.
    `api_key` / `api_version` are per-request Stripe options; when omitted
    the SDK globals apply.
    Stripe errors propagate to the caller.
    """
    params = build_calculation_params(
        currency, address, lines,
        shipping_cents=shipping_cents,
        shipping_tax_code=shipping_tax_code,
        expand_tax_breakdown=expand_tax_breakdown,
    )

    calculation = stripe.tax.Calculation.create(**params, **_request_opts(api_key, api_version))

    result = TaxCalculationResult(
        id=field(calculation, 'id'),
        amount_subtotal_cents=clamp_int(field(calculation, 'amount_subtotal'), 0),
        tax_cents=clamp_int(field(calculation, 'tax_amount_exclusive'), 0),
        amount_total_cents=clamp_int(field(calculation, 'amount_total'), 0),
        raw=calculation,
    )
    log.info("tax calculation %s: subtotal=%s tax=%s total=%s",
             result.id, result.amount_subtotal_cents, result.tax_cents,
             result.amount_total_cents)
    return result


def retrieve_tax_amount(calculation_id, api_key=None, api_version=None) -> Optional[int]:
    """
    Exclusive tax of a saved calculation, or None when it cannot be read
    (expired, unknown id, Stripe unavailable).
    """
    calc_id = _text(calculation_id)
    if not calc_id:
        return None
    try:
        calculation = stripe.tax.Calculation.retrieve(calc_id, **_request_opts(api_key, api_version))
    except stripe.StripeError as exc:
        log.warning("tax calculation retrieve failed for %s: %s", calc_id, exc)
        return None
    value = field(calculation, 'tax_amount_exclusive')
    if value is None:
        return None
    return clamp_int(value, 0)


# ── Reconciliation ────────────────────────────────────────────────

def reconcile_tax_from_total(settled_total_cents, net_subtotal_cents,
                             shipping_cents) -> ReconciledTax:
    """
    Back out tax from the settled charge total.

    A missing or non-finite total is the unknown state:
    ReconciledTax(0, reconciled_with_stripe=False). Callers check the flag
    before trusting the figure.
    """
    total = None
    if isinstance(settled_total_cents, (int, float)) and not isinstance(settled_total_cents, bool):
        if math.isfinite(settled_total_cents):
            total = max(0, int(round(settled_total_cents)))

    if total is None:
        return ReconciledTax(tax_cents=0, reconciled_with_stripe=False)

    expected_without_tax = clamp_int(net_subtotal_cents, 0) + clamp_int(shipping_cents, 0)
    return ReconciledTax(
        tax_cents=max(0, total - expected_without_tax),
        reconciled_with_stripe=True,
    )
