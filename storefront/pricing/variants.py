"""
storefront/pricing/variants.py
------------------------------
Line pricing resolver.

A configured product is identified by its set of vendor option ids. The
canonical variant key is those ids de-duplicated, sorted numerically and
joined with "-"; the same key format the vendor's own variant listing
uses (e.g. "5-140-447-448").

resolve_price() answers from the locally synced ProductVariant table only.
A miss is reported as a structured result (source="miss" plus a reason)
so the caller decides whether to go to the vendor live or fail; nothing
here retries.

build_pricing_index() keys a raw vendor pricing matrix the same way; the
`flask import-variants` command loads its output into ProductVariant.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from storefront.utils.money import dollars_to_cents, to_int

log = logging.getLogger(__name__)

KEY_SEPARATOR = '-'

SOURCE_LOCAL = 'local'
SOURCE_MISS  = 'miss'

REASON_NO_LOCAL_PRICE  = 'no_local_variant_price'
REASON_NO_OPTIONS      = 'no_options'
REASON_INVALID_PRODUCT = 'invalid_product'


# ── Keys ──────────────────────────────────────────────────────────

def _as_option_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    return math.trunc(n)


def normalize_option_ids(option_ids) -> List[int]:
    """Numeric, de-duplicated, ascending option ids. Junk entries are dropped."""
    if isinstance(option_ids, dict):
        option_ids = list(option_ids.values())
    if not isinstance(option_ids, (list, tuple, set)):
        return []
    ids = {_as_option_id(x) for x in option_ids}
    ids.discard(None)
    return sorted(ids)


def variant_key(option_ids) -> str:
    """[448, 5, 140, 447] → "5-140-447-448"; empty input → ""."""
    return KEY_SEPARATOR.join(str(i) for i in normalize_option_ids(option_ids))


# ── Local table lookup ────────────────────────────────────────────

@dataclass
class PriceResolution:
    """Outcome of pricing one configured product."""
    product_id:       int
    key:              str
    source:           str                  # "local" | "miss"
    unit_price_cents: Optional[int] = None
    reason:           Optional[str] = None

    @property
    def is_hit(self) -> bool:
        return self.source == SOURCE_LOCAL

    def to_dict(self) -> dict:
        out = {
            'productId': self.product_id,
            'key':       self.key,
            'source':    self.source,
            'unitPriceCents': self.unit_price_cents,
        }
        if self.reason:
            out['reason'] = self.reason
        return out


def resolve_price(product_id, option_ids, store_code: str) -> PriceResolution:
    """
    Look up the synced unit price for (product, store code, variant key).

    Returns PriceResolution(source="local") on a hit, otherwise
    PriceResolution(source="miss", reason=...). Never raises for a miss.
    """
    from storefront.pricing.models import ProductVariant

    pid = to_int(product_id, 0)
    key = variant_key(option_ids)

    if pid <= 0:
        return PriceResolution(pid, key, SOURCE_MISS, reason=REASON_INVALID_PRODUCT)
    if not key:
        return PriceResolution(pid, key, SOURCE_MISS, reason=REASON_NO_OPTIONS)

    row = ProductVariant.query.filter_by(
        product_id=pid, store_code=store_code, key=key
    ).first()

    cents = row.price_cents if row is not None else None
    if cents is None:
        log.info("variant price miss product=%s store=%s key=%s", pid, store_code, key)
        return PriceResolution(pid, key, SOURCE_MISS, reason=REASON_NO_LOCAL_PRICE)

    return PriceResolution(pid, key, SOURCE_LOCAL, unit_price_cents=cents)


# ── Vendor pricing-matrix index ───────────────────────────────────

@dataclass
class PricingHit:
    price:        float              # vendor price, dollars
    package_info: Optional[dict] = None

    @property
    def price_cents(self) -> int:
        return dollars_to_cents(self.price)


# Keys a matrix row may carry its option ids under, in priority order
_OPTION_FIELDS = ('productOptions', 'options', 'optionIds', 'combo', 'combination')


def _ids_from_row(row: dict) -> List[int]:
    for field in _OPTION_FIELDS:
        if field in row:
            return normalize_option_ids(row[field])
    response = row.get('response')
    if isinstance(response, dict) and 'productOptions' in response:
        return normalize_option_ids(response['productOptions'])
    return []


def _price_from_row(row: dict) -> Optional[float]:
    price2 = row.get('price2') if isinstance(row.get('price2'), dict) else {}
    response = row.get('response') if isinstance(row.get('response'), dict) else {}
    for candidate in (row.get('price'), price2.get('price'), response.get('price')):
        try:
            n = float(candidate)
        except (TypeError, ValueError):
            continue
        if math.isfinite(n):
            return n
    return None


def _package_from_row(row: dict):
    if 'packageInfo' in row:
        return row['packageInfo']
    response = row.get('response')
    if isinstance(response, dict):
        return response.get('packageInfo')
    return None


def build_pricing_index(rows: Iterable) -> Dict[str, PricingHit]:
    """
    Index vendor pricing-matrix rows by canonical variant key.
    Rows without option ids or without a usable price are skipped.
    """
    index: Dict[str, PricingHit] = {}
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        ids = _ids_from_row(row)
        if not ids:
            continue
        price = _price_from_row(row)
        if price is None:
            continue
        index[variant_key(ids)] = PricingHit(price=price, package_info=_package_from_row(row))
    return index
