"""
storefront/checkout/allocation.py
---------------------------------
Pure-Python discount allocation.

Store credits are a discount: they lower the taxable base, so before
asking the tax service for a calculation the discount has to be spread
over the cart lines.

Algorithm
─────────
1. Drop lines without a reference or with an amount <= 0.
2. applied = min(discount, subtotal). Nothing to do if applied <= 0.
3. Every line except the last gets floor(applied * amount / subtotal).
4. The last line gets applied - (sum of the others), so the allocation
   adds up to `applied` exactly despite the truncation in step 3.
5. Each share is clamped to [0, line amount].
6. When the clamp cut the last line short, the shortfall is handed to
   the earlier lines, last to first, up to each line's remaining amount.

Because the last line absorbs the rounding remainder, the result depends
on line order. Callers pass lines in the cart's stable order.

    lines A=1000, B=2000, C=3000, discount 100
      A: floor(100 * 1000 / 6000) = 16
      B: floor(100 * 2000 / 6000) = 33
      C: 100 - 49                 = 51

No DB access here.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from storefront.utils.money import clamp_int


@dataclass(frozen=True)
class AllocationLine:
    """A line as the allocator sees it: a reference and its total in cents."""
    reference:    str
    amount_cents: int


@dataclass(frozen=True)
class TaxableLine:
    """
    Net (post-discount) amount for one line, ready for the tax service.
    `amount_cents` is the line total, not a unit price.
    """
    reference:    str
    amount_cents: int
    quantity:     int = 1
    tax_code:     Optional[str] = None
    tax_behavior: str = 'exclusive'     # "exclusive" | "inclusive"


def _normalize(lines: Iterable) -> List[AllocationLine]:
    out = []
    for line in lines:
        if isinstance(line, Mapping):
            ref, amount = line.get('reference'), line.get('amount_cents')
        else:
            ref, amount = line.reference, line.amount_cents
        ref = '' if ref is None else str(ref)
        amount = clamp_int(amount, 0)
        if ref and amount > 0:
            out.append(AllocationLine(ref, amount))
    return out


def allocate_discount_across_lines(lines: Iterable, discount_cents) -> Dict[str, int]:
    """
    Spread `discount_cents` over `lines` proportionally to their amounts.

    `lines` are AllocationLine / TaxableLine objects or dicts with
    `reference` and `amount_cents`. Returns {reference: allocated_cents};
    an empty dict when there is nothing to allocate.
    """
    discount = clamp_int(discount_cents, 0)
    eligible = _normalize(lines)

    subtotal = sum(l.amount_cents for l in eligible)
    applied = min(discount, subtotal)

    if applied <= 0 or subtotal <= 0 or not eligible:
        return {}

    allocation: Dict[str, int] = {}
    used = 0
    last = len(eligible) - 1

    for i, line in enumerate(eligible):
        if i == last:
            share = applied - used
        else:
            share = (applied * line.amount_cents) // subtotal

        share = max(0, min(share, line.amount_cents))
        allocation[line.reference] = share
        used += share

    # the last line was clamped: hand what it could not take to earlier lines
    leftover = applied - used
    for line in reversed(eligible[:last]):
        if leftover <= 0:
            break
        extra = min(leftover, line.amount_cents - allocation[line.reference])
        allocation[line.reference] += extra
        leftover -= extra

    return allocation


def net_taxable_lines(lines: Iterable, allocation: Mapping[str, int]) -> List[TaxableLine]:
    """
    Subtract each line's allocated discount; lines that net to <= 0 are
    dropped. Quantity / tax code / behaviour carry over from TaxableLine
    inputs.
    """
    out: List[TaxableLine] = []
    for line in lines:
        if isinstance(line, Mapping):
            line = TaxableLine(
                reference=str(line.get('reference') or ''),
                amount_cents=clamp_int(line.get('amount_cents'), 0),
                quantity=max(1, clamp_int(line.get('quantity', 1), 1)),
                tax_code=line.get('tax_code'),
                tax_behavior=line.get('tax_behavior') or 'exclusive',
            )
        elif not isinstance(line, TaxableLine):
            line = TaxableLine(reference=str(line.reference),
                               amount_cents=clamp_int(line.amount_cents, 0))

        if not line.reference:
            continue
        net = clamp_int(line.amount_cents, 0) - allocation.get(line.reference, 0)
        if net <= 0:
            continue
        out.append(TaxableLine(
            reference=line.reference,
            amount_cents=net,
            quantity=line.quantity,
            tax_code=line.tax_code,
            tax_behavior=line.tax_behavior,
        ))
    return out
