"""
storefront/pricing/markup.py
----------------------------
Tiered sell-price markup over vendor cost.

Tiers are chosen by quantity. Each tier has a multiplier and an optional
minimum-margin floor; the floor guarantees

    sell >= ceil(cost / (1 - floor_pct))

Markup is applied either to the whole line (default; the unit price is
then derived as round(line / qty) and the line re-derived as unit * qty so
the two always agree) or per unit.

Optional ".99" charm pricing rounds any price of $10.00 or more up to the
next NN.99.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import List, Optional

from storefront.pricing.stores import CA, currency_to_store
from storefront.utils.money import clamp_int


@dataclass
class Tier:
    min:       int
    max:       Optional[int]
    mult:      float
    floor_pct: Optional[float] = None

    def covers(self, qty: int) -> bool:
        hi = math.inf if self.max is None else self.max
        return self.min <= qty <= hi


@dataclass
class MarkupResult:
    unit_sell_cents: int
    line_sell_cents: int


def _clamp_floor(value) -> float:
    return max(0.0, min(0.95, float(value)))


def parse_tiers(raw, fallback_mult: float) -> List[Tier]:
    """Parse a JSON tier list; malformed input yields no tiers."""
    try:
        data = json.loads(raw) if isinstance(raw, str) else (raw or [])
    except ValueError:
        return []
    if not isinstance(data, list):
        return []

    tiers = []
    for t in data:
        if not isinstance(t, dict):
            continue
        try:
            lo = max(1, int(t.get('min', 1)))
            hi = None if t.get('max') is None else max(int(t['max']), 1)
            mult = float(t.get('mult', fallback_mult))
            floor = t.get('floorPct')
            floor = None if floor is None else _clamp_floor(floor)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(mult):
            continue
        tiers.append(Tier(min=lo, max=hi, mult=mult, floor_pct=floor))

    tiers.sort(key=lambda t: t.min)
    return tiers


@dataclass
class MarkupRules:
    """Per-store markup configuration."""
    mult_us:     float = 1.6
    mult_ca:     float = 1.6
    tiers_us:    List[Tier] = field(default_factory=list)
    tiers_ca:    List[Tier] = field(default_factory=list)
    min_margin:  float = 0.0
    apply_level: str = 'line'     # "line" | "unit"
    use_charm:   bool = False

    @classmethod
    def from_config(cls, cfg) -> 'MarkupRules':
        mult_us = float(cfg.get('MARKUP_MULTIPLIER_US', 1.6))
        mult_ca = float(cfg.get('MARKUP_MULTIPLIER_CA', 1.6))
        level = str(cfg.get('MARKUP_APPLY_LEVEL', 'line')).lower()
        return cls(
            mult_us=mult_us,
            mult_ca=mult_ca,
            tiers_us=parse_tiers(cfg.get('MARKUP_TIERS_US'), mult_us),
            tiers_ca=parse_tiers(cfg.get('MARKUP_TIERS_CA'), mult_ca),
            min_margin=_clamp_floor(cfg.get('MIN_MARGIN_PCT', 0) or 0),
            apply_level='unit' if level == 'unit' else 'line',
            use_charm=bool(cfg.get('MARKUP_USE_DOT_99', False)),
        )

    def fallback_mult(self, store: str) -> float:
        return self.mult_ca if store == CA else self.mult_us

    def pick_tier(self, store: str, qty: int) -> Tier:
        tiers = self.tiers_ca if store == CA else self.tiers_us
        for t in tiers:
            if t.covers(qty):
                return t
        return Tier(min=1, max=None, mult=self.fallback_mult(store))


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _apply_min_margin(sell: float, cost: int, floor_pct: float) -> int:
    if not floor_pct > 0:
        return _round_half_up(sell)
    floor_sell = math.ceil(cost / (1 - floor_pct))
    return max(_round_half_up(sell), floor_sell)


def charm_99(cents: int) -> int:
    """Round up to the next NN.99 for prices of $10.00 and above."""
    if cents < 1000:
        return cents
    dollars = cents // 100
    target = dollars * 100 + 99
    return target if target >= cents else (dollars + 1) * 100 + 99


def apply_tiered_markup(store, quantity, line_cost_cents=None,
                        unit_cost_cents=None, rules: MarkupRules = None) -> MarkupResult:
    """
    Turn vendor cost into a sell price for `quantity` units.

    Provide the line cost, or a unit cost that is multiplied out.
    `store` accepts anything stores.currency_to_store() understands.
    """
    rules = rules or MarkupRules()
    store = currency_to_store(store)
    qty = max(1, clamp_int(quantity, 1))

    line_cost = clamp_int(line_cost_cents or 0, 0)
    if not line_cost:
        line_cost = clamp_int(unit_cost_cents or 0, 0) * qty
    unit_cost = _round_half_up(line_cost / qty)

    tier = rules.pick_tier(store, qty)
    mult = tier.mult if math.isfinite(tier.mult) else rules.fallback_mult(store)
    floor_pct = tier.floor_pct if tier.floor_pct is not None else rules.min_margin

    if rules.apply_level == 'line':
        line = _apply_min_margin(line_cost * mult, line_cost, floor_pct)
        if rules.use_charm:
            line = charm_99(line)
        unit = _round_half_up(line / qty)
        return MarkupResult(unit_sell_cents=unit, line_sell_cents=unit * qty)

    unit = _apply_min_margin(unit_cost * mult, unit_cost, floor_pct)
    if rules.use_charm:
        unit = charm_99(unit)
    return MarkupResult(unit_sell_cents=unit, line_sell_cents=unit * qty)
