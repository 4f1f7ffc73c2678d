"""
storefront/loyalty/rules.py
---------------------------
Loyalty math. No DB access.

    earn     10 points per currency unit (USD / CAD) of net merchandise
    redeem   100 points = 1.00 of store credit
             minimum 100 points, in steps of 100
    tiers    Bronze 0 · Silver 1000 · Gold 5000 · Platinum 20000

Points are awarded only once an order is paid.
"""
from decimal import Decimal, ROUND_HALF_UP

from storefront.utils.money import clamp_int

EARN_POINTS_PER_UNIT = {
    'USD': 10,
    'CAD': 10,
}
REDEEM_POINTS_PER_UNIT = 100
REDEEM_MIN_POINTS = 100
REDEEM_INCREMENT = 100

# (name, min balance, next tier threshold)
TIERS = [
    ('Bronze',   0,     1000),
    ('Silver',   1000,  5000),
    ('Gold',     5000,  20000),
    ('Platinum', 20000, None),
]


def compute_loyalty(points_balance) -> dict:
    """Wallet snapshot: balance, tier and points remaining to the next tier."""
    balance = clamp_int(points_balance)
    name, _, next_at = TIERS[0]
    for tier_name, tier_min, tier_next in TIERS:
        if balance >= tier_min:
            name, next_at = tier_name, tier_next
    return {
        'balance':    balance,
        'points':     balance,
        'tier':       name,
        'nextTierAt': None if next_at is None else max(0, next_at - balance),
    }


def points_to_credit_cents(points) -> int:
    return clamp_int(points) * 100 // REDEEM_POINTS_PER_UNIT


def credit_cents_to_points(cents) -> int:
    return clamp_int(cents) * REDEEM_POINTS_PER_UNIT // 100


def earn_points_for_amount(amount_cents, currency='USD') -> int:
    """round(amount in currency units × rate), half-up; unknown currency earns 0."""
    rate = EARN_POINTS_PER_UNIT.get(str(currency or '').upper(), 0)
    points = Decimal(clamp_int(amount_cents)) * rate / 100
    return int(points.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def normalize_redeem_points(requested) -> int:
    """0 below the minimum, otherwise rounded down to the increment."""
    points = clamp_int(requested)
    if points < REDEEM_MIN_POINTS:
        return 0
    step = max(1, REDEEM_INCREMENT)
    return (points // step) * step


def is_valid_redeem_request(points) -> bool:
    return points >= REDEEM_MIN_POINTS and points % REDEEM_INCREMENT == 0


def points_spent_on_discount(held_points, loyalty_credit_cents, other_credit_cents,
                             discount_cents) -> int:
    """
    Points actually consumed by an order. Other credits discount first;
    the loyalty credit covers what is left of the discount, so a hold
    larger than the final cart only spends what it discounted.
    """
    covered = min(clamp_int(loyalty_credit_cents),
                  max(0, clamp_int(discount_cents) - clamp_int(other_credit_cents)))
    return min(clamp_int(held_points), credit_cents_to_points(covered))
