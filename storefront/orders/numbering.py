"""
storefront/orders/numbering.py
------------------------------
Order numbers: `YYYY-NNNN`, one counter per year of payment.

The year comes from the order's `placed_at` (when the payment settled),
not from the clock at the moment the webhook is processed: a payment made
on Dec 31 whose webhook lands on Jan 1 is still numbered in the old year.

    next_order_number(db.session, placed_at)   → "2026-0042"
    format_order_number(2026, 42)              → "2026-0042"

The year's OrderSequence row is read with FOR UPDATE, so finalizations
racing in the same year queue behind each other until the caller commits.
A rollback releases the lock without advancing the counter.
"""
from datetime import datetime

from storefront.orders.models import OrderSequence

SEQ_WIDTH = 4


def format_order_number(year: int, seq: int) -> str:
    # wider than SEQ_WIDTH once a year passes 9999 orders
    return f"{year}-{seq:0{SEQ_WIDTH}d}"


def _locked_sequence(db_session, year: int) -> OrderSequence:
    row = db_session.get(OrderSequence, year, with_for_update=True)
    if row is not None:
        return row

    # First order of the year. A concurrent insert of the same row fails
    # the flush with IntegrityError, which the caller's transaction handles.
    db_session.add(OrderSequence(year=year, last_seq=0))
    db_session.flush()
    return db_session.get(OrderSequence, year, with_for_update=True)


def next_order_number(db_session, placed_at: datetime = None) -> str:
    """
    Advance the counter for `placed_at`'s year and return the new number.
    Must run inside the transaction that writes the order.
    """
    year = (placed_at or datetime.utcnow()).year
    row = _locked_sequence(db_session, year)
    row.last_seq += 1
    db_session.flush()
    return format_order_number(year, row.last_seq)
