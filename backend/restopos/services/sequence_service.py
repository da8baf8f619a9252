# Overview: Service-layer operations for human-readable order ids.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderSequence
from ..time_utils import local_today


class SequenceError(Exception):
    """Raised when an order id cannot be allocated."""
    pass


def format_order_id(business_date: date, table_number: str, seq: int) -> str:
    """'190326-A1-03' style id: ddmmyy, table, two-digit (or wider) sequence."""
    return f"{business_date.strftime('%d%m%y')}-{table_number}-{seq:02d}"


def _read_allocated(order_date: str, table_number: str) -> int:
    current = (
        db.session.query(OrderSequence.next_number)
        .filter_by(order_date=order_date, table_number=table_number)
        .scalar()
    )
    return current - 1


def next_order_id(table_number: str, business_date: date | None = None) -> str:
    """
    Atomically allocate the next order id for a table on a business date.

    Advances the (date, table) counter with UPDATE ... SET next_number =
    next_number + 1 inside the caller's transaction. First use of a pair
    inserts the row; a concurrent insert of the same pair falls back to the
    UPDATE path.
    """
    if not table_number:
        raise SequenceError("table_number is required")

    business_date = business_date or local_today()
    order_date = business_date.strftime("%d%m%y")

    stmt = (
        update(OrderSequence)
        .where(
            OrderSequence.order_date == order_date,
            OrderSequence.table_number == table_number,
        )
        .values(next_number=OrderSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        seq = _read_allocated(order_date, table_number)
    else:
        try:
            with db.session.begin_nested():
                db.session.add(OrderSequence(order_date=order_date, table_number=table_number, next_number=2))
            seq = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise SequenceError("Failed to allocate order sequence")
            seq = _read_allocated(order_date, table_number)

    return format_order_id(business_date, table_number, seq)
