# Overview: Service-layer charge calculation; derives order totals from items and charges.

"""
Charge Calculator

WHY: total_amount is never typed in by anyone. It is always derived from
the order's items, the store's active standing charges, and the
order-scoped manual adjustments (discount, compliment).

DESIGN PRINCIPLES:
- Standing-charge rows (charge_id set) are deleted and rebuilt on every pass
- Manual rows (charge_id NULL) survive; their magnitude is re-derived from
  (charge_type, value) against the new subtotal, sign preserved
- Zero-amount rows are never persisted
- Each amount is rounded before it is stored, so
  total_amount == max(0, subtotal + sum(applied_amount))
- Idempotent: a second pass with no intervening change writes nothing new
- A compliment is absolute: while it exists no standing charge is applied
  and its magnitude follows the subtotal, keeping the total at 0
- Item-based split payments remove the items they paid for; their amounts
  stay part of the bill so paid_amount never exceeds total_amount
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, AdditionalCharge, OrderAdditionalCharge, Payment
from ..models.orders import (
    CHARGE_TYPE_PERCENTAGE,
    CHARGE_TYPE_FIXED,
    MANUAL_COMPLIMENT_NAME,
)
from ..money_utils import round_amount, percentage_of
from .concurrency import lock_for_update, run_in_transaction


class ChargeError(Exception):
    """Raised when totals cannot be recalculated."""
    pass


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def calculate_subtotal(items) -> int:
    return sum(item.price * item.qty for item in items)


def charge_amount(charge_type: str, value, base) -> int:
    """
    Absolute amount of a charge against base.

    percentage -> base * value / 100, fixed -> value, rounded half-up.
    """
    if charge_type == CHARGE_TYPE_PERCENTAGE:
        return round_amount(percentage_of(base, value))
    if charge_type == CHARGE_TYPE_FIXED:
        return round_amount(value)
    raise ChargeError(f"Unknown charge type: {charge_type}")


def active_standing_charges() -> list[AdditionalCharge]:
    return (
        db.session.query(AdditionalCharge)
        .filter(AdditionalCharge.is_active.is_(True))
        .order_by(AdditionalCharge.id)
        .all()
    )


def active_charges_total(subtotal: int) -> int:
    """Sum of active standing charges applied to subtotal (0 when subtotal <= 0)."""
    if subtotal <= 0:
        return 0
    return sum(charge_amount(c.charge_type, c.value, subtotal) for c in active_standing_charges())


# =============================================================================
# RECALCULATION
# =============================================================================

def _item_split_total(order_id: str) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0))
        .filter(Payment.order_id == order_id, Payment.is_item_split.is_(True))
        .scalar()
    )
    return int(total or 0)


def recalculate(order_id: str) -> tuple[int, int]:
    """
    Rebuild an order's charges and totals inside the caller's transaction.

    Returns:
        (subtotal, standing charges total)

    Raises:
        ChargeError: order not found
    """
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise ChargeError(f"Order {order_id} not found")

    items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
    subtotal = calculate_subtotal(items)

    rows = (
        db.session.query(OrderAdditionalCharge)
        .filter_by(order_id=order_id)
        .order_by(OrderAdditionalCharge.id)
        .all()
    )
    manual_rows = [row for row in rows if row.charge_id is None]
    for row in rows:
        if row.charge_id is not None:
            db.session.delete(row)

    complimented = any(row.name == MANUAL_COMPLIMENT_NAME for row in manual_rows)

    charges_total = 0
    if subtotal > 0 and not complimented:
        for charge in active_standing_charges():
            applied = charge_amount(charge.charge_type, charge.value, subtotal)
            if applied == 0:
                continue
            db.session.add(OrderAdditionalCharge(
                order_id=order_id,
                charge_id=charge.id,
                name=charge.name,
                charge_type=charge.charge_type,
                value=charge.value,
                applied_amount=applied,
            ))
            charges_total += applied

    manual_total = 0
    for row in manual_rows:
        if row.name == MANUAL_COMPLIMENT_NAME:
            if row.value != subtotal:
                row.value = subtotal
            magnitude = subtotal
        else:
            magnitude = charge_amount(row.charge_type, row.value, subtotal)

        if magnitude == 0:
            db.session.delete(row)
            continue

        sign = -1 if row.applied_amount < 0 else 1
        applied = sign * abs(magnitude)
        if applied != row.applied_amount:
            row.applied_amount = applied
        manual_total += applied

    total = max(0, subtotal + charges_total + manual_total) + _item_split_total(order_id)
    if order.total_amount != total:
        order.total_amount = total
    if order.basket_size != len(items):
        order.basket_size = len(items)

    db.session.flush()
    return subtotal, charges_total


def refresh_open_orders() -> int:
    """
    Re-apply the current standing charges to every open order.

    Explicit batch job, run after standing charges change. One transaction
    covers every unsettled, unvoided, unmerged order.

    Returns:
        Number of orders recalculated
    """
    def _op() -> int:
        order_ids = [
            row.id
            for row in db.session.query(Order.id).filter(
                Order.settled_at.is_(None),
                Order.voided_at.is_(None),
                Order.is_merged.is_(False),
            ).order_by(Order.created_at)
        ]
        for order_id in order_ids:
            recalculate(order_id)
        return len(order_ids)

    count = run_in_transaction(_op)
    current_app.logger.info("Recalculated charges on %d open orders", count)
    return count
