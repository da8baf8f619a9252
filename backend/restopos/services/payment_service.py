# Overview: Service-layer operations for payment; full, split and compliment settlement.

"""
Payment Processing Service

WHY: Turn an order's balance into recorded money. Supports paying the
whole remaining balance, splitting the bill by amount or by items, and
settling an order as a compliment.

DESIGN PRINCIPLES:
- Payments require an open cashier shift
- Payments are immutable; Order.paid_amount is their sum
- Change is computed for the receipt only and never stored
- Reaching paid marks the order served and frees its tables (including
  tables of orders merged into it)
- Every settlement creates a Transaction linked to its Payment
- Receipts and events happen after commit and are best-effort
"""

from __future__ import annotations

from collections import OrderedDict
from types import SimpleNamespace

from flask import current_app

from ..extensions import db, events
from ..models import Order, OrderItem, OrderAdditionalCharge, Payment, Transaction
from ..models.catalog import TABLE_STATUS_AVAILABLE
from ..models.payments import PAYMENT_METHOD_CASH, TRANSACTION_STATUS_COMPLETED
from ..money_utils import round_amount
from ..time_utils import utcnow
from . import charge_service
from . import order_service
from .auth_service import get_user_display_name
from .concurrency import run_in_transaction
from .order_service import OrderNotFoundError
from .print_service import enqueue_receipt, order_receipt_payload
from .shift_service import get_open_shift


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


class NoOpenShiftError(PaymentError):
    """Raised when paying while the register is closed."""
    pass


# =============================================================================
# HELPERS
# =============================================================================

def _validate_method(payment_method: str) -> None:
    methods = current_app.config.get("PAYMENT_METHODS", ())
    if payment_method not in methods:
        raise PaymentError(f"Invalid payment method: {payment_method}. Must be one of {list(methods)}")


def ensure_open_shift():
    shift = get_open_shift()
    if not shift:
        raise NoOpenShiftError("Cashier shift is not open")
    return shift


def _record_settlement(
    order: Order,
    *,
    amount: int,
    payment_method: str,
    created_by: int | None,
    note: str | None = None,
    is_item_split: bool = False,
) -> tuple[Payment, Transaction]:
    now = utcnow()
    payment = Payment(
        order_id=order.id,
        amount=amount,
        payment_method=payment_method,
        note=note,
        is_item_split=is_item_split,
        created_by=created_by,
        created_at=now,
    )
    db.session.add(payment)
    db.session.flush()

    transaction = Transaction(
        order_id=order.id,
        payment_id=payment.id,
        total_amount=amount,
        payment_method=payment_method,
        status=TRANSACTION_STATUS_COMPLETED,
        transaction_date=now,
        created_by=created_by,
    )
    db.session.add(transaction)
    db.session.flush()
    return payment, transaction


def _finish_order(order: Order) -> list[str]:
    order_service.mark_served(order)
    return order_service.release_tables(order)


def _emit_settled(order: Order, table_numbers: list[str]) -> None:
    events.emit("payment_completed", {
        "order_id": order.id,
        "payment_status": order.payment_status,
        "table_numbers": table_numbers,
    })
    events.emit("table_status_updated", {"table_numbers": table_numbers, "status": TABLE_STATUS_AVAILABLE})


# =============================================================================
# FULL PAYMENT
# =============================================================================

def pay_order_in_full(
    order_id: str,
    payment_method: str,
    tendered_amount: int = 0,
    *,
    created_by: int | None = None,
    note: str | None = None,
) -> dict:
    """
    Pay the whole remaining balance of an order.

    A payment of the remaining amount (not the tendered amount) is
    recorded; change = tendered - remaining. tendered_amount <= 0 means
    exact payment. Non-cash tender may not exceed the remaining balance.

    Returns:
        {"order", "payment", "transaction", "paid_amount",
         "change_amount", "table_numbers"}

    Raises:
        PaymentError: invalid method, nothing left to pay, or tender short
        NoOpenShiftError: no open cashier shift
        OrderNotFoundError / OrderVoidedError: order unusable
    """
    _validate_method(payment_method)

    def _op():
        ensure_open_shift()
        order = order_service._get_order_locked(order_id)
        if order.settled_at is not None:
            raise PaymentError("Order is already settled")
        order_service._ensure_mutable(order)

        charge_service.recalculate(order_id)
        remaining = order.total_amount - order.paid_amount
        if remaining <= 0:
            raise PaymentError("Order has no remaining balance")

        tendered = tendered_amount if tendered_amount and tendered_amount > 0 else remaining
        if tendered < remaining:
            raise PaymentError("Tendered amount is less than the remaining balance")
        if payment_method != PAYMENT_METHOD_CASH and tendered > remaining:
            raise PaymentError("Non-cash tender cannot exceed the remaining balance")
        change = tendered - remaining

        payment, transaction = _record_settlement(
            order,
            amount=remaining,
            payment_method=payment_method,
            created_by=created_by,
            note=note,
        )
        order_service.process_payment(order_id)
        table_numbers = _finish_order(order)
        return order, payment, transaction, tendered, change, table_numbers

    order, payment, transaction, tendered, change, table_numbers = run_in_transaction(_op)

    items = db.session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
    enqueue_receipt(order_receipt_payload(
        order,
        items,
        receipt_number=f"TRX-{transaction.id}",
        waiter_name=get_user_display_name(order.created_by),
        cashier_name=get_user_display_name(created_by),
        payment_method=payment_method,
        paid_amount=tendered,
        change_amount=change,
    ))
    _emit_settled(order, table_numbers)

    return {
        "order": order,
        "payment": payment,
        "transaction": transaction,
        "paid_amount": tendered,
        "change_amount": change,
        "table_numbers": table_numbers,
    }


# =============================================================================
# SPLIT PAYMENT
# =============================================================================

def _aggregate_split_items(items) -> "OrderedDict[int, int]":
    qty_by_id: "OrderedDict[int, int]" = OrderedDict()
    for raw in items:
        item_id = raw.get("item_id")
        qty = raw.get("qty")
        if not item_id or not isinstance(qty, int) or qty <= 0:
            raise PaymentError("item_id and a positive qty are required for every split item")
        qty_by_id[item_id] = qty_by_id.get(item_id, 0) + qty
    return qty_by_id


def _manual_adjustments_total(order_id: str) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(OrderAdditionalCharge.applied_amount), 0))
        .filter(
            OrderAdditionalCharge.order_id == order_id,
            OrderAdditionalCharge.charge_id.is_(None),
        )
        .scalar()
    )
    return int(total or 0)


def _split_share(order: Order, qty_by_id) -> tuple[int, list[tuple[OrderItem, int]], bool]:
    """
    Amount owed for the selected items.

    share = split subtotal + standing charges on the split subtotal
            + manual adjustments * split subtotal / order subtotal

    Returns (amount, [(item, qty)], consumes_all_items).
    """
    order_items = db.session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
    by_id = {item.id: item for item in order_items}

    selected = []
    for item_id, qty in qty_by_id.items():
        item = by_id.get(item_id)
        if not item:
            raise PaymentError(f"Order item {item_id} not found on this order")
        if qty > item.qty:
            raise PaymentError("Split qty exceeds the item quantity")
        selected.append((item, qty))

    order_subtotal = charge_service.calculate_subtotal(order_items)
    split_subtotal = sum(item.price * qty for item, qty in selected)

    share = split_subtotal + charge_service.active_charges_total(split_subtotal)
    if order_subtotal > 0:
        manual_total = _manual_adjustments_total(order.id)
        share += manual_total * split_subtotal / order_subtotal

    consumes_all = all(
        qty_by_id.get(item.id, 0) == item.qty for item in order_items
    )
    return round_amount(share), selected, consumes_all


def split_bill_payment(
    order_id: str,
    payment_method: str,
    *,
    amount: int = 0,
    items: list[dict] | None = None,
    tendered_amount: int = 0,
    note: str | None = None,
    created_by: int | None = None,
) -> dict:
    """
    Pay part of an order, either a free amount or a subset of items.

    With items ([{"item_id", "qty"}]) the amount is computed from the
    selected items and overrides amount; the selected quantities are
    removed from the order. When the selection consumes every remaining
    item the split pays the exact remaining balance.

    Returns:
        {"order", "payment", "transaction", "amount", "paid_amount",
         "change_amount", "payment_status", "table_numbers"}

    Raises:
        PaymentError: invalid input, amount <= 0 or above remaining,
            short cash tender
        NoOpenShiftError: no open cashier shift
    """
    _validate_method(payment_method)
    qty_by_id = _aggregate_split_items(items) if items else None
    if qty_by_id is None and (amount is None or amount <= 0):
        raise PaymentError("Split amount must be greater than 0")

    def _op():
        ensure_open_shift()
        order = order_service._get_order_locked(order_id)
        if order.settled_at is not None:
            raise PaymentError("Order is already settled")
        order_service._ensure_mutable(order)

        charge_service.recalculate(order_id)
        remaining = order.total_amount - order.paid_amount
        selected = []
        if qty_by_id:
            split_amount, selected, consumes_all = _split_share(order, qty_by_id)
            if consumes_all:
                split_amount = remaining
        else:
            split_amount = round_amount(amount)

        if split_amount <= 0:
            raise PaymentError("Split amount must be greater than 0")
        if split_amount > remaining:
            raise PaymentError("Split amount exceeds the remaining balance")

        if payment_method == PAYMENT_METHOD_CASH:
            tendered = tendered_amount if tendered_amount and tendered_amount > 0 else split_amount
            if tendered < split_amount:
                raise PaymentError("Tendered amount is less than the split amount")
        else:
            tendered = split_amount
        change = tendered - split_amount

        receipt_lines = []
        for item, qty in selected:
            receipt_lines.append(SimpleNamespace(product_name=item.product_name, price=item.price, qty=qty))
            if qty == item.qty:
                db.session.delete(item)
            else:
                item.qty = item.qty - qty
        db.session.flush()

        payment, transaction = _record_settlement(
            order,
            amount=split_amount,
            payment_method=payment_method,
            created_by=created_by,
            note=note,
            is_item_split=bool(selected),
        )

        order.paid_amount = order_service.sum_payments(order.id)
        table_numbers = []
        if order.paid_amount >= order.total_amount:
            order.settled_at = utcnow()
            table_numbers = _finish_order(order)
        db.session.flush()
        return order, payment, transaction, split_amount, tendered, change, receipt_lines, table_numbers

    order, payment, transaction, split_amount, tendered, change, receipt_lines, table_numbers = run_in_transaction(_op)

    if not receipt_lines:
        receipt_lines = db.session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
    payload = order_receipt_payload(
        order,
        receipt_lines,
        receipt_number=f"TRX-{transaction.id}",
        waiter_name=get_user_display_name(order.created_by),
        cashier_name=get_user_display_name(created_by),
        payment_method=payment_method,
        paid_amount=tendered,
        change_amount=change,
        is_split_payment=True,
    )
    payload["split_amount"] = split_amount
    payload["remaining_amount"] = order.remaining_amount
    enqueue_receipt(payload)

    events.emit("payment_completed", {
        "order_id": order.id,
        "payment_status": order.payment_status,
        "amount": split_amount,
        "table_numbers": table_numbers,
    })
    if table_numbers:
        events.emit("table_status_updated", {"table_numbers": table_numbers, "status": TABLE_STATUS_AVAILABLE})

    return {
        "order": order,
        "payment": payment,
        "transaction": transaction,
        "amount": split_amount,
        "paid_amount": tendered,
        "change_amount": change,
        "payment_status": order.payment_status,
        "table_numbers": table_numbers,
    }


# =============================================================================
# COMPLIMENT
# =============================================================================

def complete_compliment(order_id: str, *, created_by: int | None = None) -> dict:
    """
    Give the order away and settle it.

    Applies the compliment (total 0), settles the order, marks it served,
    frees its tables and records a zero-amount cash transaction.

    Raises:
        NoOpenShiftError: no open cashier shift
        OrderAlreadyPaidError / OrderError: order not eligible
    """
    def _op():
        ensure_open_shift()
        order = order_service.apply_order_compliment(order_id)
        order_service.process_payment(order_id)
        table_numbers = _finish_order(order)

        transaction = Transaction(
            order_id=order.id,
            payment_id=None,
            total_amount=0,
            payment_method=PAYMENT_METHOD_CASH,
            status=TRANSACTION_STATUS_COMPLETED,
            transaction_date=utcnow(),
            created_by=created_by,
        )
        db.session.add(transaction)
        db.session.flush()
        return order, transaction, table_numbers

    order, transaction, table_numbers = run_in_transaction(_op)

    items = db.session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
    enqueue_receipt(order_receipt_payload(
        order,
        items,
        receipt_number=f"COMP-{order.id}",
        waiter_name=get_user_display_name(order.created_by),
        cashier_name=get_user_display_name(created_by),
        payment_method="compliment",
        is_compliment=True,
    ))
    events.emit("order_items_updated", {"order_id": order.id, "table_number": order.table_number})
    _emit_settled(order, table_numbers)

    return {"order": order, "transaction": transaction, "table_numbers": table_numbers}


# =============================================================================
# BILL
# =============================================================================

def print_bill(order_id: str):
    """
    Queue a pre-payment bill for the table. Returns the job or None.

    Unsettled orders are recalculated first so the bill shows the amount
    full payment will charge.
    """
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    if order.settled_at is None and order.voided_at is None and not order.is_merged:
        run_in_transaction(lambda: charge_service.recalculate(order_id))
    items = db.session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
    return enqueue_receipt(order_receipt_payload(
        order,
        items,
        receipt_number=order.id,
        waiter_name=get_user_display_name(order.created_by),
        is_bill=True,
    ))
