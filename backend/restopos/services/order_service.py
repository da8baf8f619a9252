# Overview: Service-layer operations for orders; items, discounts, compliments and settlement state.

"""
Order Ledger Service

WHY: One place owns the financial truth of an open order: its items, its
charges and how much of it has been paid.

DESIGN PRINCIPLES:
- Item name and price are snapshotted from the catalog at order time
- Every mutation ends with a charge recalculation in the same transaction
- Items may only change while pending in the kitchen and the order is
  unsettled
- Discounts and compliments are legal only before the first payment
- Settlement is terminal: nothing leaves paid
- Events are emitted only after the transaction commits
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..extensions import db, events
from ..models import (
    Order,
    OrderItem,
    OrderAdditionalCharge,
    Product,
    Category,
    DiningTable,
    Payment,
)
from ..models.catalog import TABLE_STATUS_AVAILABLE, TABLE_STATUS_OCCUPIED
from ..models.orders import (
    ORDER_STATUS_SERVED,
    ITEM_STATUS_PENDING,
    VALID_ITEM_STATUSES,
    VALID_CHARGE_TYPES,
    CHARGE_TYPE_PERCENTAGE,
    MANUAL_DISCOUNT_NAME,
    MANUAL_COMPLIMENT_NAME,
)
from ..money_utils import round_amount, percentage_of
from ..time_utils import utcnow
from . import charge_service
from .auth_service import get_user_display_name
from .concurrency import lock_for_update, run_in_transaction
from .print_service import enqueue_print_job, item_lines
from .sequence_service import next_order_id


class OrderError(Exception):
    """Raised for order operation errors."""
    pass


class OrderValidationError(OrderError):
    """Raised when order input is malformed."""
    pass


class OrderNotFoundError(OrderError):
    """Raised when an order does not exist."""
    pass


class OrderItemNotFoundError(OrderError):
    """Raised when an order item does not exist."""
    pass


class ProductNotFoundError(OrderError):
    """Raised when an item references an unknown product."""
    pass


class OrderAlreadyPaidError(OrderError):
    """Raised when mutating or voiding a settled order."""
    pass


class OrderItemProcessedError(OrderError):
    """Raised when changing an item the kitchen has already picked up."""
    pass


class InvalidItemQtyError(OrderError):
    """Raised for a negative item quantity."""
    pass


class OrderVoidedError(OrderError):
    """Raised when touching a voided order."""
    pass


class OrderMergedError(OrderError):
    """Raised when touching an order that was merged into another."""
    pass


class OrderTotalBelowPaidError(OrderError):
    """Raised when an item change would drop the total to the amount already paid or below."""
    pass


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _normalize_items(items) -> list[dict]:
    if not items:
        raise OrderValidationError("items must not be empty")

    normalized = []
    for raw in items:
        product_id = raw.get("product_id")
        qty = raw.get("qty")
        if not product_id:
            raise OrderValidationError("product_id is required for every item")
        if not isinstance(qty, int) or qty <= 0:
            raise OrderValidationError("qty must be greater than 0")
        normalized.append({"product_id": product_id, "qty": qty})
    return normalized


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_order_locked(order_id: str) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def _ensure_mutable(order: Order) -> None:
    if order.voided_at is not None:
        raise OrderVoidedError("Order has been voided")
    if order.is_merged:
        raise OrderMergedError("Order has been merged into another order")
    if order.settled_at is not None:
        raise OrderAlreadyPaidError("Order is already paid")


def _snapshot_items(order_id: str, items: list[dict]) -> list[tuple[OrderItem, int | None]]:
    """
    Build order items from catalog products.

    Returns (item, printer_id) pairs; printer_id is None when the product's
    category has no printer.
    """
    default_destination = current_app.config.get("DEFAULT_ITEM_DESTINATION", "kitchen")
    built = []
    for entry in items:
        product = db.session.query(Product).filter_by(id=entry["product_id"]).first()
        if not product:
            raise ProductNotFoundError(f"Product {entry['product_id']} not found")

        destination = default_destination
        printer_id = None
        category = db.session.query(Category).filter_by(id=product.category_id).first() if product.category_id else None
        if category and category.printer:
            printer_id = category.printer_id
            destination = category.printer.printer_type or default_destination

        item = OrderItem(
            order_id=order_id,
            product_id=product.id,
            product_name=product.name,
            price=product.price,
            qty=entry["qty"],
            destination=destination,
            item_status=ITEM_STATUS_PENDING,
        )
        db.session.add(item)
        built.append((item, printer_id))

    db.session.flush()
    return built


def _enqueue_kitchen_tickets(order: Order, built, *, is_additional: bool) -> int:
    """One print job per printer, carrying only that printer's items."""
    by_printer: "OrderedDict[int, list[OrderItem]]" = OrderedDict()
    for item, printer_id in built:
        if printer_id is None:
            continue
        by_printer.setdefault(printer_id, []).append(item)

    waiter_name = get_user_display_name(order.created_by)
    for printer_id, printer_items in by_printer.items():
        subtotal = sum(item.price * item.qty for item in printer_items)
        enqueue_print_job(printer_id, {
            "order_id": order.id,
            "receipt_number": order.id,
            "table_number": order.table_number,
            "customer_name": order.customer_name or "",
            "waiter_name": waiter_name,
            "items": item_lines(printer_items),
            "subtotal": subtotal,
            "total": subtotal,
            "is_additional": is_additional,
            "datetime": utcnow().isoformat(),
        })
    return len(by_printer)


def _set_table_status(table_numbers, status: str) -> None:
    if not table_numbers:
        return
    tables = db.session.query(DiningTable).filter(DiningTable.table_number.in_(list(table_numbers))).all()
    for table in tables:
        if table.status != status:
            table.status = status


def release_tables(order: Order) -> list[str]:
    """
    Mark the order's table and the tables of orders merged into it available.

    Runs inside the caller's transaction. Returns the freed table numbers.
    """
    table_numbers = [order.table_number]
    for merged in get_merged_orders(order.id):
        if merged.table_number not in table_numbers:
            table_numbers.append(merged.table_number)
    _set_table_status(table_numbers, TABLE_STATUS_AVAILABLE)
    return table_numbers


def sum_payments(order_id: str) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0))
        .filter(Payment.order_id == order_id)
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# ORDER CREATION & ITEMS
# =============================================================================

def create_order_with_items(
    table_number: str,
    items: list[dict],
    *,
    pax: int = 1,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    customer_id: int | None = None,
    created_by: int | None = None,
) -> Order:
    """
    Create an order with its first items.

    Allocates the order id, snapshots products, marks the table occupied,
    queues one kitchen ticket per printer, then derives totals.

    Args:
        table_number: Table the order belongs to
        items: [{"product_id": int, "qty": int}, ...]
        pax: Guest count (> 0)
        created_by: Waiter user id

    Raises:
        OrderValidationError: malformed input
        ProductNotFoundError: unknown product id
    """
    table_number = (table_number or "").strip()
    if not table_number:
        raise OrderValidationError("table_number is required")
    if not isinstance(pax, int) or pax <= 0:
        raise OrderValidationError("pax must be greater than 0")
    normalized = _normalize_items(items)

    def _op() -> Order:
        order_id = next_order_id(table_number)
        order = Order(
            id=order_id,
            table_number=table_number,
            customer_name=customer_name or None,
            customer_phone=customer_phone or None,
            customer_id=customer_id,
            pax=pax,
            created_by=created_by,
            created_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        built = _snapshot_items(order_id, normalized)
        _enqueue_kitchen_tickets(order, built, is_additional=False)
        _set_table_status([table_number], TABLE_STATUS_OCCUPIED)
        charge_service.recalculate(order_id)
        return order

    order = run_in_transaction(_op)

    events.emit("order_created", {"order_id": order.id, "table_number": order.table_number})
    events.emit("table_status_updated", {"table_number": order.table_number, "status": TABLE_STATUS_OCCUPIED})
    return order


def add_items_to_order(order_id: str, items: list[dict]) -> Order:
    """
    Append items to an unsettled order.

    Raises:
        OrderAlreadyPaidError: order already settled
        ProductNotFoundError: unknown product id
    """
    normalized = _normalize_items(items)

    def _op() -> Order:
        order = _get_order_locked(order_id)
        _ensure_mutable(order)

        built = _snapshot_items(order_id, normalized)
        _enqueue_kitchen_tickets(order, built, is_additional=True)
        charge_service.recalculate(order_id)
        return order

    order = run_in_transaction(_op)
    events.emit("order_items_updated", {"order_id": order.id, "table_number": order.table_number})
    return order


def add_items_to_order_by_table(table_number: str, items: list[dict]) -> Order:
    """Append items to the table's active order."""
    order = get_active_order_by_table(table_number)
    if not order:
        raise OrderNotFoundError(f"No active order on table {table_number}")
    return add_items_to_order(order.id, items)


def update_order_item_qty(item_id: int, qty: int) -> OrderItem | None:
    """
    Change an item's quantity; 0 removes the item.

    Returns the updated item, or None when it was removed.

    Raises:
        InvalidItemQtyError: qty < 0
        OrderItemNotFoundError: unknown item
        OrderItemProcessedError: kitchen already processing the item
        OrderAlreadyPaidError: order already settled
        OrderTotalBelowPaidError: partially paid order would owe nothing more
    """
    if not isinstance(qty, int) or qty < 0:
        raise InvalidItemQtyError("qty must be 0 or greater")

    def _op():
        item = db.session.query(OrderItem).filter_by(id=item_id).first()
        if not item:
            raise OrderItemNotFoundError(f"Order item {item_id} not found")
        if item.item_status != ITEM_STATUS_PENDING:
            raise OrderItemProcessedError("Item is already being processed")

        order = _get_order_locked(item.order_id)
        _ensure_mutable(order)

        if item.qty == qty:
            return order, item, False

        if qty == 0:
            db.session.delete(item)
            item = None
        else:
            item.qty = qty
        db.session.flush()

        charge_service.recalculate(order.id)
        # A partially paid order must keep a positive remaining balance.
        if order.paid_amount > 0 and order.total_amount <= order.paid_amount:
            raise OrderTotalBelowPaidError(
                f"Order total {order.total_amount} would not exceed the {order.paid_amount} already paid"
            )
        return order, item, True

    order, item, changed = run_in_transaction(_op)
    if changed:
        events.emit("order_items_updated", {"order_id": order.id, "table_number": order.table_number})
    return item


def update_order_item_status(item_id: int, status: str) -> OrderItem:
    """Kitchen progress: pending -> cooking -> ready -> served."""
    if status not in VALID_ITEM_STATUSES:
        raise OrderValidationError(f"status must be one of {list(VALID_ITEM_STATUSES)}")

    def _op() -> OrderItem:
        item = db.session.query(OrderItem).filter_by(id=item_id).first()
        if not item:
            raise OrderItemNotFoundError(f"Order item {item_id} not found")
        item.item_status = status
        return item

    item = run_in_transaction(_op)
    events.emit("item_status_updated", {"item_id": item.id, "status": status})
    return item


# =============================================================================
# DISCOUNT & COMPLIMENT
# =============================================================================

def _ensure_no_payments(order: Order) -> None:
    if order.paid_amount > 0:
        raise OrderError("Adjustments are only allowed before any payment")


def _delete_manual_adjustments(order_id: str) -> None:
    rows = (
        db.session.query(OrderAdditionalCharge)
        .filter(
            OrderAdditionalCharge.order_id == order_id,
            OrderAdditionalCharge.charge_id.is_(None),
            OrderAdditionalCharge.name.in_([MANUAL_DISCOUNT_NAME, MANUAL_COMPLIMENT_NAME]),
        )
        .all()
    )
    for row in rows:
        db.session.delete(row)
    db.session.flush()


def apply_order_discount(order_id: str, charge_type: str, value: float) -> Order:
    """
    Apply a discount against the order's current total.

    Replaces any earlier discount or compliment. The baseline total is
    recalculated first, then the discount is taken off total-with-charges,
    rounded, and clamped to the total. The new total is written directly.

    Raises:
        OrderValidationError: bad type or non-positive value
        OrderAlreadyPaidError: order settled
        OrderError: order already partially paid, or nothing to discount
    """
    if charge_type not in VALID_CHARGE_TYPES:
        raise OrderValidationError(f"charge_type must be one of {list(VALID_CHARGE_TYPES)}")
    if value is None or value <= 0:
        raise OrderValidationError("Discount value must be greater than 0")

    def _op() -> Order:
        order = _get_order_locked(order_id)
        _ensure_mutable(order)
        _ensure_no_payments(order)

        _delete_manual_adjustments(order_id)
        charge_service.recalculate(order_id)

        total = order.total_amount
        if total <= 0:
            raise OrderError("Order total must be greater than 0 to apply a discount")

        if charge_type == CHARGE_TYPE_PERCENTAGE:
            amount = round_amount(percentage_of(total, value))
        else:
            amount = round_amount(value)
        if amount <= 0:
            raise OrderError("Discount amount rounds to 0")
        amount = min(amount, total)

        db.session.add(OrderAdditionalCharge(
            order_id=order_id,
            charge_id=None,
            name=MANUAL_DISCOUNT_NAME,
            charge_type=charge_type,
            value=value,
            applied_amount=-amount,
        ))
        order.total_amount = total - amount
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    events.emit("order_items_updated", {"order_id": order.id, "table_number": order.table_number})
    return order


def apply_order_compliment(order_id: str) -> Order:
    """
    Make the whole order complimentary inside the caller's transaction.

    Wipes every charge row (standing and manual) and records a single
    Kompliment adjustment equal to the subtotal, so total_amount becomes 0.

    Raises:
        OrderAlreadyPaidError: order settled
        OrderError: order partially paid or has nothing to compliment
    """
    order = _get_order_locked(order_id)
    _ensure_mutable(order)
    _ensure_no_payments(order)

    items = db.session.query(OrderItem).filter_by(order_id=order_id).all()
    subtotal = charge_service.calculate_subtotal(items)
    if subtotal <= 0:
        raise OrderError("Order has no billable items to compliment")

    for row in db.session.query(OrderAdditionalCharge).filter_by(order_id=order_id).all():
        db.session.delete(row)
    db.session.flush()

    db.session.add(OrderAdditionalCharge(
        order_id=order_id,
        charge_id=None,
        name=MANUAL_COMPLIMENT_NAME,
        charge_type="fixed",
        value=subtotal,
        applied_amount=-subtotal,
    ))
    order.total_amount = 0
    order.basket_size = len(items)
    db.session.flush()
    return order


# =============================================================================
# SETTLEMENT
# =============================================================================

def process_payment(order_id: str) -> Order:
    """
    Settle an order in full inside the caller's transaction.

    Recalculates, then paid_amount = total_amount and the order becomes
    paid. Change is not tracked here.
    """
    order = _get_order_locked(order_id)
    _ensure_mutable(order)

    charge_service.recalculate(order_id)
    order.paid_amount = order.total_amount
    order.settled_at = utcnow()
    db.session.flush()
    return order


def mark_served(order: Order) -> None:
    order.order_status = ORDER_STATUS_SERVED


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: str) -> Order:
    order = db.session.query(Order).filter_by(id=order_id).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def get_order_with_items(order_id: str) -> tuple[Order, list[OrderItem]]:
    order = get_order(order_id)
    items = db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id).all()
    return order, items


def get_active_order_by_table(table_number: str) -> Order | None:
    """Latest order on the table that is still open for service and billing."""
    return (
        db.session.query(Order)
        .filter(
            Order.table_number == table_number,
            Order.order_status != ORDER_STATUS_SERVED,
            Order.settled_at.is_(None),
            Order.is_merged.is_(False),
            Order.voided_at.is_(None),
        )
        .order_by(Order.created_at.desc(), Order.id.desc())
        .first()
    )


def get_merged_orders(parent_id: str) -> list[Order]:
    """Orders absorbed into parent_id by a table merge."""
    return (
        db.session.query(Order)
        .filter(Order.merged_from == parent_id)
        .order_by(Order.id)
        .all()
    )


def get_order_payments(order_id: str) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter_by(order_id=order_id)
        .order_by(Payment.created_at, Payment.id)
        .all()
    )


def list_orders(limit: int = 50, offset: int = 0) -> tuple[list[Order], int]:
    """Visible orders, newest first. Voided and merged-away orders are hidden."""
    query = db.session.query(Order).filter(
        Order.voided_at.is_(None),
        Order.is_merged.is_(False),
    )
    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset).all()
    return orders, total
