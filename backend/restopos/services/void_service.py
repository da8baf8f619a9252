# Overview: Service-layer operations for order voids and transaction cancellation.

"""
Void & Cancel Service

WHY: Two different reversals, both gated by a manager PIN entered at the
moment of the action:
- Void: an order is abandoned before it is settled
- Cancel: a settled transaction is annotated as cancelled for accounting

DESIGN PRINCIPLES:
- Both are terminal and one-way; repeating either fails
- Cancel never rewrites the order's paid_amount; analytics exclude
  orders whose transaction was cancelled
- Authorization is an injected capability (authorize(roles, pin) -> User)
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db, events
from ..models import Transaction
from ..models.catalog import TABLE_STATUS_AVAILABLE
from ..models.payments import TRANSACTION_STATUS_CANCELLED
from ..time_utils import utcnow
from . import auth_service
from . import order_service
from .concurrency import lock_for_update, run_in_transaction
from .order_service import OrderAlreadyPaidError, OrderVoidedError


class VoidError(Exception):
    """Raised for void/cancel operation errors."""
    pass


class TransactionNotFoundError(VoidError):
    """Raised when a transaction does not exist."""
    pass


class TransactionAlreadyCancelledError(VoidError):
    """Raised when cancelling a transaction twice."""
    pass


# =============================================================================
# VOID
# =============================================================================

def void_order(
    order_id: str,
    manager_pin: str,
    reason: str | None = None,
    *,
    authorize=auth_service.authorize,
) -> dict:
    """
    Void an unsettled order.

    Returns:
        {"order", "voided_by", "table_numbers"}

    Raises:
        AuthorizationError: PIN malformed or not a manager/admin
        OrderNotFoundError: unknown order
        OrderVoidedError: already voided
        OrderAlreadyPaidError: already settled
    """
    manager = authorize(auth_service.MANAGER_ROLES, manager_pin)

    def _op():
        order = order_service._get_order_locked(order_id)
        if order.voided_at is not None:
            raise OrderVoidedError("Order has already been voided")
        if order.settled_at is not None:
            raise OrderAlreadyPaidError("Order is already paid")

        order.voided_at = utcnow()
        order.voided_by = manager.id
        order.void_reason = (reason or "").strip() or None

        table_numbers = order_service.release_tables(order)
        db.session.flush()
        return order, table_numbers

    order, table_numbers = run_in_transaction(_op)

    current_app.logger.info("Order %s voided by user %s", order.id, manager.id)
    events.emit("order_voided", {"order_id": order.id, "table_numbers": table_numbers})
    events.emit("table_status_updated", {"table_numbers": table_numbers, "status": TABLE_STATUS_AVAILABLE})

    return {"order": order, "voided_by": manager, "table_numbers": table_numbers}


# =============================================================================
# CANCEL
# =============================================================================

def cancel_transaction(
    transaction_id: int,
    manager_pin: str,
    reason: str | None = None,
    *,
    authorize=auth_service.authorize,
) -> Transaction:
    """
    Cancel a completed transaction.

    Raises:
        AuthorizationError: PIN malformed or not a manager/admin
        TransactionNotFoundError: unknown transaction
        TransactionAlreadyCancelledError: already cancelled
    """
    manager = authorize(auth_service.MANAGER_ROLES, manager_pin)

    def _op() -> Transaction:
        transaction = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).first()
        if not transaction:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        if transaction.status == TRANSACTION_STATUS_CANCELLED:
            raise TransactionAlreadyCancelledError("Transaction has already been cancelled")

        transaction.status = TRANSACTION_STATUS_CANCELLED
        transaction.cancelled_at = utcnow()
        transaction.cancelled_by = manager.id
        transaction.cancel_reason = (reason or "").strip() or None
        db.session.flush()
        return transaction

    transaction = run_in_transaction(_op)
    current_app.logger.info("Transaction %s cancelled by user %s", transaction.id, manager.id)
    return transaction


def get_transaction(transaction_id: int) -> Transaction:
    transaction = db.session.query(Transaction).filter_by(id=transaction_id).first()
    if not transaction:
        raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
    return transaction


def list_transactions(start=None, end=None, limit: int = 50, offset: int = 0) -> tuple[list[Transaction], int]:
    query = db.session.query(Transaction)
    if start:
        query = query.filter(Transaction.transaction_date >= start)
    if end:
        query = query.filter(Transaction.transaction_date <= end)
    total = query.count()
    rows = (
        query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total
