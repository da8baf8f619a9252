# Overview: Service-layer operations for cashier shifts, handover and cash movements.

"""
Cashier Shift Ledger Service

WHY: Cash accountability per cashier. A shift owns a time window; sales,
voids and cash movements inside it are reconciled when it closes, and the
drawer balance carries over to the next shift.

DESIGN PRINCIPLES:
- At most one open shift at any time (checked in-transaction and backed
  by a partial unique index)
- A till cannot close while any order awaits settlement
- Closing is a conditional UPDATE ... WHERE status = 'open'; zero rows
  affected means another request closed it first
- Handover closes the current shift and opens the next one in a single
  transaction; partial application is never observable
- carry_over_cash = opening_cash + cash sales + cash in - cash out
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashierShift, CashMovement, Order, Payment, Transaction, User
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER
from ..models.payments import VALID_PAYMENT_METHODS, TRANSACTION_STATUS_CANCELLED
from ..models.shifts import (
    SHIFT_STATUS_OPEN,
    SHIFT_STATUS_CLOSED,
    CASH_MOVEMENT_IN,
    CASH_MOVEMENT_OUT,
)
from ..time_utils import utcnow, to_utc_z
from .auth_service import is_valid_pin, verify_user_pin
from .concurrency import lock_for_update, run_in_transaction
from .print_service import enqueue_receipt


class ShiftError(Exception):
    """Raised for cashier shift operation errors."""
    pass


class ShiftConflictError(ShiftError):
    """Raised when a shift is already open, or was closed concurrently."""
    pass


class ShiftNotFoundError(ShiftError):
    """Raised when no open shift exists."""
    pass


class CashierNotFoundError(ShiftError):
    """Raised when the handover target user does not exist."""
    pass


class PendingOrdersError(ShiftError):
    """Raised when unsettled orders block closing or handover."""

    def __init__(self, pending_count: int):
        self.pending_count = pending_count
        super().__init__(
            f"{pending_count} order(s) still awaiting payment. Settle them before closing the shift"
        )


class HandoverPinError(ShiftError):
    """Raised when one or both handover PINs are wrong."""

    def __init__(self, message: str, *, current_valid: bool, next_valid: bool):
        self.current_valid = current_valid
        self.next_valid = next_valid
        super().__init__(message)


# =============================================================================
# LOOKUPS
# =============================================================================

def get_open_shift() -> CashierShift | None:
    return (
        db.session.query(CashierShift)
        .filter(CashierShift.status == SHIFT_STATUS_OPEN)
        .order_by(CashierShift.opened_at.desc())
        .first()
    )


def get_last_closed_shift() -> CashierShift | None:
    return (
        db.session.query(CashierShift)
        .filter(CashierShift.status == SHIFT_STATUS_CLOSED)
        .order_by(CashierShift.closed_at.desc(), CashierShift.id.desc())
        .first()
    )


def count_pending_orders() -> int:
    """Orders not yet settled, excluding merged-away and voided ones."""
    return (
        db.session.query(Order)
        .filter(
            Order.settled_at.is_(None),
            Order.is_merged.is_(False),
            Order.voided_at.is_(None),
        )
        .count()
    )


# =============================================================================
# SUMMARIES
# =============================================================================

def shift_sales_summary(start: datetime, end: datetime, cashier_id: int) -> dict:
    """
    Sales taken by cashier_id within [start, end], bucketed by method.

    Counts non-cancelled transactions plus payments that have no
    transaction, so each settlement is counted once.
    """
    buckets = {method: 0 for method in VALID_PAYMENT_METHODS}
    count = 0

    transaction_rows = (
        db.session.query(
            Transaction.payment_method,
            db.func.coalesce(db.func.sum(Transaction.total_amount), 0),
            db.func.count(Transaction.id),
        )
        .filter(
            Transaction.status != TRANSACTION_STATUS_CANCELLED,
            Transaction.created_by == cashier_id,
            Transaction.transaction_date >= start,
            Transaction.transaction_date <= end,
        )
        .group_by(Transaction.payment_method)
        .all()
    )

    orphan_payment_rows = (
        db.session.query(
            Payment.payment_method,
            db.func.coalesce(db.func.sum(Payment.amount), 0),
            db.func.count(Payment.id),
        )
        .outerjoin(Transaction, Transaction.payment_id == Payment.id)
        .filter(
            Transaction.id.is_(None),
            Payment.created_by == cashier_id,
            Payment.created_at >= start,
            Payment.created_at <= end,
        )
        .group_by(Payment.payment_method)
        .all()
    )

    for method, amount, rows in list(transaction_rows) + list(orphan_payment_rows):
        if method in buckets:
            buckets[method] += int(amount or 0)
        count += int(rows or 0)

    return {
        **buckets,
        "total": sum(buckets.values()),
        "transaction_count": count,
    }


def shift_void_summary(start: datetime, end: datetime, cashier_id: int) -> dict:
    """Orders voided by cashier_id within the window."""
    count, total = (
        db.session.query(
            db.func.count(Order.id),
            db.func.coalesce(db.func.sum(Order.total_amount), 0),
        )
        .filter(
            Order.voided_at.isnot(None),
            Order.voided_by == cashier_id,
            Order.voided_at >= start,
            Order.voided_at <= end,
        )
        .one()
    )
    return {"count": int(count or 0), "total": int(total or 0)}


def shift_cancelled_summary(start: datetime, end: datetime) -> dict:
    """Transactions cancelled within the window, store-wide."""
    count, total = (
        db.session.query(
            db.func.count(Transaction.id),
            db.func.coalesce(db.func.sum(Transaction.total_amount), 0),
        )
        .filter(
            Transaction.cancelled_at.isnot(None),
            Transaction.cancelled_at >= start,
            Transaction.cancelled_at <= end,
        )
        .one()
    )
    return {"count": int(count or 0), "total": int(total or 0)}


def shift_cash_movements(shift_id: int) -> dict:
    movements = (
        db.session.query(CashMovement)
        .filter_by(shift_id=shift_id)
        .order_by(CashMovement.created_at, CashMovement.id)
        .all()
    )
    cash_in = [m.to_dict() for m in movements if m.movement_type == CASH_MOVEMENT_IN]
    cash_out = [m.to_dict() for m in movements if m.movement_type == CASH_MOVEMENT_OUT]
    return {
        "cash_in": cash_in,
        "cash_out": cash_out,
        "total_in": sum(m["amount"] for m in cash_in),
        "total_out": sum(m["amount"] for m in cash_out),
    }


def _shift_report(shift: CashierShift, end: datetime) -> dict:
    sales = shift_sales_summary(shift.opened_at, end, shift.opened_by)
    movements = shift_cash_movements(shift.id)
    return {
        "sales_summary": sales,
        "void_summary": shift_void_summary(shift.opened_at, end, shift.opened_by),
        "cancelled_summary": shift_cancelled_summary(shift.opened_at, end),
        "cash_movements": movements,
        "carry_over_cash": shift.opening_cash + sales["cash"] + movements["total_in"] - movements["total_out"],
    }


def get_shift_state() -> dict:
    """Open shift with live summaries, and the last closed shift."""
    state = {"open_shift": None, "last_closed_shift": None}

    open_shift = get_open_shift()
    if open_shift:
        data = open_shift.to_dict()
        data.update(_shift_report(open_shift, utcnow()))
        state["open_shift"] = data

    last_closed = get_last_closed_shift()
    if last_closed:
        data = last_closed.to_dict()
        report = _shift_report(last_closed, last_closed.closed_at or utcnow())
        data["void_summary"] = report["void_summary"]
        data["cancelled_summary"] = report["cancelled_summary"]
        data["cash_movements"] = report["cash_movements"]
        state["last_closed_shift"] = data

    return state


# =============================================================================
# OPEN
# =============================================================================

def _insert_shift(opened_by: int, opening_cash: int, previous_shift_id: int | None) -> CashierShift:
    shift = CashierShift(
        status=SHIFT_STATUS_OPEN,
        opened_by=opened_by,
        opened_at=utcnow(),
        opening_cash=opening_cash,
        previous_shift_id=previous_shift_id,
    )
    db.session.add(shift)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ShiftConflictError("Another cashier shift is already open") from exc
    return shift


def open_shift(opened_by: int, opening_cash: int | None = None) -> CashierShift:
    """
    Open a cashier shift.

    opening_cash defaults to the last closed shift's carry-over, else 0.

    Raises:
        ShiftError: negative opening cash
        ShiftConflictError: a shift is already open
    """
    if opening_cash is not None and opening_cash < 0:
        raise ShiftError("Opening cash cannot be negative")

    def _op() -> CashierShift:
        existing = get_open_shift()
        if existing:
            raise ShiftConflictError(f"Cashier shift {existing.id} is already open")

        last_closed = get_last_closed_shift()
        if opening_cash is not None:
            opening = opening_cash
        elif last_closed and last_closed.carry_over_cash is not None:
            opening = last_closed.carry_over_cash
        else:
            opening = 0

        return _insert_shift(opened_by, opening, last_closed.id if last_closed else None)

    shift = run_in_transaction(_op)
    current_app.logger.info("Cashier shift %s opened by user %s with %s", shift.id, opened_by, shift.opening_cash)
    return shift


# =============================================================================
# CLOSE & HANDOVER
# =============================================================================

def _get_open_shift_locked() -> CashierShift:
    shift = lock_for_update(
        db.session.query(CashierShift).filter(CashierShift.status == SHIFT_STATUS_OPEN)
    ).first()
    if not shift:
        raise ShiftNotFoundError("No open cashier shift")
    return shift


def _ensure_no_pending_orders() -> None:
    pending = count_pending_orders()
    if pending > 0:
        raise PendingOrdersError(pending)


def _close_locked(shift: CashierShift, closed_by: int, handover_to: int | None = None) -> dict:
    """Reconcile and close shift inside the caller's transaction."""
    _ensure_no_pending_orders()

    closed_at = utcnow()
    report = _shift_report(shift, closed_at)
    sales = report["sales_summary"]
    movements = report["cash_movements"]

    stmt = (
        update(CashierShift)
        .where(CashierShift.id == shift.id, CashierShift.status == SHIFT_STATUS_OPEN)
        .values(
            status=SHIFT_STATUS_CLOSED,
            closed_by=closed_by,
            closed_at=closed_at,
            closing_cash=sales["cash"],
            closing_card=sales["card"],
            closing_qris=sales["qris"],
            closing_transfer=sales["transfer"],
            total_sales=sales["total"],
            total_cash_in=movements["total_in"],
            total_cash_out=movements["total_out"],
            carry_over_cash=report["carry_over_cash"],
            handover_to=handover_to,
            version_id=CashierShift.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise ShiftConflictError("Cashier shift is already closed")
    db.session.expire(shift)

    report["closed_at"] = closed_at
    return report


def _shift_receipt_payload(shift: CashierShift, report: dict, **flags) -> dict:
    sales = report["sales_summary"]
    movements = report["cash_movements"]
    payload = {
        "receipt_number": f"SHIFT-{shift.id}",
        "shift_id": shift.id,
        "cashier_name": shift.opener.display_name if shift.opener else "",
        "opened_at": to_utc_z(shift.opened_at),
        "closed_at": to_utc_z(report.get("closed_at")),
        "opening_cash": shift.opening_cash,
        "closing_cash": sales["cash"],
        "closing_card": sales["card"],
        "closing_qris": sales["qris"],
        "closing_transfer": sales["transfer"],
        "total_sales": sales["total"],
        "void_count": report["void_summary"]["count"],
        "void_total": report["void_summary"]["total"],
        "cancelled_count": report["cancelled_summary"]["count"],
        "cancelled_total": report["cancelled_summary"]["total"],
        "cash_ins": movements["cash_in"],
        "cash_outs": movements["cash_out"],
        "total_cash_in": movements["total_in"],
        "total_cash_out": movements["total_out"],
        "carry_over_cash": report["carry_over_cash"],
        "datetime": utcnow().isoformat(),
    }
    payload.update(flags)
    return payload


def close_shift(closed_by: int) -> dict:
    """
    Close the open shift and queue the close-shift receipt.

    Returns:
        {"shift", "sales_summary", "void_summary", "cancelled_summary",
         "cash_movements", "carry_over_cash"}

    Raises:
        ShiftNotFoundError: no open shift
        PendingOrdersError: orders still awaiting payment
        ShiftConflictError: closed concurrently
    """
    def _op():
        shift = _get_open_shift_locked()
        return shift, _close_locked(shift, closed_by)

    shift, report = run_in_transaction(_op)

    enqueue_receipt(_shift_receipt_payload(shift, report, is_close_shift=True))
    current_app.logger.info("Cashier shift %s closed by user %s, carry over %s", shift.id, closed_by, report["carry_over_cash"])

    report["shift"] = shift
    return report


def handover_shift(
    *,
    caller_id: int,
    caller_role: str | None,
    next_cashier_id: int,
    current_pin: str,
    next_pin: str,
    verify_pin: Callable[[User, str], bool] = verify_user_pin,
) -> dict:
    """
    Hand the till to another cashier.

    Both cashiers confirm with their PIN. The current cashier is the shift
    opener, or the caller when an admin/manager performs the handover. The
    open shift closes with handover_to set and a new shift opens for the
    next cashier seeded with the carry-over, in one transaction.

    Returns:
        {"previous_shift", "shift", plus the closing report}

    Raises:
        ShiftError: bad input or ineligible cashier
        CashierNotFoundError: next cashier unknown
        ShiftNotFoundError: no open shift
        PendingOrdersError: orders still awaiting payment
        HandoverPinError: wrong PIN(s), naming which
    """
    if not next_cashier_id:
        raise ShiftError("Next cashier is required")
    if not is_valid_pin(current_pin) or not is_valid_pin(next_pin):
        raise ShiftError("PIN must be exactly 4 digits")

    def _op():
        next_user = db.session.query(User).filter_by(id=next_cashier_id).first()
        if not next_user:
            raise CashierNotFoundError("Next cashier not found")
        if not next_user.is_active or next_user.role != ROLE_CASHIER:
            raise ShiftError("Next cashier is not an active cashier")

        shift = _get_open_shift_locked()
        _ensure_no_pending_orders()

        current_cashier_id = shift.opened_by
        if caller_role in (ROLE_ADMIN, ROLE_MANAGER):
            current_cashier_id = caller_id
        if next_user.id == current_cashier_id:
            raise ShiftError("Next cashier must be different from the current cashier")

        current_user = db.session.query(User).filter_by(id=current_cashier_id).first()
        if not current_user or not current_user.is_active:
            raise ShiftError("Current cashier is not active")

        current_valid = verify_pin(current_user, current_pin)
        next_valid = verify_pin(next_user, next_pin)
        if not current_valid and not next_valid:
            raise HandoverPinError("Both current and next cashier PINs are wrong", current_valid=False, next_valid=False)
        if not current_valid:
            raise HandoverPinError("Current cashier PIN is wrong", current_valid=False, next_valid=True)
        if not next_valid:
            raise HandoverPinError("Next cashier PIN is wrong", current_valid=True, next_valid=False)

        report = _close_locked(shift, current_cashier_id, handover_to=next_user.id)
        new_shift = _insert_shift(next_user.id, report["carry_over_cash"], shift.id)
        return shift, new_shift, current_user, next_user, report

    shift, new_shift, current_user, next_user, report = run_in_transaction(_op)

    enqueue_receipt(_shift_receipt_payload(
        shift,
        report,
        is_close_shift=True,
        is_handover=True,
        handover_from=current_user.display_name,
        handover_to=next_user.display_name,
    ))
    current_app.logger.info(
        "Cashier shift %s handed over from user %s to user %s (new shift %s)",
        shift.id, current_user.id, next_user.id, new_shift.id,
    )

    report["previous_shift"] = shift
    report["shift"] = new_shift
    return report


# =============================================================================
# CASH MOVEMENTS
# =============================================================================

def create_cash_movement(
    *,
    created_by: int,
    movement_type: str,
    name: str,
    amount: int,
    note: str | None = None,
) -> CashMovement:
    """
    Record cash put into (in) or taken from (out) the drawer.

    Raises:
        ShiftError: invalid input, or 'out' without a note
        ShiftNotFoundError: no open shift
    """
    name = (name or "").strip()
    note = (note or "").strip() or None
    if not name:
        raise ShiftError("Name is required")
    if amount is None or amount <= 0:
        raise ShiftError("Amount must be greater than 0")
    if movement_type not in (CASH_MOVEMENT_IN, CASH_MOVEMENT_OUT):
        raise ShiftError("Movement type must be 'in' or 'out'")
    if movement_type == CASH_MOVEMENT_OUT and not note:
        raise ShiftError("A note is required for cash out")

    def _op():
        shift = _get_open_shift_locked()
        movement = CashMovement(
            shift_id=shift.id,
            movement_type=movement_type,
            name=name,
            amount=amount,
            note=note,
            created_by=created_by,
        )
        db.session.add(movement)
        db.session.flush()
        return shift, movement

    shift, movement = run_in_transaction(_op)

    cashier_name = shift.opener.display_name if shift.opener else ""
    if movement_type == CASH_MOVEMENT_IN:
        enqueue_receipt({
            "receipt_number": f"IN-{movement.id}",
            "is_cash_in_receipt": True,
            "cashier_name": cashier_name,
            "movement_name": name,
            "movement_amount": amount,
            "movement_note": note or "",
            "datetime": utcnow().isoformat(),
        })
    else:
        enqueue_receipt({
            "receipt_number": f"OUT-{movement.id}",
            "is_cash_out_receipt": True,
            "cashier_name": cashier_name,
            "movement_name": name,
            "movement_amount": amount,
            "movement_note": note or "",
            "datetime": utcnow().isoformat(),
        })
    return movement
