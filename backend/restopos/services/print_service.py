# Overview: Service-layer operations for the print queue; kitchen tickets and receipts.

"""
Print Queue Service

WHY: Printers are slow and sometimes offline. The billing engine only
writes queue rows; a dispatch worker (outside this package) drains them.

DESIGN PRINCIPLES:
- Kitchen tickets are written inside the order's own transaction
- Receipts are written after the business transaction commits and are
  best-effort: a failed receipt never undoes a payment
- No automatic retry; retry_print_job clones a failed job explicitly
"""

from __future__ import annotations

import json

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Printer, PrintJob, OrderAdditionalCharge
from ..models.printing import (
    PRINT_STATUS_PENDING,
    PRINT_STATUS_FAILED,
    VALID_PRINT_STATUSES,
)
from ..time_utils import utcnow
from .concurrency import run_in_transaction


class PrintQueueError(Exception):
    """Raised for print queue operation errors."""
    pass


# =============================================================================
# QUEUE WRITES
# =============================================================================

def enqueue_print_job(printer_id: int, payload: dict) -> PrintJob:
    """Add a pending job to the current session (caller commits)."""
    job = PrintJob(
        printer_id=printer_id,
        data=json.dumps(payload, default=str),
        status=PRINT_STATUS_PENDING,
        retry_count=0,
    )
    db.session.add(job)
    db.session.flush()
    return job


def get_receipt_printer() -> Printer | None:
    """First active printer of the preferred receipt type, else None."""
    for printer_type in current_app.config.get("RECEIPT_PRINTER_TYPES", ("struk", "cashier")):
        printer = (
            db.session.query(Printer)
            .filter(Printer.printer_type == printer_type, Printer.is_active.is_(True))
            .order_by(Printer.id)
            .first()
        )
        if printer:
            return printer
    return None


def enqueue_receipt(payload: dict) -> PrintJob | None:
    """
    Queue a receipt on the receipt printer, outside any business transaction.

    Returns None when no receipt printer exists or the write failed; both
    are logged and neither is raised.
    """
    receipt_number = payload.get("receipt_number")
    try:
        printer = get_receipt_printer()
        if not printer:
            current_app.logger.info("No receipt printer configured, skipping %s", receipt_number)
            return None
        job = enqueue_print_job(printer.id, payload)
        db.session.commit()
        return job
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to enqueue receipt %s", receipt_number)
        return None


def retry_print_job(job_id: int) -> PrintJob:
    """
    Clone a failed job as a new pending job.

    The clone's payload carries retry_of pointing at the first job in the
    retry chain. The failed job is left untouched.

    Raises:
        PrintQueueError: job not found or not failed
    """
    def _op() -> PrintJob:
        job = db.session.query(PrintJob).filter_by(id=job_id).first()
        if not job:
            raise PrintQueueError("Print job not found")
        if job.status != PRINT_STATUS_FAILED:
            raise PrintQueueError("Only failed print jobs can be retried")

        payload = job.payload
        if not payload.get("retry_of"):
            payload["retry_of"] = job.id

        return enqueue_print_job(job.printer_id, payload)

    return run_in_transaction(_op)


def mark_print_job(job_id: int, status: str, error_message: str | None = None) -> PrintJob:
    """Worker-side status update."""
    if status not in VALID_PRINT_STATUSES:
        raise PrintQueueError(f"Invalid print status: {status}")

    def _op() -> PrintJob:
        job = db.session.query(PrintJob).filter_by(id=job_id).first()
        if not job:
            raise PrintQueueError("Print job not found")
        job.status = status
        job.error_message = error_message
        if status == PRINT_STATUS_FAILED:
            job.retry_count = (job.retry_count or 0) + 1
        job.updated_at = utcnow()
        return job

    return run_in_transaction(_op)


def list_print_jobs(status: str | None = None, limit: int = 50) -> list[PrintJob]:
    query = db.session.query(PrintJob)
    if status:
        query = query.filter(PrintJob.status == status)
    return query.order_by(PrintJob.created_at.desc(), PrintJob.id.desc()).limit(limit).all()


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

def item_lines(items) -> list[dict]:
    return [
        {
            "name": item.product_name,
            "quantity": item.qty,
            "price": item.price,
            "total": item.price * item.qty,
        }
        for item in items
    ]


def charges_breakdown(order_id: str) -> list[dict]:
    rows = (
        db.session.query(OrderAdditionalCharge)
        .filter_by(order_id=order_id)
        .order_by(OrderAdditionalCharge.id)
        .all()
    )
    return [
        {
            "name": row.name,
            "charge_type": row.charge_type,
            "value": row.value,
            "amount": row.applied_amount,
        }
        for row in rows
    ]


def order_receipt_payload(
    order,
    items,
    *,
    receipt_number: str,
    waiter_name: str = "",
    cashier_name: str = "",
    payment_method: str = "",
    paid_amount: int = 0,
    change_amount: int = 0,
    **flags,
) -> dict:
    """Receipt payload for an order. Kind is chosen through boolean flags."""
    charges = charges_breakdown(order.id)
    payload = {
        "order_id": order.id,
        "receipt_number": receipt_number,
        "table_number": order.table_number,
        "customer_name": order.customer_name or "",
        "waiter_name": waiter_name,
        "cashier_name": cashier_name,
        "items": item_lines(items),
        "subtotal": sum(item.price * item.qty for item in items),
        "additional_charges": charges,
        "additional_charges_total": sum(c["amount"] for c in charges),
        "total": order.total_amount,
        "payment_method": payment_method,
        "paid_amount": paid_amount,
        "change_amount": change_amount,
        "datetime": utcnow().isoformat(),
    }
    payload.update(flags)
    return payload
