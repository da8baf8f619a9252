# Overview: Service-layer reporting for orders, revenue, voids and charges.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func, and_, exists

from ..extensions import db
from ..models import Order, OrderItem, OrderAdditionalCharge, Transaction, User
from ..models.orders import MANUAL_DISCOUNT_NAME, MANUAL_COMPLIMENT_NAME
from ..models.payments import TRANSACTION_STATUS_CANCELLED
from ..time_utils import parse_iso_datetime, to_utc_z


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


PERIOD_DAILY = "daily"
PERIOD_WEEKLY = "weekly"
PERIOD_MONTHLY = "monthly"


def _parse_range(start, end) -> tuple[datetime | None, datetime | None]:
    start_dt = parse_iso_datetime(start) if isinstance(start, str) else start
    end_dt = parse_iso_datetime(end) if isinstance(end, str) else end
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must not be after end")
    return start_dt, end_dt


def _not_cancelled():
    return ~exists().where(and_(
        Transaction.order_id == Order.id,
        Transaction.status == TRANSACTION_STATUS_CANCELLED,
    ))


def _counted_orders(query, start_dt, end_dt):
    """Voided, merged-away and cancelled orders never count as revenue."""
    query = query.filter(
        Order.voided_at.is_(None),
        Order.is_merged.is_(False),
        _not_cancelled(),
    )
    if start_dt:
        query = query.filter(Order.created_at >= start_dt)
    if end_dt:
        query = query.filter(Order.created_at <= end_dt)
    return query


def order_analytics(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    query = _counted_orders(
        db.session.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
            func.avg(Order.total_amount),
            func.avg(Order.basket_size),
            func.avg(Order.pax),
            func.coalesce(func.sum(Order.pax), 0),
        ).filter(Order.settled_at.isnot(None)),
        start_dt,
        end_dt,
    )
    total_orders, revenue, avg_value, avg_basket, avg_pax, total_pax = query.one()
    return {
        "total_orders": int(total_orders or 0),
        "total_revenue": int(revenue or 0),
        "avg_order_value": float(avg_value or 0),
        "avg_basket_size": float(avg_basket or 0),
        "avg_pax": float(avg_pax or 0),
        "total_pax": int(total_pax or 0),
    }


def revenue_by_payment_status(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    rows = _counted_orders(
        db.session.query(
            Order.payment_status,
            func.coalesce(func.sum(Order.total_amount), 0),
        ),
        start_dt,
        end_dt,
    ).group_by(Order.payment_status).all()

    result = {"paid": 0, "partial": 0, "unpaid": 0}
    for status, amount in rows:
        result[status] = int(amount or 0)
    return result


def voided_total(start=None, end=None) -> int:
    start_dt, end_dt = _parse_range(start, end)
    query = db.session.query(func.coalesce(func.sum(Order.total_amount), 0)).filter(Order.voided_at.isnot(None))
    if start_dt:
        query = query.filter(Order.voided_at >= start_dt)
    if end_dt:
        query = query.filter(Order.voided_at <= end_dt)
    return int(query.scalar() or 0)


def cancelled_total(start=None, end=None) -> int:
    start_dt, end_dt = _parse_range(start, end)
    query = db.session.query(func.coalesce(func.sum(Transaction.total_amount), 0)).filter(
        Transaction.cancelled_at.isnot(None)
    )
    if start_dt:
        query = query.filter(Transaction.cancelled_at >= start_dt)
    if end_dt:
        query = query.filter(Transaction.cancelled_at <= end_dt)
    return int(query.scalar() or 0)


def charges_summary(start=None, end=None) -> dict:
    """
    Charges applied on settled orders, grouped by charge.

    Discounts and compliments group by name only; standing charges group by
    (name, type, value) so a changed rate shows as its own line.
    """
    start_dt, end_dt = _parse_range(start, end)
    rows = _counted_orders(
        db.session.query(
            OrderAdditionalCharge.name,
            OrderAdditionalCharge.charge_type,
            OrderAdditionalCharge.value,
            OrderAdditionalCharge.applied_amount,
        )
        .join(Order, Order.id == OrderAdditionalCharge.order_id)
        .filter(Order.settled_at.isnot(None)),
        start_dt,
        end_dt,
    ).all()

    manual_names = {MANUAL_DISCOUNT_NAME.lower(), MANUAL_COMPLIMENT_NAME.lower()}
    groups: dict[tuple, dict] = {}
    for name, charge_type, value, applied in rows:
        if name.lower() in manual_names:
            key = (name, name.lower(), 0)
        else:
            key = (name, charge_type, value)
        group = groups.setdefault(key, {
            "name": name,
            "charge_type": charge_type,
            "value": value,
            "total_amount": 0,
        })
        group["total_amount"] += applied

    breakdown = sorted(groups.values(), key=lambda g: g["total_amount"], reverse=True)
    return {
        "total": sum(g["total_amount"] for g in breakdown),
        "breakdown": breakdown,
    }


def products_sold(start=None, end=None) -> int:
    start_dt, end_dt = _parse_range(start, end)
    query = _counted_orders(
        db.session.query(func.coalesce(func.sum(OrderItem.qty), 0)).join(Order, Order.id == OrderItem.order_id),
        start_dt,
        end_dt,
    )
    return int(query.scalar() or 0)


def revenue_time_series(start, end=None, period: str = PERIOD_DAILY) -> list[dict]:
    """
    Revenue over time.

    daily   -> 24 hourly buckets ("00".."23") for the start date
    weekly / monthly -> one bucket per day between start and end
    """
    start_dt, end_dt = _parse_range(start, end)
    if not start_dt:
        raise ReportError("start is required")

    if period == PERIOD_DAILY:
        day_start = start_dt.replace(hour=0, minute=0, second=0, microsecond=0)
        day_end = day_start + timedelta(days=1)
        label = func.strftime("%H", Order.created_at)
        rows = _counted_orders(
            db.session.query(label.label("bucket"), func.coalesce(func.sum(Order.total_amount), 0)),
            day_start,
            None,
        ).filter(Order.created_at < day_end).group_by(label).all()
        by_label = {bucket: int(amount or 0) for bucket, amount in rows}
        return [{"time_label": f"{hour:02d}", "revenue": by_label.get(f"{hour:02d}", 0)} for hour in range(24)]

    if period not in (PERIOD_WEEKLY, PERIOD_MONTHLY):
        raise ReportError("period must be daily, weekly, or monthly")
    if not end_dt:
        raise ReportError("end is required for weekly and monthly series")

    label = func.strftime("%Y-%m-%d", Order.created_at)
    rows = _counted_orders(
        db.session.query(label.label("bucket"), func.coalesce(func.sum(Order.total_amount), 0)),
        start_dt,
        end_dt,
    ).group_by(label).all()
    by_label = {bucket: int(amount or 0) for bucket, amount in rows}

    series = []
    day = start_dt.date()
    while day <= end_dt.date():
        key = day.isoformat()
        series.append({"time_label": key, "revenue": by_label.get(key, 0)})
        day += timedelta(days=1)
    return series


def _voided_query(start_dt, end_dt):
    query = db.session.query(Order).filter(Order.voided_at.isnot(None))
    if start_dt:
        query = query.filter(Order.voided_at >= start_dt)
    if end_dt:
        query = query.filter(Order.voided_at <= end_dt)
    return query


def list_voided_orders(start=None, end=None, limit: int = 50, offset: int = 0) -> list[dict]:
    start_dt, end_dt = _parse_range(start, end)
    orders = (
        _voided_query(start_dt, end_dt)
        .order_by(Order.voided_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    voider_ids = {o.voided_by for o in orders if o.voided_by}
    names = {}
    if voider_ids:
        names = {u.id: u.display_name for u in db.session.query(User).filter(User.id.in_(voider_ids)).all()}
    return [
        {
            "order_id": o.id,
            "table_number": o.table_number,
            "customer_name": o.customer_name,
            "total_amount": o.total_amount,
            "voided_at": to_utc_z(o.voided_at),
            "voided_by": o.voided_by,
            "voided_by_name": names.get(o.voided_by, ""),
            "void_reason": o.void_reason,
        }
        for o in orders
    ]


def count_voided_orders(start=None, end=None) -> int:
    start_dt, end_dt = _parse_range(start, end)
    return _voided_query(start_dt, end_dt).count()


def dashboard(start=None, end=None) -> dict:
    """Everything the back-office analytics page shows for one range."""
    return {
        "orders": order_analytics(start, end),
        "revenue_by_payment_status": revenue_by_payment_status(start, end),
        "voided_total": voided_total(start, end),
        "cancelled_total": cancelled_total(start, end),
        "additional_charges": charges_summary(start, end),
        "products_sold": products_sold(start, end),
    }
