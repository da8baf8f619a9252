# Overview: Service-layer operations for merging several open orders onto one table.

"""
Table Merge Service

WHY: Parties join tables. Their open orders become one bill on the target
table while the source orders stay on record, pointing at the order that
absorbed them.

DESIGN PRINCIPLES:
- At least two sources; every source unsettled and not merged already
- Only items move; charges are derived fresh for the merged order and the
  sources keep their last totals as history
- Paying the merged order frees every source table (via merged_from)
"""

from __future__ import annotations

from ..extensions import db, events
from ..models import Order, OrderItem
from ..models.catalog import TABLE_STATUS_OCCUPIED
from ..time_utils import utcnow
from . import charge_service
from . import order_service
from .concurrency import lock_for_update, run_in_transaction
from .sequence_service import next_order_id


class MergeError(Exception):
    """Raised for table merge errors."""
    pass


def merge_tables(source_order_ids: list[str], target_table_number: str) -> Order:
    """
    Merge source orders into a new order on target_table_number.

    pax is the sum of source pax; customer and creator are the first
    non-empty values among the sources, in the order given.

    Raises:
        MergeError: fewer than two sources, missing target, or a source
            that is unknown, paid (fully or partly), voided or already merged
    """
    source_ids = []
    for order_id in source_order_ids or []:
        if order_id and order_id not in source_ids:
            source_ids.append(order_id)
    if len(source_ids) < 2:
        raise MergeError("At least two orders are required to merge")
    target_table_number = (target_table_number or "").strip()
    if not target_table_number:
        raise MergeError("Target table is required")

    def _op() -> Order:
        sources = []
        for order_id in source_ids:
            order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
            if not order:
                raise MergeError(f"Order {order_id} not found")
            if order.settled_at is not None:
                raise MergeError(f"Order {order_id} is already paid")
            if order.paid_amount > 0:
                raise MergeError(f"Order {order_id} already has payments")
            if order.is_merged:
                raise MergeError(f"Order {order_id} is already merged")
            if order.voided_at is not None:
                raise MergeError(f"Order {order_id} has been voided")
            sources.append(order)

        customer_name = next((o.customer_name for o in sources if o.customer_name), None)
        customer_phone = next((o.customer_phone for o in sources if o.customer_phone), None)
        created_by = next((o.created_by for o in sources if o.created_by), None)

        merged = Order(
            id=next_order_id(target_table_number),
            table_number=target_table_number,
            customer_name=customer_name,
            customer_phone=customer_phone,
            pax=sum(o.pax or 0 for o in sources),
            created_by=created_by,
            created_at=utcnow(),
        )
        db.session.add(merged)
        db.session.flush()

        for source in sources:
            for item in db.session.query(OrderItem).filter_by(order_id=source.id).all():
                item.order_id = merged.id
            source.merged_from = merged.id
            source.is_merged = True
        db.session.flush()

        order_service._set_table_status([target_table_number], TABLE_STATUS_OCCUPIED)
        charge_service.recalculate(merged.id)
        return merged

    merged = run_in_transaction(_op)

    events.emit("orders_merged", {
        "new_order_id": merged.id,
        "target_table_number": merged.table_number,
        "merged_from_orders": source_ids,
    })
    return merged
