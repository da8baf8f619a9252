from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_SERVED = "served"

ITEM_STATUS_PENDING = "pending"
ITEM_STATUS_COOKING = "cooking"
ITEM_STATUS_READY = "ready"
ITEM_STATUS_SERVED = "served"

VALID_ITEM_STATUSES = (
    ITEM_STATUS_PENDING,
    ITEM_STATUS_COOKING,
    ITEM_STATUS_READY,
    ITEM_STATUS_SERVED,
)

CHARGE_TYPE_PERCENTAGE = "percentage"
CHARGE_TYPE_FIXED = "fixed"

VALID_CHARGE_TYPES = (CHARGE_TYPE_PERCENTAGE, CHARGE_TYPE_FIXED)

# Names of order-scoped manual adjustments (charge_id IS NULL)
MANUAL_DISCOUNT_NAME = "Diskon"
MANUAL_COMPLIMENT_NAME = "Kompliment"


class Order(db.Model):
    """
    Dine-in order for one table.

    WHY: The order is the unit of billing. Items, standing charges and
    manual adjustments roll up into total_amount; payments roll up into
    paid_amount.

    IDENTITY: "{ddmmyy}-{table}-{seq:02d}", seq allocated from
    order_sequences per (date, table).

    LIFECYCLE:
    - unpaid/partial: items, discounts and compliments may change
    - paid (settled_at set): terminal
    - voided (voided_at set): terminal
    - merged (is_merged, merged_from -> absorbing order): terminal

    payment_status is derived from settled_at and paid_amount; it has no
    column and cannot be assigned.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_table_created", "table_number", "created_at"),
        db.Index("ix_orders_open", "settled_at", "is_merged", "voided_at"),
    )

    id = db.Column(db.String(32), primary_key=True)
    table_number = db.Column(db.String(16), nullable=False)

    customer_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_id = db.Column(db.Integer, nullable=True)

    pax = db.Column(db.Integer, nullable=False, default=1)
    basket_size = db.Column(db.Integer, nullable=False, default=0)

    # Whole currency units
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    paid_amount = db.Column(db.Integer, nullable=False, default=0)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order_status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Merge tracking
    is_merged = db.Column(db.Boolean, nullable=False, default=False, index=True)
    merged_from = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=True, index=True)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    voided_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    creator = db.relationship("User", foreign_keys=[created_by])
    voider = db.relationship("User", foreign_keys=[voided_by])
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def payment_status(self) -> str:
        if self.settled_at is not None:
            return PAYMENT_STATUS_PAID
        if (self.paid_amount or 0) > 0:
            return PAYMENT_STATUS_PARTIAL
        return PAYMENT_STATUS_UNPAID

    @payment_status.expression
    def payment_status(cls):
        return db.case(
            (cls.settled_at.isnot(None), PAYMENT_STATUS_PAID),
            (cls.paid_amount > 0, PAYMENT_STATUS_PARTIAL),
            else_=PAYMENT_STATUS_UNPAID,
        )

    @property
    def remaining_amount(self) -> int:
        return max(0, (self.total_amount or 0) - (self.paid_amount or 0))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_id": self.customer_id,
            "pax": self.pax,
            "basket_size": self.basket_size,
            "total_amount": self.total_amount,
            "paid_amount": self.paid_amount,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "created_by": self.created_by,
            "is_merged": self.is_merged,
            "merged_from": self.merged_from,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["charges"] = [charge.to_dict() for charge in self.charges]
        return data


class OrderItem(db.Model):
    """
    Line on an order.

    SNAPSHOT: product_name and price are copied from the catalog at order
    time. qty may only change while item_status is pending and the order
    is not settled.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False)
    qty = db.Column(db.Integer, nullable=False)

    # kitchen, bar, ... (printer_type of the category printer)
    destination = db.Column(db.String(32), nullable=False, default="kitchen")
    item_status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_PENDING)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))

    @property
    def line_total(self) -> int:
        return self.price * self.qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price": self.price,
            "qty": self.qty,
            "total": self.line_total,
            "destination": self.destination,
            "item_status": self.item_status,
            "created_at": to_utc_z(self.created_at),
        }


class AdditionalCharge(db.Model):
    """
    Store-wide standing charge (service fee, tax, ...).

    Active charges are re-applied to every open order on recalculation.
    Changing this table does not touch existing orders until the explicit
    refresh batch runs.
    """
    __tablename__ = "additional_charges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    charge_type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    value = db.Column(db.Float, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "charge_type": self.charge_type,
            "value": self.value,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderAdditionalCharge(db.Model):
    """
    Charge applied to one order.

    - charge_id set: derived from a standing charge, rebuilt on every
      recalculation
    - charge_id NULL: manual adjustment (Diskon, Kompliment), re-derived
      from (charge_type, value) on recalculation

    applied_amount is signed: positive adds, negative deducts.
    """
    __tablename__ = "order_additional_charges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    charge_id = db.Column(db.Integer, db.ForeignKey("additional_charges.id"), nullable=True, index=True)

    name = db.Column(db.String(128), nullable=False)
    charge_type = db.Column(db.String(16), nullable=False)
    value = db.Column(db.Float, nullable=False, default=0)
    applied_amount = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("charges", lazy=True, order_by="OrderAdditionalCharge.id"))

    @property
    def is_manual(self) -> bool:
        return self.charge_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "charge_id": self.charge_id,
            "name": self.name,
            "charge_type": self.charge_type,
            "value": self.value,
            "applied_amount": self.applied_amount,
        }


class OrderSequence(db.Model):
    """
    Atomic per-(date, table) order id counter.

    WHY: Order ids are human-readable ("190326-A1-03"). Allocating the
    suffix from a counter row avoids scanning and parsing existing ids,
    and voided/merged ids keep their suffix.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("order_date", "table_number", name="uq_order_sequences_date_table"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_date = db.Column(db.String(6), nullable=False)  # ddmmyy
    table_number = db.Column(db.String(16), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
