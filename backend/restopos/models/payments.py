from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_QRIS = "qris"
PAYMENT_METHOD_TRANSFER = "transfer"

VALID_PAYMENT_METHODS = (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_QRIS,
    PAYMENT_METHOD_TRANSFER,
)

TRANSACTION_STATUS_COMPLETED = "completed"
TRANSACTION_STATUS_CANCELLED = "cancelled"


class Payment(db.Model):
    """
    One settlement against an order (full or split).

    IMMUTABLE: payments are never edited. Order.paid_amount is the sum of
    an order's payments. Change given for cash is a receipt concern and is
    not stored.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_created_by_created", "created_by", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, index=True)
    note = db.Column(db.String(255), nullable=True)

    # Split payment that removed the items it paid for from the order
    is_item_split = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "note": self.note,
            "is_item_split": self.is_item_split,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class Transaction(db.Model):
    """
    Accounting record of a settlement.

    LIFECYCLE:
    - completed: counted in shift and revenue summaries
    - cancelled: terminal, set by a manager with a reason; excluded from
      analytics. Cancelling does not touch the order's paid_amount.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_created_by_date", "created_by", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, unique=True)

    total_amount = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_COMPLETED, index=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("transactions", lazy=True))
    payment = db.relationship("Payment", backref=db.backref("transaction", uselist=False))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "total_amount": self.total_amount,
            "payment_method": self.payment_method,
            "status": self.status,
            "transaction_date": to_utc_z(self.transaction_date),
            "created_by": self.created_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
        }
