from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_CLOSED = "closed"

CASH_MOVEMENT_IN = "in"
CASH_MOVEMENT_OUT = "out"


class CashierShift(db.Model):
    """
    One cashier's working period at the till.

    WHY: Cash accountability. Sales, voids and cash movements inside the
    shift window are reconciled at close, and the drawer balance carries
    over to the next shift.

    LIFECYCLE:
    - open: at most one at any time (partial unique index)
    - closed: terminal; closed plainly or via handover (handover_to set)

    carry_over_cash = opening_cash + cash sales + cash in - cash out
    """
    __tablename__ = "cashier_shifts"
    __table_args__ = (
        db.Index(
            "uq_cashier_shifts_single_open",
            "status",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)

    opened_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    opening_cash = db.Column(db.Integer, nullable=False, default=0)

    closed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # Closing breakdown per payment method
    closing_cash = db.Column(db.Integer, nullable=True)
    closing_card = db.Column(db.Integer, nullable=True)
    closing_qris = db.Column(db.Integer, nullable=True)
    closing_transfer = db.Column(db.Integer, nullable=True)
    total_sales = db.Column(db.Integer, nullable=True)
    total_cash_in = db.Column(db.Integer, nullable=True)
    total_cash_out = db.Column(db.Integer, nullable=True)
    carry_over_cash = db.Column(db.Integer, nullable=True)

    previous_shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=True)
    handover_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    opener = db.relationship("User", foreign_keys=[opened_by])
    closer = db.relationship("User", foreign_keys=[closed_by])
    handover_user = db.relationship("User", foreign_keys=[handover_to])
    previous_shift = db.relationship("CashierShift", remote_side=[id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "opened_by": self.opened_by,
            "opened_by_name": self.opener.display_name if self.opener else None,
            "opened_at": to_utc_z(self.opened_at),
            "opening_cash": self.opening_cash,
            "closed_by": self.closed_by,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closing_cash": self.closing_cash,
            "closing_card": self.closing_card,
            "closing_qris": self.closing_qris,
            "closing_transfer": self.closing_transfer,
            "total_sales": self.total_sales,
            "total_cash_in": self.total_cash_in,
            "total_cash_out": self.total_cash_out,
            "carry_over_cash": self.carry_over_cash,
            "previous_shift_id": self.previous_shift_id,
            "handover_to": self.handover_to,
        }


class CashMovement(db.Model):
    """
    Ad-hoc cash put into or taken out of the drawer during a shift.

    'out' movements require a note (who took the money and why).
    """
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cashier_shifts.id"), nullable=False, index=True)
    movement_type = db.Column(db.String(8), nullable=False)  # in, out
    name = db.Column(db.String(128), nullable=False)  # counterpart
    amount = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("CashierShift", backref=db.backref("cash_movements", lazy=True, order_by="CashMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "movement_type": self.movement_type,
            "name": self.name,
            "amount": self.amount,
            "note": self.note,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
