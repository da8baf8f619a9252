from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


PRINT_STATUS_PENDING = "pending"
PRINT_STATUS_PRINTING = "printing"
PRINT_STATUS_DONE = "done"
PRINT_STATUS_FAILED = "failed"

VALID_PRINT_STATUSES = (
    PRINT_STATUS_PENDING,
    PRINT_STATUS_PRINTING,
    PRINT_STATUS_DONE,
    PRINT_STATUS_FAILED,
)


class PrintJob(db.Model):
    """
    Queued print job (kitchen ticket or receipt).

    WHY: Printing is asynchronous. The engine writes a row; a dispatch
    worker picks pending rows and talks to the printer. A failed job is
    never retried automatically; an explicit retry clones it with a
    retry_of back-reference in the payload.
    """
    __tablename__ = "print_queue"
    __table_args__ = (
        db.Index("ix_print_queue_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    printer_id = db.Column(db.Integer, db.ForeignKey("printers.id"), nullable=False, index=True)

    # JSON payload; receipt kinds are distinguished by boolean flags
    data = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PRINT_STATUS_PENDING)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    printer = db.relationship("Printer", backref=db.backref("print_jobs", lazy=True))

    @property
    def payload(self) -> dict:
        return json.loads(self.data) if self.data else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "printer_id": self.printer_id,
            "data": self.payload,
            "status": self.status,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
