from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TABLE_STATUS_AVAILABLE = "available"
TABLE_STATUS_OCCUPIED = "occupied"


class Printer(db.Model):
    """
    Network printer registered with the store.

    printer_type doubles as the routing destination for order items
    (kitchen, bar, ...). Receipt printers use type "struk" or "cashier".
    """
    __tablename__ = "printers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    printer_type = db.Column(db.String(32), nullable=False, index=True)
    ip_address = db.Column(db.String(64), nullable=True)
    port = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "printer_type": self.printer_type,
            "ip_address": self.ip_address,
            "port": self.port,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Category(db.Model):
    """Menu category. Decides which printer receives its items."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    printer_id = db.Column(db.Integer, db.ForeignKey("printers.id"), nullable=True, index=True)

    printer = db.relationship("Printer", backref=db.backref("categories", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "printer_id": self.printer_id,
        }


class Product(db.Model):
    """
    Menu item.

    Order items copy name and price at order time, so edits here never
    rewrite historical orders.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "category_id": self.category_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DiningTable(db.Model):
    """Physical table on the floor. Occupied while it carries an open order."""
    __tablename__ = "tables"
    __table_args__ = (
        db.UniqueConstraint("table_number", name="uq_tables_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    table_number = db.Column(db.String(16), nullable=False)
    capacity = db.Column(db.Integer, nullable=False, default=4)
    status = db.Column(db.String(16), nullable=False, default=TABLE_STATUS_AVAILABLE, index=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "capacity": self.capacity,
            "status": self.status,
            "updated_at": to_utc_z(self.updated_at),
        }
