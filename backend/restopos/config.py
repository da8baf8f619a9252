# backend/restopos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///restopos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # bcrypt cost factor for staff PINs (tests lower this)
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    PAYMENT_METHODS = ("cash", "card", "qris", "transfer")

    # Routing fallback when a product's category has no printer
    DEFAULT_ITEM_DESTINATION = os.environ.get("DEFAULT_ITEM_DESTINATION", "kitchen")

    # Receipt printer lookup order
    RECEIPT_PRINTER_TYPES = ("struk", "cashier")
