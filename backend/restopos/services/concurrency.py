# Overview: Transaction scoping and row locking shared by every mutating service.

from __future__ import annotations

from typing import Callable, TypeVar

from ..extensions import db

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_in_transaction(func: Callable[[], T]) -> T:
    """
    Execute one unit of work as a single database transaction.

    Commits when func returns, rolls back and re-raises on any exception.
    Never retries: conflicts and failures surface to the caller, who
    decides whether to try again.
    """
    try:
        result = func()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return result
