"""
Void and cancel tests: manager PIN gating and terminal states.
"""

import pytest

from restopos.extensions import db
from restopos.models import DiningTable
from restopos.services import payment_service
from restopos.services import void_service
from restopos.services.auth_service import AuthorizationError
from restopos.services.order_service import OrderAlreadyPaidError, OrderVoidedError, OrderNotFoundError
from restopos.services.void_service import TransactionNotFoundError, TransactionAlreadyCancelledError


class TestVoidOrder:
    """void_order"""

    def test_void_unpaid_order(self, make_order, manager, recorded_events):
        order = make_order(table_number="2")

        result = void_service.void_order(order.id, "1111", reason="  customer left  ")

        order = result["order"]
        assert order.voided_at is not None
        assert order.voided_by == manager.id
        assert order.void_reason == "customer left"
        assert result["table_numbers"] == ["2"]
        assert db.session.query(DiningTable).filter_by(table_number="2").one().status == "available"
        assert "order_voided" in [name for name, _ in recorded_events]

    def test_admin_pin_also_authorizes(self, make_order, admin):
        order = make_order()
        result = void_service.void_order(order.id, "2222")
        assert result["voided_by"].id == admin.id

    def test_void_paid_order_rejected(self, make_order, manager, open_shift, cashier):
        order = make_order()
        payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)

        with pytest.raises(OrderAlreadyPaidError):
            void_service.void_order(order.id, "1111")

    def test_void_twice_rejected(self, make_order, manager):
        order = make_order()
        void_service.void_order(order.id, "1111")

        with pytest.raises(OrderVoidedError):
            void_service.void_order(order.id, "1111")

    def test_wrong_pin_rejected(self, make_order, manager):
        order = make_order()
        with pytest.raises(AuthorizationError):
            void_service.void_order(order.id, "9999")
        assert order.voided_at is None

    def test_cashier_pin_not_authorized(self, make_order, manager, cashier):
        order = make_order()
        with pytest.raises(AuthorizationError):
            void_service.void_order(order.id, "3333")

    def test_malformed_pin_rejected(self, make_order, manager):
        order = make_order()
        with pytest.raises(AuthorizationError):
            void_service.void_order(order.id, "12ab")

    def test_unknown_order(self, manager):
        with pytest.raises(OrderNotFoundError):
            void_service.void_order("missing", "1111")

    def test_injected_authorizer(self, make_order, manager):
        order = make_order()
        calls = []

        def fake_authorize(roles, pin):
            calls.append((tuple(roles), pin))
            return manager

        void_service.void_order(order.id, "0000", authorize=fake_authorize)

        assert calls == [(("manager", "admin"), "0000")]

    def test_voided_order_cannot_be_paid(self, make_order, manager, open_shift):
        order = make_order()
        void_service.void_order(order.id, "1111")

        with pytest.raises(OrderVoidedError):
            payment_service.pay_order_in_full(order.id, "cash")


class TestCancelTransaction:
    """cancel_transaction"""

    def _paid_transaction(self, make_order, cashier):
        order = make_order()
        return payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)["transaction"]

    def test_cancel_completed_transaction(self, make_order, manager, open_shift, cashier):
        transaction = self._paid_transaction(make_order, cashier)

        cancelled = void_service.cancel_transaction(transaction.id, "1111", reason="wrong table")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by == manager.id
        assert cancelled.cancel_reason == "wrong table"
        assert cancelled.cancelled_at is not None

    def test_cancel_keeps_order_paid_amount(self, make_order, manager, open_shift, cashier):
        transaction = self._paid_transaction(make_order, cashier)

        void_service.cancel_transaction(transaction.id, "1111")

        order = transaction.order
        assert order.paid_amount == 4000
        assert order.payment_status == "paid"

    def test_cancel_twice_rejected(self, make_order, manager, open_shift, cashier):
        transaction = self._paid_transaction(make_order, cashier)
        void_service.cancel_transaction(transaction.id, "1111")

        with pytest.raises(TransactionAlreadyCancelledError):
            void_service.cancel_transaction(transaction.id, "1111")

    def test_cancel_unknown_transaction(self, manager):
        with pytest.raises(TransactionNotFoundError):
            void_service.cancel_transaction(424242, "1111")

    def test_cancel_requires_manager(self, make_order, manager, open_shift, cashier):
        transaction = self._paid_transaction(make_order, cashier)
        with pytest.raises(AuthorizationError):
            void_service.cancel_transaction(transaction.id, "3333")

    def test_list_transactions(self, make_order, open_shift, cashier):
        self._paid_transaction(make_order, cashier)
        self._paid_transaction(make_order, cashier)

        rows, total = void_service.list_transactions(limit=1)

        assert total == 2
        assert len(rows) == 1
