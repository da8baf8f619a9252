"""
Payment processor tests: full payment, split bill, tender rules, receipts.
"""

import pytest

from restopos.extensions import db
from restopos.models import AdditionalCharge, DiningTable, OrderItem, Payment, PrintJob, Transaction
from restopos.services import order_service
from restopos.services import payment_service
from restopos.services.payment_service import PaymentError, NoOpenShiftError


def _items(order_id):
    return db.session.query(OrderItem).filter_by(order_id=order_id).order_by(OrderItem.id).all()


def _table_status(table_number):
    return db.session.query(DiningTable).filter_by(table_number=table_number).one().status


class TestFullPayment:
    """pay_order_in_full"""

    def test_pay_in_full_settles_and_frees_table(self, make_order, service_charge, open_shift, cashier, recorded_events):
        order = make_order()
        assert order.total_amount == 4400
        assert _table_status("1") == "occupied"

        result = payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)

        order = result["order"]
        assert order.paid_amount == 4400
        assert order.payment_status == "paid"
        assert order.order_status == "served"
        assert order.settled_at is not None
        assert result["table_numbers"] == ["1"]
        assert _table_status("1") == "available"

        assert result["payment"].amount == 4400
        assert result["transaction"].payment_id == result["payment"].id
        assert result["transaction"].total_amount == 4400
        assert ("payment_completed", {"order_id": order.id, "payment_status": "paid", "table_numbers": ["1"]}) in recorded_events

    def test_cash_change(self, make_order, open_shift, cashier):
        order = make_order()

        result = payment_service.pay_order_in_full(order.id, "cash", tendered_amount=5000, created_by=cashier.id)

        assert result["paid_amount"] == 5000
        assert result["change_amount"] == 1000
        assert result["payment"].amount == 4000

    def test_short_tender_rejected(self, make_order, open_shift):
        order = make_order()
        with pytest.raises(PaymentError):
            payment_service.pay_order_in_full(order.id, "cash", tendered_amount=3000)
        assert db.session.query(Payment).count() == 0

    def test_non_cash_overpay_rejected(self, make_order, open_shift):
        order = make_order()
        with pytest.raises(PaymentError):
            payment_service.pay_order_in_full(order.id, "card", tendered_amount=5000)

    def test_invalid_method_rejected(self, make_order, open_shift):
        order = make_order()
        with pytest.raises(PaymentError):
            payment_service.pay_order_in_full(order.id, "bitcoin")

    def test_requires_open_shift(self, make_order):
        order = make_order()
        with pytest.raises(NoOpenShiftError):
            payment_service.pay_order_in_full(order.id, "cash")
        assert order.payment_status == "unpaid"

    def test_paying_twice_rejected(self, make_order, open_shift, cashier):
        order = make_order()
        payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)

        with pytest.raises(PaymentError):
            payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)
        assert db.session.query(Payment).count() == 1

    def test_unknown_order(self, open_shift):
        with pytest.raises(order_service.OrderNotFoundError):
            payment_service.pay_order_in_full("missing", "cash")

    def test_receipt_queued_on_receipt_printer(self, make_order, open_shift, cashier, printers):
        order = make_order()

        result = payment_service.pay_order_in_full(order.id, "qris", created_by=cashier.id)

        receipts = db.session.query(PrintJob).filter_by(printer_id=printers["struk"].id).all()
        assert len(receipts) == 1
        payload = receipts[0].payload
        assert payload["receipt_number"] == f"TRX-{result['transaction'].id}"
        assert payload["cashier_name"] == "Citra Cashier"
        assert payload["waiter_name"] == "Wawan Waiter"
        assert payload["payment_method"] == "qris"
        assert payload["total"] == 4000


class TestSplitBill:
    """split_bill_payment"""

    def test_amount_split_then_remainder(self, make_order, service_charge, open_shift, cashier):
        order = make_order()

        first = payment_service.split_bill_payment(order.id, "cash", amount=2000, created_by=cashier.id)
        assert first["payment_status"] == "partial"
        assert first["order"].paid_amount == 2000
        assert first["table_numbers"] == []
        assert _table_status("1") == "occupied"

        second = payment_service.split_bill_payment(order.id, "card", amount=2400, created_by=cashier.id)
        assert second["payment_status"] == "paid"
        assert second["order"].paid_amount == 4400
        assert second["table_numbers"] == ["1"]
        assert _table_status("1") == "available"

    def test_split_above_remaining_rejected(self, make_order, service_charge, open_shift):
        order = make_order()
        payment_service.split_bill_payment(order.id, "cash", amount=4000)

        with pytest.raises(PaymentError):
            payment_service.split_bill_payment(order.id, "cash", amount=401)
        assert order_service.sum_payments(order.id) == 4000

    def test_split_requires_positive_amount(self, make_order, open_shift):
        order = make_order()
        with pytest.raises(PaymentError):
            payment_service.split_bill_payment(order.id, "cash", amount=0)

    def test_split_cash_tender_and_change(self, make_order, open_shift):
        order = make_order()

        result = payment_service.split_bill_payment(order.id, "cash", amount=1500, tendered_amount=2000)

        assert result["amount"] == 1500
        assert result["change_amount"] == 500

    def test_item_split_removes_paid_items(self, make_order, service_charge, open_shift, cashier):
        order = make_order()
        nasi, teh = _items(order.id)

        result = payment_service.split_bill_payment(
            order.id, "cash", items=[{"item_id": nasi.id, "qty": 1}], created_by=cashier.id
        )

        assert result["amount"] == 1100
        assert result["payment"].is_item_split is True
        assert [(i.product_name, i.qty) for i in _items(order.id)] == [("Nasi Goreng", 1), ("Es Teh", 1)]
        assert result["order"].payment_status == "partial"

        final = payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)
        assert final["payment"].amount == 3300
        assert final["order"].total_amount == 4400
        assert final["order"].paid_amount == 4400

    def test_item_split_of_everything_pays_exact_remaining(self, make_order, service_charge, open_shift):
        order = make_order()
        payment_service.split_bill_payment(order.id, "cash", amount=1)
        nasi, teh = _items(order.id)

        result = payment_service.split_bill_payment(
            order.id,
            "cash",
            items=[{"item_id": nasi.id, "qty": 2}, {"item_id": teh.id, "qty": 1}],
        )

        assert result["amount"] == 4399
        assert result["payment_status"] == "paid"
        assert _items(order.id) == []
        assert order_service.sum_payments(order.id) == result["order"].total_amount

    def test_item_split_shares_discount_by_subtotal(self, make_order, open_shift):
        order = make_order(nasi=0, teh=5)
        order_service.apply_order_discount(order.id, "percentage", 10)
        teh = _items(order.id)[0]

        result = payment_service.split_bill_payment(order.id, "cash", items=[{"item_id": teh.id, "qty": 2}])

        # 4000 of a 10000 subtotal carries 40% of the -1000 discount
        assert result["amount"] == 3600

    def test_item_split_qty_above_item_rejected(self, make_order, open_shift):
        order = make_order()
        teh = _items(order.id)[1]
        with pytest.raises(PaymentError):
            payment_service.split_bill_payment(order.id, "cash", items=[{"item_id": teh.id, "qty": 2}])
        assert _items(order.id)[1].qty == 1

    def test_item_split_foreign_item_rejected(self, make_order, open_shift):
        order = make_order(table_number="1")
        other = make_order(table_number="2")
        foreign = _items(other.id)[0]
        with pytest.raises(PaymentError):
            payment_service.split_bill_payment(order.id, "cash", items=[{"item_id": foreign.id, "qty": 1}])

    def test_split_prices_charges_activated_after_order(self, db_session, make_order, open_shift, cashier):
        by_items = make_order(table_number="1")
        by_amount = make_order(table_number="2")
        in_full = make_order(table_number="3")
        db_session.add(AdditionalCharge(name="Service", charge_type="percentage", value=10, is_active=True))
        db_session.commit()

        nasi, teh = _items(by_items.id)
        split = payment_service.split_bill_payment(
            by_items.id,
            "cash",
            items=[{"item_id": nasi.id, "qty": 2}, {"item_id": teh.id, "qty": 1}],
            created_by=cashier.id,
        )
        whole = payment_service.split_bill_payment(by_amount.id, "card", amount=4400, created_by=cashier.id)
        full = payment_service.pay_order_in_full(in_full.id, "cash", created_by=cashier.id)

        assert full["payment"].amount == 4400
        assert split["amount"] == 4400
        assert split["payment_status"] == "paid"
        assert whole["amount"] == 4400
        assert whole["payment_status"] == "paid"

    def test_payments_never_exceed_total(self, make_order, service_charge, open_shift):
        order = make_order()
        for amount in (1000, 1000, 1000):
            payment_service.split_bill_payment(order.id, "transfer", amount=amount)

        with pytest.raises(PaymentError):
            payment_service.split_bill_payment(order.id, "transfer", amount=2000)

        payment_service.split_bill_payment(order.id, "transfer", amount=1400)
        total = db.session.query(db.func.sum(Payment.amount)).filter(Payment.order_id == order.id).scalar()
        assert total == 4400
        assert db.session.query(Transaction).filter_by(order_id=order.id).count() == 4


class TestPrintBill:
    """print_bill"""

    def test_bill_queued(self, make_order, printers):
        order = make_order()

        job = payment_service.print_bill(order.id)

        assert job.printer_id == printers["struk"].id
        assert job.payload["is_bill"] is True
        assert job.payload["receipt_number"] == order.id

    def test_bill_total_matches_full_payment(self, make_order, service_charge, printers, open_shift, cashier):
        order = make_order()
        order = order_service.apply_order_discount(order.id, "percentage", 10)
        assert order.total_amount == 3960

        job = payment_service.print_bill(order.id)
        result = payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)

        assert job.payload["total"] == 4000
        assert result["payment"].amount == job.payload["total"]

    def test_bill_without_receipt_printer(self, make_order, printers):
        printers["struk"].is_active = False
        db.session.commit()
        order = make_order()

        assert payment_service.print_bill(order.id) is None
