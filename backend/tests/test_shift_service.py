"""
Cashier shift ledger tests: open, close, handover, cash movements.
"""

import pytest

from restopos.extensions import db
from restopos.models import CashierShift, PrintJob
from restopos.services import payment_service
from restopos.services import shift_service
from restopos.services import void_service
from restopos.services.shift_service import (
    ShiftError,
    ShiftConflictError,
    ShiftNotFoundError,
    CashierNotFoundError,
    PendingOrdersError,
    HandoverPinError,
)


def _shift(shift_id):
    return db.session.query(CashierShift).filter_by(id=shift_id).one()


def _receipts():
    return [job.payload for job in db.session.query(PrintJob).order_by(PrintJob.id).all()]


class TestOpenShift:
    """open_shift"""

    def test_open_shift(self, cashier):
        shift = shift_service.open_shift(cashier.id, opening_cash=100000)

        assert shift.status == "open"
        assert shift.opened_by == cashier.id
        assert shift.opening_cash == 100000
        assert shift.previous_shift_id is None
        assert shift_service.get_open_shift().id == shift.id

    def test_only_one_open_shift(self, open_shift, cashier2):
        with pytest.raises(ShiftConflictError):
            shift_service.open_shift(cashier2.id, opening_cash=0)
        assert db.session.query(CashierShift).count() == 1

    def test_negative_opening_cash_rejected(self, cashier):
        with pytest.raises(ShiftError):
            shift_service.open_shift(cashier.id, opening_cash=-1)

    def test_opening_defaults_to_carry_over(self, make_order, open_shift, cashier, cashier2):
        order = make_order()
        payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)
        shift_service.create_cash_movement(created_by=cashier.id, movement_type="in", name="Owner", amount=10000)
        shift_service.create_cash_movement(
            created_by=cashier.id, movement_type="out", name="Ice supplier", amount=3000, note="ice"
        )
        report = shift_service.close_shift(cashier.id)
        assert report["carry_over_cash"] == 50000 + 4000 + 10000 - 3000

        next_shift = shift_service.open_shift(cashier2.id)

        assert next_shift.opening_cash == 61000
        assert next_shift.previous_shift_id == open_shift.id


class TestCloseShift:
    """close_shift"""

    def test_close_reconciles_by_method(self, make_order, service_charge, open_shift, cashier):
        cash_order = make_order(table_number="1")
        card_order = make_order(table_number="2")
        payment_service.pay_order_in_full(cash_order.id, "cash", created_by=cashier.id)
        payment_service.pay_order_in_full(card_order.id, "card", created_by=cashier.id)

        report = shift_service.close_shift(cashier.id)

        sales = report["sales_summary"]
        assert sales["cash"] == 4400
        assert sales["card"] == 4400
        assert sales["qris"] == 0
        assert sales["total"] == 8800
        assert sales["transaction_count"] == 2

        shift = _shift(open_shift.id)
        assert shift.status == "closed"
        assert shift.closed_by == cashier.id
        assert shift.closing_cash == 4400
        assert shift.closing_card == 4400
        assert shift.total_sales == 8800
        assert shift.carry_over_cash == 50000 + 4400
        assert shift.handover_to is None

    def test_split_payments_counted_once(self, make_order, open_shift, cashier):
        order = make_order()
        payment_service.split_bill_payment(order.id, "cash", amount=1000, created_by=cashier.id)
        payment_service.split_bill_payment(order.id, "qris", amount=3000, created_by=cashier.id)

        report = shift_service.close_shift(cashier.id)

        assert report["sales_summary"]["cash"] == 1000
        assert report["sales_summary"]["qris"] == 3000
        assert report["sales_summary"]["transaction_count"] == 2

    def test_other_cashier_sales_excluded(self, make_order, open_shift, cashier, cashier2):
        order = make_order()
        payment_service.pay_order_in_full(order.id, "cash", created_by=cashier2.id)

        report = shift_service.close_shift(cashier.id)

        assert report["sales_summary"]["total"] == 0

    def test_cancelled_transaction_excluded(self, make_order, open_shift, cashier, manager):
        order = make_order()
        transaction = payment_service.pay_order_in_full(order.id, "cash", created_by=cashier.id)["transaction"]
        void_service.cancel_transaction(transaction.id, "1111")

        report = shift_service.close_shift(cashier.id)

        assert report["sales_summary"]["cash"] == 0
        assert report["cancelled_summary"] == {"count": 1, "total": 4000}
        assert report["carry_over_cash"] == 50000

    def test_void_summary_attributed_to_shift_opener(self, make_order, manager):
        shift = shift_service.open_shift(manager.id, opening_cash=0)
        order = make_order()
        void_service.void_order(order.id, "1111")

        report = shift_service.close_shift(manager.id)

        assert report["void_summary"] == {"count": 1, "total": 4000}
        assert report["shift"].id == shift.id

    def test_pending_orders_block_close(self, make_order, open_shift, cashier):
        make_order()

        with pytest.raises(PendingOrdersError) as excinfo:
            shift_service.close_shift(cashier.id)

        assert excinfo.value.pending_count == 1
        assert _shift(open_shift.id).status == "open"

    def test_partially_paid_order_blocks_close(self, make_order, open_shift, cashier):
        order = make_order()
        payment_service.split_bill_payment(order.id, "cash", amount=1000, created_by=cashier.id)

        with pytest.raises(PendingOrdersError):
            shift_service.close_shift(cashier.id)
        assert _shift(open_shift.id).status == "open"

    def test_close_without_open_shift(self, cashier):
        with pytest.raises(ShiftNotFoundError):
            shift_service.close_shift(cashier.id)

    def test_close_twice_rejected(self, open_shift, cashier):
        shift_service.close_shift(cashier.id)
        with pytest.raises(ShiftNotFoundError):
            shift_service.close_shift(cashier.id)

    def test_close_queues_shift_receipt(self, open_shift, cashier, printers):
        shift_service.close_shift(cashier.id)

        receipts = [p for p in _receipts() if p.get("is_close_shift")]
        assert len(receipts) == 1
        assert receipts[0]["receipt_number"] == f"SHIFT-{open_shift.id}"
        assert receipts[0]["cashier_name"] == "Citra Cashier"
        assert "is_handover" not in receipts[0]


class TestHandover:
    """handover_shift"""

    def test_handover_closes_and_opens_atomically(self, open_shift, cashier, cashier2, printers):
        report = shift_service.handover_shift(
            caller_id=cashier.id,
            caller_role="cashier",
            next_cashier_id=cashier2.id,
            current_pin="3333",
            next_pin="4444",
        )

        previous = _shift(open_shift.id)
        assert previous.status == "closed"
        assert previous.handover_to == cashier2.id
        assert previous.closed_by == cashier.id

        new_shift = report["shift"]
        assert new_shift.status == "open"
        assert new_shift.opened_by == cashier2.id
        assert new_shift.previous_shift_id == open_shift.id
        assert new_shift.opening_cash == 50000

        receipts = [p for p in _receipts() if p.get("is_handover")]
        assert len(receipts) == 1
        assert receipts[0]["handover_from"] == "Citra Cashier"
        assert receipts[0]["handover_to"] == "Dewi Cashier"

    def test_manager_hands_over_on_behalf(self, open_shift, manager, cashier2):
        report = shift_service.handover_shift(
            caller_id=manager.id,
            caller_role="manager",
            next_cashier_id=cashier2.id,
            current_pin="1111",
            next_pin="4444",
        )

        assert _shift(open_shift.id).closed_by == manager.id
        assert report["shift"].opened_by == cashier2.id

    @pytest.mark.parametrize("current_pin,next_pin,current_valid,next_valid", [
        ("9999", "4444", False, True),
        ("3333", "9999", True, False),
        ("9999", "9999", False, False),
    ])
    def test_wrong_pins_reported(self, open_shift, cashier, cashier2, current_pin, next_pin, current_valid, next_valid):
        with pytest.raises(HandoverPinError) as excinfo:
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=cashier2.id,
                current_pin=current_pin,
                next_pin=next_pin,
            )

        assert excinfo.value.current_valid is current_valid
        assert excinfo.value.next_valid is next_valid
        assert _shift(open_shift.id).status == "open"

    def test_malformed_pin_rejected(self, open_shift, cashier, cashier2):
        with pytest.raises(ShiftError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=cashier2.id,
                current_pin="33",
                next_pin="4444",
            )

    def test_next_cashier_must_exist(self, open_shift, cashier):
        with pytest.raises(CashierNotFoundError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=424242,
                current_pin="3333",
                next_pin="4444",
            )

    def test_next_cashier_must_differ(self, open_shift, cashier):
        with pytest.raises(ShiftError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=cashier.id,
                current_pin="3333",
                next_pin="3333",
            )

    def test_next_user_must_be_cashier(self, open_shift, cashier, waiter):
        with pytest.raises(ShiftError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=waiter.id,
                current_pin="3333",
                next_pin="5555",
            )

    def test_pending_orders_block_handover(self, make_order, open_shift, cashier, cashier2):
        make_order()
        with pytest.raises(PendingOrdersError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=cashier2.id,
                current_pin="3333",
                next_pin="4444",
            )

    def test_failure_after_close_rolls_back(self, monkeypatch, open_shift, cashier, cashier2):
        def _fail(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(shift_service, "_insert_shift", _fail)

        with pytest.raises(RuntimeError):
            shift_service.handover_shift(
                caller_id=cashier.id,
                caller_role="cashier",
                next_cashier_id=cashier2.id,
                current_pin="3333",
                next_pin="4444",
            )

        shifts = db.session.query(CashierShift).all()
        assert len(shifts) == 1
        assert shifts[0].status == "open"
        assert shifts[0].handover_to is None
        assert shifts[0].closed_at is None

    def test_injected_pin_verifier(self, open_shift, cashier, cashier2):
        seen = []

        def verify(user, pin):
            seen.append((user.id, pin))
            return True

        shift_service.handover_shift(
            caller_id=cashier.id,
            caller_role="cashier",
            next_cashier_id=cashier2.id,
            current_pin="0000",
            next_pin="0001",
            verify_pin=verify,
        )

        assert seen == [(cashier.id, "0000"), (cashier2.id, "0001")]


class TestCashMovements:
    """create_cash_movement"""

    def test_cash_in_receipt(self, open_shift, cashier, printers):
        movement = shift_service.create_cash_movement(
            created_by=cashier.id, movement_type="in", name="Owner", amount=20000
        )

        assert movement.shift_id == open_shift.id
        receipt = _receipts()[-1]
        assert receipt["receipt_number"] == f"IN-{movement.id}"
        assert receipt["is_cash_in_receipt"] is True

    def test_cash_out_requires_note(self, open_shift, cashier):
        with pytest.raises(ShiftError):
            shift_service.create_cash_movement(
                created_by=cashier.id, movement_type="out", name="Gas", amount=5000, note="  "
            )

    def test_cash_out_receipt(self, open_shift, cashier, printers):
        movement = shift_service.create_cash_movement(
            created_by=cashier.id, movement_type="out", name="Gas", amount=5000, note="LPG refill"
        )

        receipt = _receipts()[-1]
        assert receipt["receipt_number"] == f"OUT-{movement.id}"
        assert receipt["movement_note"] == "LPG refill"

    @pytest.mark.parametrize("movement_type,name,amount", [("in", "", 100), ("in", "Owner", 0), ("sideways", "Owner", 100)])
    def test_invalid_movement_rejected(self, open_shift, cashier, movement_type, name, amount):
        with pytest.raises(ShiftError):
            shift_service.create_cash_movement(
                created_by=cashier.id, movement_type=movement_type, name=name, amount=amount
            )

    def test_requires_open_shift(self, cashier):
        with pytest.raises(ShiftNotFoundError):
            shift_service.create_cash_movement(created_by=cashier.id, movement_type="in", name="Owner", amount=100)

    def test_movements_in_shift_state(self, open_shift, cashier):
        shift_service.create_cash_movement(created_by=cashier.id, movement_type="in", name="Owner", amount=700)

        state = shift_service.get_shift_state()

        assert state["open_shift"]["id"] == open_shift.id
        assert state["open_shift"]["cash_movements"]["total_in"] == 700
        assert state["open_shift"]["carry_over_cash"] == 50700
        assert state["last_closed_shift"] is None
