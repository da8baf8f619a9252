"""
Print queue tests: receipt routing and explicit retry.
"""

import pytest

from restopos.extensions import db
from restopos.models import Printer, PrintJob
from restopos.services import print_service
from restopos.services.print_service import PrintQueueError


class TestReceiptPrinter:
    """get_receipt_printer / enqueue_receipt"""

    def test_prefers_struk_printer(self, printers):
        assert print_service.get_receipt_printer().id == printers["struk"].id

    def test_falls_back_to_cashier_printer(self, db_session):
        cashier_printer = Printer(name="Front", printer_type="cashier")
        db_session.add(cashier_printer)
        db_session.commit()

        assert print_service.get_receipt_printer().id == cashier_printer.id

    def test_no_receipt_printer_skips_quietly(self, db_session):
        assert print_service.enqueue_receipt({"receipt_number": "TRX-1"}) is None
        assert db_session.query(PrintJob).count() == 0

    def test_enqueue_receipt_commits(self, printers):
        job = print_service.enqueue_receipt({"receipt_number": "TRX-9"})

        db.session.rollback()
        stored = db.session.query(PrintJob).filter_by(id=job.id).one()
        assert stored.status == "pending"
        assert stored.payload == {"receipt_number": "TRX-9"}


class TestRetry:
    """retry_print_job / mark_print_job"""

    def _failed_job(self, printers):
        job = print_service.enqueue_receipt({"receipt_number": "TRX-1"})
        return print_service.mark_print_job(job.id, "failed", "paper jam")

    def test_mark_failed_counts_attempts(self, printers):
        job = self._failed_job(printers)

        assert job.status == "failed"
        assert job.retry_count == 1
        assert job.error_message == "paper jam"

    def test_retry_clones_failed_job(self, printers):
        failed = self._failed_job(printers)

        clone = print_service.retry_print_job(failed.id)

        assert clone.id != failed.id
        assert clone.status == "pending"
        assert clone.printer_id == failed.printer_id
        assert clone.payload["retry_of"] == failed.id
        assert clone.payload["receipt_number"] == "TRX-1"
        assert db.session.query(PrintJob).filter_by(id=failed.id).one().status == "failed"

    def test_retry_chain_points_at_first_job(self, printers):
        failed = self._failed_job(printers)
        clone = print_service.retry_print_job(failed.id)
        print_service.mark_print_job(clone.id, "failed", "offline")

        second = print_service.retry_print_job(clone.id)

        assert second.payload["retry_of"] == failed.id

    def test_retry_pending_job_rejected(self, printers):
        job = print_service.enqueue_receipt({"receipt_number": "TRX-2"})
        with pytest.raises(PrintQueueError):
            print_service.retry_print_job(job.id)

    def test_retry_unknown_job(self, db_session):
        with pytest.raises(PrintQueueError):
            print_service.retry_print_job(424242)

    def test_invalid_status_rejected(self, printers):
        job = print_service.enqueue_receipt({"receipt_number": "TRX-3"})
        with pytest.raises(PrintQueueError):
            print_service.mark_print_job(job.id, "lost")

    def test_list_filters_by_status(self, printers):
        self._failed_job(printers)
        print_service.enqueue_receipt({"receipt_number": "TRX-4"})

        assert len(print_service.list_print_jobs()) == 2
        assert [j.payload["receipt_number"] for j in print_service.list_print_jobs(status="failed")] == ["TRX-1"]
