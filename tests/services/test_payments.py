"""
Integration tests for payment recording, refunds and reconciliation reads.

Verifies:
- Valid payments append a payment row and a payment audit entry
- Settling payments move the invoice to PAID in the same transaction
- Invalid payments and refused overpayments write nothing
- Overpayment refunds are bounded by the overpayment
- The amount paid is always the sum of payment rows
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from invoice_kernel.domain.invoice import InvoiceStatus, PaymentMethod, PaymentStatus
from invoice_kernel.domain.values import Money
from invoice_kernel.exceptions import (
    AccessDeniedError,
    CurrencyMismatchError,
    InvoiceNotFoundError,
    InvoiceNotOverpaidError,
    OverpaymentRejectedError,
    PaymentValidationError,
    RefundExceedsOverpaymentError,
)
from invoice_kernel.models.invoice import InvoiceModel
from invoice_kernel.selectors.invoice_selector import InvoiceSelector
from invoice_engines.payment_validation import PaymentData, PaymentValidationRules
from invoice_services.lifecycle_service import BatchItemStatus

from tests.conftest import COMPANY_ID, NOW, OTHER_COMPANY_ID

S = InvoiceStatus


def _payment(amount: str, **overrides) -> PaymentData:
    values = {
        "amount": Decimal(amount),
        "payment_date": NOW - timedelta(hours=2),
        "method": PaymentMethod.BANK_TRANSFER,
        "reference": "TRX-9001",
    }
    values.update(overrides)
    return PaymentData(**values)


def _payment_count(session, invoice_id) -> int:
    session.expire_all()
    return len(session.get(InvoiceModel, invoice_id).payments)


class TestRecordPayment:
    """Tests for record_payment."""

    def test_partial_payment(self, service, session, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00")

        result = service.record_payment(invoice.id, _payment("400.00"), payment_context())

        assert result.payment.amount == Money.of("400.00", "AED")
        assert result.payment.sequence == 1
        assert not result.payment.is_refund
        assert result.reconciliation.payment_status is PaymentStatus.PARTIALLY_PAID
        assert result.reconciliation.remaining_amount == Money.of("600.00", "AED")
        assert result.status_change is None
        assert result.invoice_status is S.SENT
        assert result.audit_entry.payment_status is PaymentStatus.PARTIALLY_PAID
        assert result.audit_entry.compliance_flags == ()
        assert _payment_count(session, invoice.id) == 1

    def test_settling_payment_marks_paid(self, service, session, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00", payments=["600.00"])

        result = service.record_payment(invoice.id, _payment("400.00"), payment_context())

        assert result.reconciliation.is_fully_paid
        assert result.audit_entry.compliance_flags == ("FULLY_PAID",)
        assert result.status_change.changed
        assert result.invoice_status is S.PAID

        trail = service.audit_trail(invoice.id, COMPANY_ID)
        assert [(e.old_status, e.new_status) for e in trail] == [(S.SENT, S.PAID)]
        assert trail[0].metadata.automated_change
        assert trail[0].reason == "Payment received and confirmed"
        session.expire_all()
        assert session.get(InvoiceModel, invoice.id).status == "PAID"

    def test_auto_sync_disabled(self, service, session, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00")

        result = service.record_payment(
            invoice.id, _payment("1000.00"), payment_context(auto_sync_status=False)
        )

        assert result.reconciliation.is_fully_paid
        assert result.status_change is None
        assert service.audit_trail(invoice.id, COMPANY_ID) == []

    def test_late_payment_notification(self, service, session, create_invoice, payment_context):
        invoice = create_invoice(status=S.OVERDUE, due_in_days=-5)

        result = service.record_payment(
            invoice.id, _payment("1000.00"), payment_context(notify_customer=True)
        )

        assert result.status_change.new_status is S.PAID
        assert result.status_change.notification_scheduled
        pending = InvoiceSelector(session).pending_notifications(invoice.id)
        assert [p["template_key"] for p in pending] == ["late_payment_received"]

    def test_cash_payment_flagged(self, service, create_invoice, payment_context):
        invoice = create_invoice()
        result = service.record_payment(
            invoice.id,
            _payment("100.00", method=PaymentMethod.CASH, reference=None),
            payment_context(),
        )
        assert result.audit_entry.compliance_flags == ("CASH_PAYMENT",)

    def test_payment_on_draft_does_not_change_status(self, service, create_invoice, payment_context):
        invoice = create_invoice(status=S.DRAFT)
        result = service.record_payment(invoice.id, _payment("1000.00"), payment_context())
        assert result.reconciliation.is_fully_paid
        assert result.status_change is None
        assert result.invoice_status is S.DRAFT


class TestRejectedPayments:
    """Refused payments raise and leave no rows behind."""

    def test_validation_errors(self, service, session, create_invoice, payment_context):
        invoice = create_invoice()

        with pytest.raises(PaymentValidationError) as exc_info:
            service.record_payment(
                invoice.id,
                _payment("100.00", reference=None, payment_date=NOW + timedelta(days=1)),
                payment_context(),
            )

        assert exc_info.value.errors == [
            "Future payment dates are not allowed",
            "Reference number is required for bank transfers",
        ]
        assert _payment_count(session, invoice.id) == 0
        assert InvoiceSelector(session).payment_audit_trail(invoice.id) == []

    def test_overpayment_beyond_tolerance(self, service, session, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00", payments=["900.00"])

        with pytest.raises(OverpaymentRejectedError):
            service.record_payment(invoice.id, _payment("300.00"), payment_context())
        assert _payment_count(session, invoice.id) == 1

    def test_overpayment_allowed_by_rules(self, service, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00")

        result = service.record_payment(
            invoice.id,
            _payment("1200.00"),
            payment_context(),
            rules=PaymentValidationRules(allow_overpayment=True),
        )

        assert result.reconciliation.is_overpaid
        assert result.audit_entry.compliance_flags == ("OVERPAYMENT_DETECTED",)
        assert result.invoice_status is S.PAID

    def test_currency_mismatch(self, service, create_invoice, payment_context):
        invoice = create_invoice()
        with pytest.raises(CurrencyMismatchError):
            service.record_payment(invoice.id, _payment("10.00", currency="USD"), payment_context())

    def test_written_off_invoice(self, service, create_invoice, payment_context):
        invoice = create_invoice(status=S.WRITTEN_OFF)
        with pytest.raises(PaymentValidationError):
            service.record_payment(invoice.id, _payment("10.00"), payment_context())

    def test_other_company(self, service, create_invoice, payment_context):
        invoice = create_invoice(company_id=OTHER_COMPANY_ID)
        with pytest.raises(AccessDeniedError):
            service.record_payment(invoice.id, _payment("10.00"), payment_context())


class TestOverpaymentRefund:
    """Tests for process_overpayment_refund."""

    def test_refund_round_trip(self, service, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00", status=S.PAID, payments=["700.00", "500.00"])

        report = service.get_invoice_reconciliation(invoice.id, COMPANY_ID)
        assert report.result.is_overpaid
        assert report.result.overpayment_amount == Money.of("200.00", "AED")

        with pytest.raises(RefundExceedsOverpaymentError) as exc_info:
            service.process_overpayment_refund(invoice.id, Decimal("250.00"), payment_context())
        assert exc_info.value.overpayment_amount == Decimal("200")

        refund = service.process_overpayment_refund(
            invoice.id, Decimal("200.00"), payment_context(), reference="RF-1"
        )

        assert refund.refund.amount == Money.of("-200.00", "AED")
        assert refund.refund.is_refund
        assert refund.refund.notes == "Overpayment refund - excess payment returned"
        assert refund.before.is_overpaid
        assert refund.after.remaining_amount.is_zero
        assert not refund.after.is_overpaid
        assert refund.audit_entry.compliance_flags == ("FULLY_PAID", "REFUND")

        report = service.get_invoice_reconciliation(invoice.id, COMPANY_ID)
        assert report.result.total_paid == Money.of("1000.00", "AED")
        assert not report.result.is_overpaid
        assert report.payment_count == 2
        assert report.refund_count == 1

    def test_partial_refund_keeps_remainder(self, service, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00", status=S.PAID, payments=["1300.00"])

        refund = service.process_overpayment_refund(
            invoice.id, Decimal("100.00"), payment_context(), notes="customer request"
        )

        assert refund.after.overpayment_amount == Money.of("200.00", "AED")
        assert refund.refund.notes == "Overpayment refund - customer request"

    def test_not_overpaid(self, service, create_invoice, payment_context):
        invoice = create_invoice(total="1000.00", payments=["1000.00"])
        with pytest.raises(InvoiceNotOverpaidError):
            service.process_overpayment_refund(invoice.id, Decimal("1.00"), payment_context())

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00"), 5.0])
    def test_invalid_amount(self, service, create_invoice, payment_context, amount):
        invoice = create_invoice(total="1000.00", payments=["1200.00"])
        with pytest.raises(PaymentValidationError):
            service.process_overpayment_refund(invoice.id, amount, payment_context())


class TestBulkRecordPayments:
    def test_per_item_results(self, service, create_invoice, payment_context):
        settles = create_invoice(total="500.00")
        invalid = create_invoice(total="500.00")
        partial = create_invoice(total="800.00")

        result = service.bulk_record_payments(
            [
                (settles.id, _payment("500.00")),
                (invalid.id, _payment("100.00", method=PaymentMethod.CHEQUE, reference=None)),
                (partial.id, _payment("300.00")),
            ],
            payment_context(),
        )

        statuses = [r.status for r in result.results]
        assert statuses == [BatchItemStatus.SUCCESS, BatchItemStatus.FAILED, BatchItemStatus.SUCCESS]
        assert result.results[0].new_status is S.PAID
        assert result.results[1].error_code == "PAYMENT_VALIDATION_FAILED"
        assert result.results[2].new_status is S.SENT
        assert result.total_amount_affected == {"AED": Decimal("800.00")}
        assert result.paid_amount_affected == {"AED": Decimal("500.00")}
        assert len(result.audit_entries) == 1
        assert result.audit_entries[0].metadata.batch_operation

    def test_malformed_items_fail_without_aborting(
        self, service, session, create_invoice, payment_context
    ):
        first = create_invoice(total="500.00")
        not_a_number = create_invoice(total="500.00")
        naive_date = create_invoice(total="500.00")
        last = create_invoice(total="500.00")

        result = service.bulk_record_payments(
            [
                (first.id, _payment("10.00")),
                (not_a_number.id, _payment("NaN")),
                (naive_date.id, _payment("10.00", payment_date=(NOW - timedelta(hours=2)).replace(tzinfo=None))),
                (last.id, _payment("10.00")),
            ],
            payment_context(),
        )

        assert result.success_count == 2
        assert result.failed_count == 2
        assert [r.error_code for r in result.failures] == [
            "PAYMENT_VALIDATION_FAILED",
            "PAYMENT_VALIDATION_FAILED",
        ]
        assert _payment_count(session, not_a_number.id) == 0
        assert _payment_count(session, naive_date.id) == 0
        assert _payment_count(session, last.id) == 1


class TestReconciliationRead:
    def test_timeline(self, service, create_invoice):
        invoice = create_invoice(total="1000.00", payments=["250.00", "250.00"])

        report = service.get_invoice_reconciliation(invoice.id, COMPANY_ID)

        assert report.result.payment_status is PaymentStatus.PARTIALLY_PAID
        assert [e.cumulative_paid.amount for e in report.timeline] == [
            Decimal("250"),
            Decimal("500"),
        ]
        assert report.timeline[-1].remaining_amount == Money.of("500.00", "AED")

    def test_unknown_invoice(self, service):
        with pytest.raises(InvoiceNotFoundError):
            service.get_invoice_reconciliation(uuid4(), COMPANY_ID)

    def test_other_company(self, service, create_invoice):
        invoice = create_invoice(company_id=OTHER_COMPANY_ID)
        with pytest.raises(AccessDeniedError):
            service.get_invoice_reconciliation(invoice.id, COMPANY_ID)
