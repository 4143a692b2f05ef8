"""
Unit tests for business context, compliance flags and default reasons.
"""

from datetime import timedelta

import pytest

from invoice_kernel.domain.invoice import InvoiceStatus, PaymentMethod, UserRole
from invoice_kernel.domain.values import Money
from invoice_engines.compliance import (
    build_business_context,
    days_past_due,
    default_reason,
    is_valid_trn,
    payment_compliance_flags,
    status_compliance_flags,
)
from invoice_engines.reconciliation import ReconciliationCalculator

S = InvoiceStatus


@pytest.fixture
def calculator():
    return ReconciliationCalculator()


class TestTrn:
    @pytest.mark.parametrize(
        "trn,valid",
        [
            ("100123456700003", True),
            ("100 1234 5670 0003", True),
            ("10012345670000", False),
            ("1001234567000034", False),
            ("10012345670000A", False),
            ("", False),
            (None, False),
        ],
    )
    def test_fifteen_digits(self, trn, valid):
        assert is_valid_trn(trn) is valid


class TestDaysPastDue:
    def test_not_due_is_zero(self, now):
        assert days_past_due(now + timedelta(days=3), now) == 0
        assert days_past_due(now, now) == 0

    def test_partial_day_rounds_up(self, now):
        assert days_past_due(now - timedelta(hours=1), now) == 1
        assert days_past_due(now - timedelta(days=2, minutes=1), now) == 3

    def test_whole_days(self, now):
        assert days_past_due(now - timedelta(days=5), now) == 5


class TestBusinessContext:
    def test_overdue_unpaid_invoice(self, calculator, make_invoice, now):
        invoice = make_invoice(due_in_days=-4, payments=("250.00",))
        context = build_business_context(invoice, calculator.reconcile(invoice), now)
        assert context.is_overdue
        assert context.days_past_due == 4
        assert context.has_payments
        assert context.total_paid == Money.of("250.00", "AED").amount
        assert context.remaining_amount == Money.of("750.00", "AED").amount
        assert context.customer_email == "billing@customer.example"

    def test_paid_invoice_is_never_overdue(self, calculator, make_invoice, now):
        invoice = make_invoice(status=S.PAID, due_in_days=-4, payments=("1000.00",))
        context = build_business_context(invoice, calculator.reconcile(invoice), now)
        assert not context.is_overdue
        assert context.days_past_due == 4

    def test_candidate_payment_counts_as_payment(self, calculator, make_invoice, now):
        invoice = make_invoice()
        recon = calculator.reconcile(invoice, new_payment=Money.of("100.00", "AED"))
        assert build_business_context(invoice, recon, now).has_payments

    def test_dict_round_trip(self, calculator, make_invoice, now):
        from invoice_kernel.domain.invoice import BusinessContext

        invoice = make_invoice(due_in_days=-1)
        context = build_business_context(invoice, calculator.reconcile(invoice), now)
        assert BusinessContext.from_dict(context.to_dict()) == context


class TestStatusFlags:
    def test_flag_order(self, calculator, make_invoice, now):
        invoice = make_invoice(due_in_days=-2, trn_number="100123456700003")
        context = build_business_context(invoice, calculator.reconcile(invoice), now)
        flags = status_compliance_flags(invoice, S.WRITTEN_OFF, context, UserRole.ADMIN)
        assert flags == (
            "REQUIRES_ADMIN_APPROVAL",
            "TAX_DEDUCTION_ELIGIBLE",
            "TRN_COMPLIANT",
            "OVERDUE_STATUS",
        )

    def test_plain_change_has_no_flags(self, calculator, make_invoice, now):
        invoice = make_invoice(status=S.DRAFT)
        context = build_business_context(invoice, calculator.reconcile(invoice), now)
        assert status_compliance_flags(invoice, S.SENT, context) == ()


class TestPaymentFlags:
    def test_overpaid_cash(self, calculator, make_invoice):
        recon = calculator.reconcile(make_invoice(payments=("1500.00",)))
        assert payment_compliance_flags(recon, PaymentMethod.CASH) == (
            "OVERPAYMENT_DETECTED",
            "CASH_PAYMENT",
        )

    def test_fully_paid_refund(self, calculator, make_invoice):
        recon = calculator.reconcile(make_invoice(payments=("1000.00",)))
        assert payment_compliance_flags(recon, PaymentMethod.BANK_TRANSFER, is_refund=True) == (
            "FULLY_PAID",
            "REFUND",
        )


class TestDefaultReason:
    def test_known_edge(self):
        assert default_reason(S.SENT, S.OVERDUE) == "Invoice past due date - automated detection"

    def test_fallback(self):
        assert default_reason(S.PAID, S.DISPUTED) == "Status changed from PAID to DISPUTED"
