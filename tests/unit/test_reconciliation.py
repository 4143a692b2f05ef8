"""
Unit tests for the reconciliation calculator.

Verifies:
- remaining/overpayment invariants (property-based)
- Classification priority and tolerance boundaries
- Candidate payments and refunds are previews only
- Payment timeline running totals
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from invoice_kernel.domain.invoice import InvoiceStatus, PaymentStatus
from invoice_kernel.domain.values import Money
from invoice_engines.reconciliation import ReconciliationCalculator, Tolerance

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


@pytest.fixture
def calculator():
    return ReconciliationCalculator()


class TestReconciliationInvariants:
    """Property tests: the derived figures always agree with the payment sum."""

    @given(total=amounts, payments=st.lists(amounts, max_size=6))
    @settings(
        max_examples=200,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_remaining_and_overpayment_floor_at_zero(self, make_invoice, total, payments):
        invoice = make_invoice(total=str(total), payments=tuple(str(p) for p in payments))
        result = ReconciliationCalculator().reconcile(invoice)

        paid = sum(payments, Decimal("0"))
        assert result.total_paid.amount == paid
        assert result.remaining_amount.amount == max(Decimal("0"), total - paid)
        assert result.overpayment_amount.amount == max(Decimal("0"), paid - total)

    @given(total=amounts, payments=st.lists(amounts, max_size=6))
    @settings(
        max_examples=200,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_fully_paid_and_overpaid_are_exclusive(self, make_invoice, total, payments):
        invoice = make_invoice(total=str(total), payments=tuple(str(p) for p in payments))
        result = ReconciliationCalculator().reconcile(invoice)

        assert not (result.is_fully_paid and result.is_overpaid)
        if result.is_settled:
            assert result.suggested_invoice_status is InvoiceStatus.PAID

    @given(total=amounts, payment=amounts)
    @settings(
        max_examples=100,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_payment_then_refund_restores_figures(self, make_invoice, total, payment):
        before = make_invoice(total=str(total))
        round_trip = make_invoice(total=str(total), payments=(str(payment), f"-{payment}"))

        calculator = ReconciliationCalculator()
        a = calculator.reconcile(before)
        b = calculator.reconcile(round_trip)
        assert a.total_paid == b.total_paid
        assert a.remaining_amount == b.remaining_amount
        assert a.payment_status == b.payment_status


class TestClassification:
    """Tests for payment status classification and tolerance."""

    def test_no_payments_is_unpaid(self, calculator, make_invoice):
        result = calculator.reconcile(make_invoice())
        assert result.payment_status is PaymentStatus.UNPAID
        assert result.suggested_invoice_status is InvoiceStatus.SENT
        assert result.remaining_amount == Money.of("1000.00", "AED")

    def test_partial_payment_keeps_current_status(self, calculator, make_invoice):
        invoice = make_invoice(payments=("400.00",), status=InvoiceStatus.OVERDUE)
        result = calculator.reconcile(invoice)
        assert result.payment_status is PaymentStatus.PARTIALLY_PAID
        assert result.suggested_invoice_status is InvoiceStatus.OVERDUE

    def test_exact_payment_is_fully_paid(self, calculator, make_invoice):
        result = calculator.reconcile(make_invoice(payments=("1000.00",)))
        assert result.is_fully_paid
        assert result.remaining_amount.is_zero

    def test_overpayment(self, calculator, make_invoice):
        result = calculator.reconcile(make_invoice(payments=("700.00", "500.00")))
        assert result.is_overpaid
        assert result.overpayment_amount == Money.of("200.00", "AED")
        assert result.remaining_amount.is_zero

    def test_shortfall_within_tolerance_is_fully_paid(self, calculator, make_invoice):
        # 1% of 1000.00 is 10.00
        result = calculator.reconcile(make_invoice(payments=("990.00",)))
        assert result.is_fully_paid
        assert result.remaining_amount == Money.of("10.00", "AED")

    def test_shortfall_beyond_tolerance_is_partial(self, calculator, make_invoice):
        result = calculator.reconcile(make_invoice(payments=("989.99",)))
        assert result.payment_status is PaymentStatus.PARTIALLY_PAID

    def test_excess_within_tolerance_is_fully_paid(self, calculator, make_invoice):
        result = calculator.reconcile(make_invoice(payments=("1010.00",)))
        assert result.is_fully_paid
        assert result.overpayment_amount == Money.of("10.00", "AED")

    def test_minimum_tolerance_is_one_minor_unit(self):
        tolerance = Tolerance()
        assert tolerance.for_total(Money.of("0.50", "AED")) == Decimal("0.01")
        assert tolerance.for_total(Money.of("50", "JPY")) == Decimal("1")

    def test_float_tolerance_rejected(self):
        with pytest.raises(TypeError):
            Tolerance(rate=0.01)

    def test_zero_tolerance_is_exact(self, make_invoice):
        calculator = ReconciliationCalculator(Tolerance(rate=Decimal("0"), minimum_minor_units=0))
        result = calculator.reconcile(make_invoice(payments=("999.99",)))
        assert result.payment_status is PaymentStatus.PARTIALLY_PAID


class TestCandidatePayments:
    """Tests for speculative payments and refunds."""

    def test_candidate_payment_is_included(self, calculator, make_invoice):
        invoice = make_invoice(payments=("600.00",))
        result = calculator.reconcile(invoice, new_payment=Money.of("400.00", "AED"))
        assert result.previously_paid == Money.of("600.00", "AED")
        assert result.new_payment_amount == Money.of("400.00", "AED")
        assert result.is_fully_paid

    def test_refund_preview_does_not_touch_invoice(self, calculator, make_invoice):
        invoice = make_invoice(payments=("1200.00",))
        preview = calculator.reconcile(invoice, new_payment=Money.of("-200.00", "AED"))
        assert preview.is_fully_paid
        assert not preview.is_overpaid
        assert calculator.reconcile(invoice).is_overpaid

    def test_candidate_currency_must_match(self, calculator, make_invoice):
        from invoice_kernel.exceptions import CurrencyMismatchError

        with pytest.raises(CurrencyMismatchError):
            calculator.reconcile(make_invoice(), new_payment=Money.of("1", "USD"))

    def test_to_dict_renders_amounts_as_strings(self, calculator, make_invoice):
        data = calculator.reconcile(make_invoice(payments=("250.00",))).to_dict()
        assert data["total_paid"] == "250.00"
        assert data["payment_status"] == "PARTIALLY_PAID"


class TestTimeline:
    """Tests for the payment timeline."""

    def test_running_totals(self, calculator, make_invoice):
        invoice = make_invoice(payments=("300.00", "900.00", "-200.00"))
        report = calculator.full_report(invoice)

        cumulative = [entry.cumulative_paid.amount for entry in report.timeline]
        remaining = [entry.remaining_amount.amount for entry in report.timeline]
        assert cumulative == [Decimal("300.00"), Decimal("1200.00"), Decimal("1000.00")]
        assert remaining == [Decimal("700.00"), Decimal("0"), Decimal("0")]
        assert report.payment_count == 2
        assert report.refund_count == 1
        assert report.result.is_fully_paid
