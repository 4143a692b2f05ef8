"""
Unit tests for payment data validation and the overpayment policy.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from invoice_kernel.domain.invoice import PaymentMethod
from invoice_kernel.domain.values import Money
from invoice_kernel.exceptions import (
    CurrencyMismatchError,
    OverpaymentRejectedError,
    PaymentValidationError,
)
from invoice_engines.payment_validation import (
    PaymentData,
    PaymentValidationRules,
    PaymentValidator,
)
from invoice_engines.reconciliation import ReconciliationCalculator


def _payment(now, **overrides) -> PaymentData:
    values = {
        "amount": Decimal("100.00"),
        "payment_date": now - timedelta(hours=1),
        "method": PaymentMethod.BANK_TRANSFER,
        "reference": "TRX-1",
    }
    values.update(overrides)
    return PaymentData(**values)


class TestPaymentData:
    """Tests for field-level rules."""

    def test_valid_payment_returns_money(self, now):
        money = PaymentValidator().validate(_payment(now), "AED", now)
        assert money == Money.of("100.00", "AED")

    def test_all_errors_reported_together(self, now):
        payment = _payment(now, amount=Decimal("0"), payment_date=now + timedelta(days=1), reference=None)
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentValidator().validate(payment, "AED", now)
        assert exc_info.value.errors == [
            "Payment amount must be greater than 0.01",
            "Future payment dates are not allowed",
            "Reference number is required for bank transfers",
        ]

    def test_cheque_needs_number(self, now):
        payment = _payment(now, method=PaymentMethod.CHEQUE, reference="  ")
        errors = PaymentValidator().errors(payment, now)
        assert errors == ["Cheque number is required for cheque payments"]

    def test_cash_needs_no_reference(self, now):
        payment = _payment(now, method=PaymentMethod.CASH, reference=None)
        assert PaymentValidator().errors(payment, now) == []

    def test_maximum_amount(self, now):
        rules = PaymentValidationRules(maximum_payment_amount=Decimal("50"))
        errors = PaymentValidator(rules).errors(_payment(now), now)
        assert errors == ["Payment amount cannot exceed 50"]

    def test_future_allowed_by_rule(self, now):
        rules = PaymentValidationRules(allow_future_payments=True)
        payment = _payment(now, payment_date=now + timedelta(days=3))
        assert PaymentValidator(rules).errors(payment, now) == []

    def test_float_amount_rejected(self, now):
        with pytest.raises(PaymentValidationError):
            PaymentValidator().validate(_payment(now, amount=100.0), "AED", now)

    @pytest.mark.parametrize("amount", [Decimal("NaN"), Decimal("Infinity"), "ten", None])
    def test_unusable_amount_rejected(self, now, amount):
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentValidator().validate(_payment(now, amount=amount), "AED", now)
        assert len(exc_info.value.errors) == 1

    def test_string_amount_accepted(self, now):
        money = PaymentValidator().validate(_payment(now, amount="75.50"), "AED", now)
        assert money == Money.of("75.50", "AED")

    def test_naive_payment_date_rejected(self, now):
        naive = (now - timedelta(hours=1)).replace(tzinfo=None)
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentValidator().validate(_payment(now, payment_date=naive), "AED", now)
        assert exc_info.value.errors == ["Payment date must carry a timezone"]

    def test_amount_and_date_problems_reported_together(self, now):
        naive = now.replace(tzinfo=None)
        payment = _payment(now, amount=Decimal("NaN"), payment_date=naive)
        with pytest.raises(PaymentValidationError) as exc_info:
            PaymentValidator().validate(payment, "AED", now)
        assert len(exc_info.value.errors) == 2

    def test_currency_must_match_invoice(self, now):
        with pytest.raises(CurrencyMismatchError):
            PaymentValidator().validate(_payment(now, currency="USD"), "AED", now)

    def test_rules_reject_inverted_bounds(self):
        with pytest.raises(ValueError):
            PaymentValidationRules(
                minimum_payment_amount=Decimal("10"), maximum_payment_amount=Decimal("5")
            )


class TestOverpaymentPolicy:
    """Tests for check_overpayment."""

    def _preview(self, make_invoice, existing, candidate):
        invoice = make_invoice(payments=existing)
        return ReconciliationCalculator().reconcile(invoice, new_payment=Money.of(candidate, "AED"))

    def test_within_percentage_is_accepted(self, make_invoice):
        PaymentValidator().check_overpayment(self._preview(make_invoice, ("900.00",), "110.00"))

    def test_beyond_percentage_is_rejected(self, make_invoice):
        recon = self._preview(make_invoice, ("900.00",), "300.00")
        with pytest.raises(OverpaymentRejectedError) as exc_info:
            PaymentValidator().check_overpayment(recon)
        assert exc_info.value.overpayment_amount == Decimal("200.00")

    def test_allowed_outright(self, make_invoice):
        rules = PaymentValidationRules(allow_overpayment=True)
        PaymentValidator(rules).check_overpayment(self._preview(make_invoice, (), "5000.00"))
