"""
Module: invoice_engines.payment_validation
Responsibility:
    Validate incoming payment data and enforce the overpayment policy before
    anything is persisted.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is a parameter.

Invariants enforced:
    - A payment amount is strictly greater than the configured minimum and,
      when a maximum is configured, not above it.
    - Payments dated in the future are refused unless explicitly allowed.
    - BANK_TRANSFER and CHEQUE payments carry a reference when the rules
      require one.
    - An overpayment is accepted only when allowed outright or when it is
      within ``overpayment_tolerance_percent`` of the invoice total.

Failure modes:
    - PaymentValidationError lists every failed rule at once, including
      unparseable or non-finite amounts and timezone-less payment dates.
    - OverpaymentRejectedError when the overpayment policy refuses.
    - CurrencyMismatchError when the payment currency differs from the
      invoice currency.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation

from invoice_kernel.domain.invoice import PaymentMethod
from invoice_kernel.domain.values import Money
from invoice_kernel.exceptions import (
    CurrencyMismatchError,
    OverpaymentRejectedError,
    PaymentValidationError,
)
from invoice_engines.reconciliation import ReconciliationResult


@dataclass(frozen=True)
class PaymentValidationRules:
    """
    Business rules for accepting a payment.

    Defaults match the collection platform's standard policy.
    """

    allow_future_payments: bool = False
    require_reference_for_bank_transfer: bool = True
    require_reference_for_cheque: bool = True
    allow_overpayment: bool = False
    overpayment_tolerance_percent: Decimal = Decimal("1.0")
    minimum_payment_amount: Decimal = Decimal("0.01")
    maximum_payment_amount: Decimal | None = None

    def __post_init__(self) -> None:
        if self.overpayment_tolerance_percent < 0:
            raise ValueError("overpayment_tolerance_percent cannot be negative")
        if self.minimum_payment_amount < 0:
            raise ValueError("minimum_payment_amount cannot be negative")
        if (
            self.maximum_payment_amount is not None
            and self.maximum_payment_amount < self.minimum_payment_amount
        ):
            raise ValueError("maximum_payment_amount cannot be below minimum_payment_amount")


DEFAULT_PAYMENT_RULES = PaymentValidationRules()


@dataclass(frozen=True)
class PaymentData:
    """A payment as submitted by the caller, before validation."""

    amount: Decimal
    payment_date: datetime
    method: PaymentMethod
    reference: str | None = None
    notes: str | None = None
    currency: str | None = None

    def as_money(self, invoice_currency: str) -> Money:
        expected = Money.zero(invoice_currency)
        money = Money.of(self.amount, self.currency or expected.currency)
        if money.currency != expected.currency:
            raise CurrencyMismatchError(money.currency, expected.currency)
        return money


def _parse_amount(raw: object) -> tuple[Decimal, list[str]]:
    if isinstance(raw, float):
        return Decimal(0), ["Payment amount must be a Decimal, not a float"]
    if isinstance(raw, bool) or not isinstance(raw, (Decimal, int, str)):
        return Decimal(0), ["Payment amount is required"]
    try:
        amount = Decimal(raw) if not isinstance(raw, Decimal) else raw
    except InvalidOperation:
        return Decimal(0), [f"Invalid payment amount: {raw!r}"]
    if not amount.is_finite():
        return Decimal(0), [f"Payment amount must be a finite number, got {raw}"]
    return amount, []


class PaymentValidator:
    """Applies ``PaymentValidationRules`` to payment data."""

    def __init__(self, rules: PaymentValidationRules = DEFAULT_PAYMENT_RULES):
        self.rules = rules

    def errors(self, payment: PaymentData, now: datetime) -> list[str]:
        rules = self.rules
        problems: list[str] = []

        if payment.amount <= rules.minimum_payment_amount:
            problems.append(
                f"Payment amount must be greater than {rules.minimum_payment_amount}"
            )
        if (
            rules.maximum_payment_amount is not None
            and payment.amount > rules.maximum_payment_amount
        ):
            problems.append(
                f"Payment amount cannot exceed {rules.maximum_payment_amount}"
            )
        if not rules.allow_future_payments and payment.payment_date > now:
            problems.append("Future payment dates are not allowed")

        has_reference = bool(payment.reference and payment.reference.strip())
        if (
            payment.method is PaymentMethod.BANK_TRANSFER
            and rules.require_reference_for_bank_transfer
            and not has_reference
        ):
            problems.append("Reference number is required for bank transfers")
        if (
            payment.method is PaymentMethod.CHEQUE
            and rules.require_reference_for_cheque
            and not has_reference
        ):
            problems.append("Cheque number is required for cheque payments")

        return problems

    def validate(self, payment: PaymentData, invoice_currency: str, now: datetime) -> Money:
        """Return the payment as Money, or raise with every failed rule."""
        amount, problems = _parse_amount(payment.amount)
        if not isinstance(payment.payment_date, datetime):
            problems.append("Payment date is required")
        elif payment.payment_date.utcoffset() is None:
            problems.append("Payment date must carry a timezone")
        if problems:
            raise PaymentValidationError(problems)

        payment = replace(payment, amount=amount)
        money = payment.as_money(invoice_currency)
        problems = self.errors(payment, now)
        if problems:
            raise PaymentValidationError(problems)
        return money

    def check_overpayment(self, reconciliation: ReconciliationResult) -> None:
        """Refuse a candidate payment that overpays beyond the policy."""
        overpayment = reconciliation.overpayment_amount.amount
        if overpayment <= 0 or self.rules.allow_overpayment:
            return
        total = reconciliation.invoice_total.amount
        allowed = total * self.rules.overpayment_tolerance_percent / Decimal(100)
        if overpayment <= allowed:
            return
        raise OverpaymentRejectedError(
            f"Payment would result in overpayment of {overpayment} "
            f"{reconciliation.currency}, exceeding the allowed tolerance of "
            f"{self.rules.overpayment_tolerance_percent}% of the invoice total",
            invoice_id=str(reconciliation.invoice_id),
            overpayment_amount=overpayment,
        )
