"""
Module: invoice_engines.reconciliation
Responsibility:
    Derive payment-completeness facts (paid, remaining, overpaid) from an
    invoice and its payment history, optionally including a candidate new
    payment or refund that has not been persisted yet.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import invoice_kernel/domain.

Invariants enforced:
    - remaining_amount = max(0, invoice_total - total_paid)
    - overpayment_amount = max(0, total_paid - invoice_total)
    - Exactly one PaymentStatus applies, chosen in priority order
      OVERPAID > FULLY_PAID > PARTIALLY_PAID > UNPAID.
    - Equality with the invoice total is tested within ``Tolerance``:
      rate x total, never less than one minor currency unit.
    - Decimal-only arithmetic; no rounding is applied to the figures.

Failure modes:
    - CurrencyMismatchError when a payment's currency tag differs from the
      invoice's.

Audit relevance:
    Reconciliation figures are snapshotted into every status and payment
    audit entry.  The calculator is deterministic, so any snapshot can be
    re-derived from the payment rows it was computed from.

Usage:
    calculator = ReconciliationCalculator()
    result = calculator.reconcile(invoice)
    preview = calculator.reconcile(invoice, new_payment=Money.of("-200", "AED"))
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from invoice_kernel.domain.invoice import (
    Invoice,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
)
from invoice_kernel.domain.values import Money
from invoice_kernel.logging_config import get_logger
from invoice_engines.tracer import traced_engine

logger = get_logger("engines.reconciliation")


@dataclass(frozen=True)
class Tolerance:
    """
    Rounding slack allowed when comparing a paid amount to an invoice total.

    Contract:
        ``for_total(total)`` is ``rate * |total|`` but never less than
        ``minimum_minor_units`` of the invoice currency.
    """

    rate: Decimal = Decimal("0.01")
    minimum_minor_units: int = 1

    def __post_init__(self) -> None:
        if isinstance(self.rate, float):
            raise TypeError("Tolerance rate must be Decimal, not float")
        if not Decimal("0") <= self.rate < Decimal("1"):
            raise ValueError(f"Tolerance rate must be in [0, 1), got {self.rate}")
        if self.minimum_minor_units < 0:
            raise ValueError("minimum_minor_units cannot be negative")

    def for_total(self, total: Money) -> Decimal:
        relative = abs(total.amount) * self.rate
        floor = total.minor_unit * self.minimum_minor_units
        return max(relative, floor)

    def covers(self, total: Money, paid: Money) -> bool:
        """True when ``paid`` settles ``total`` (exactly, within slack, or over)."""
        return paid.amount >= total.amount - self.for_total(total)


DEFAULT_TOLERANCE = Tolerance()


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Derived reconciliation figures for one invoice.

    Guarantees:
        - remaining_amount and overpayment_amount are never negative.
        - is_fully_paid and is_overpaid are never both True.
    """

    invoice_id: UUID
    invoice_number: str
    current_status: InvoiceStatus
    invoice_total: Money
    previously_paid: Money
    new_payment_amount: Money
    total_paid: Money
    remaining_amount: Money
    overpayment_amount: Money
    tolerance: Decimal
    payment_status: PaymentStatus
    suggested_invoice_status: InvoiceStatus

    @property
    def is_fully_paid(self) -> bool:
        return self.payment_status is PaymentStatus.FULLY_PAID

    @property
    def is_overpaid(self) -> bool:
        return self.payment_status is PaymentStatus.OVERPAID

    @property
    def is_settled(self) -> bool:
        """Fully paid or overpaid: the invoice total is covered."""
        return self.payment_status in (PaymentStatus.FULLY_PAID, PaymentStatus.OVERPAID)

    @property
    def currency(self) -> str:
        return self.invoice_total.currency

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": str(self.invoice_id),
            "invoice_number": self.invoice_number,
            "currency": self.currency,
            "invoice_total": str(self.invoice_total.amount),
            "previously_paid": str(self.previously_paid.amount),
            "new_payment_amount": str(self.new_payment_amount.amount),
            "total_paid": str(self.total_paid.amount),
            "remaining_amount": str(self.remaining_amount.amount),
            "overpayment_amount": str(self.overpayment_amount.amount),
            "is_fully_paid": self.is_fully_paid,
            "is_overpaid": self.is_overpaid,
            "payment_status": self.payment_status.value,
            "suggested_invoice_status": self.suggested_invoice_status.value,
        }


@dataclass(frozen=True)
class TimelineEntry:
    """One payment in insertion order with running totals."""

    payment_id: UUID
    sequence: int
    payment_date: datetime
    amount: Money
    method: PaymentMethod
    is_refund: bool
    reference: str | None
    cumulative_paid: Money
    remaining_amount: Money


@dataclass(frozen=True)
class InvoiceReconciliation:
    """Full reconciliation report: figures plus the payment timeline."""

    result: ReconciliationResult
    timeline: tuple[TimelineEntry, ...]

    @property
    def payment_count(self) -> int:
        return sum(1 for entry in self.timeline if not entry.is_refund)

    @property
    def refund_count(self) -> int:
        return sum(1 for entry in self.timeline if entry.is_refund)


class ReconciliationCalculator:
    """
    Pure reconciliation calculator.

    Contract:
        Stateless apart from the immutable tolerance it was built with.
        Safe to call speculatively (e.g. to preview a refund); nothing is
        persisted.
    """

    def __init__(self, tolerance: Tolerance = DEFAULT_TOLERANCE):
        self.tolerance = tolerance

    def classify(self, invoice_total: Money, total_paid: Money) -> PaymentStatus:
        slack = self.tolerance.for_total(invoice_total)
        difference = total_paid.amount - invoice_total.amount
        if difference > slack:
            return PaymentStatus.OVERPAID
        if difference >= -slack:
            return PaymentStatus.FULLY_PAID
        if total_paid.amount > 0:
            return PaymentStatus.PARTIALLY_PAID
        return PaymentStatus.UNPAID

    @staticmethod
    def suggest_status(
        payment_status: PaymentStatus, current: InvoiceStatus
    ) -> InvoiceStatus:
        if payment_status in (PaymentStatus.OVERPAID, PaymentStatus.FULLY_PAID):
            return InvoiceStatus.PAID
        if payment_status is PaymentStatus.PARTIALLY_PAID:
            return current
        return InvoiceStatus.SENT

    @traced_engine("reconciliation", "1.0", fingerprint_fields=("invoice", "new_payment"))
    def reconcile(
        self,
        invoice: Invoice,
        new_payment: Money | None = None,
    ) -> ReconciliationResult:
        """
        Reconcile ``invoice`` against its payments plus an optional candidate.

        Args:
            invoice: Invoice with its full payment history.
            new_payment: Candidate payment (positive) or refund (negative)
                not yet persisted.  Omit for a status-quo reconciliation.
        """
        zero = Money.zero(invoice.currency)
        previously_paid = invoice.total_paid
        candidate = new_payment if new_payment is not None else zero
        total_paid = previously_paid + candidate
        total = invoice.total_amount

        remaining = (total - total_paid).max(zero)
        overpayment = (total_paid - total).max(zero)
        payment_status = self.classify(total, total_paid)

        return ReconciliationResult(
            invoice_id=invoice.id,
            invoice_number=invoice.number,
            current_status=invoice.status,
            invoice_total=total,
            previously_paid=previously_paid,
            new_payment_amount=candidate,
            total_paid=total_paid,
            remaining_amount=remaining,
            overpayment_amount=overpayment,
            tolerance=self.tolerance.for_total(total),
            payment_status=payment_status,
            suggested_invoice_status=self.suggest_status(payment_status, invoice.status),
        )

    def timeline(self, invoice: Invoice) -> tuple[TimelineEntry, ...]:
        zero = Money.zero(invoice.currency)
        cumulative = zero
        entries: list[TimelineEntry] = []
        for payment in invoice.payments:
            cumulative = cumulative + payment.amount
            entries.append(
                TimelineEntry(
                    payment_id=payment.id,
                    sequence=payment.sequence,
                    payment_date=payment.payment_date,
                    amount=payment.amount,
                    method=payment.method,
                    is_refund=payment.is_refund,
                    reference=payment.reference,
                    cumulative_paid=cumulative,
                    remaining_amount=(invoice.total_amount - cumulative).max(zero),
                )
            )
        return tuple(entries)

    def full_report(self, invoice: Invoice) -> InvoiceReconciliation:
        return InvoiceReconciliation(
            result=self.reconcile(invoice),
            timeline=self.timeline(invoice),
        )
