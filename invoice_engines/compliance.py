"""
Module: invoice_engines.compliance
Responsibility:
    Build the business-context snapshot and the compliance flags recorded
    with every audit entry, and supply default human-readable reasons for
    status changes.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is a parameter.

Invariants enforced:
    - Business context is a fully populated ``BusinessContext``; no field is
      optional except the customer e-mail, which may be genuinely absent.
    - Compliance flags are deterministic and always emitted in the same
      order for the same inputs.
"""

from __future__ import annotations

import math
import re
from datetime import datetime

from invoice_kernel.domain.invoice import (
    BusinessContext,
    Invoice,
    InvoiceStatus,
    PaymentMethod,
    UserRole,
)
from invoice_engines.reconciliation import ReconciliationResult

FLAG_OVERDUE_STATUS = "OVERDUE_STATUS"
FLAG_TRN_COMPLIANT = "TRN_COMPLIANT"
FLAG_TAX_DEDUCTION_ELIGIBLE = "TAX_DEDUCTION_ELIGIBLE"
FLAG_OVERPAYMENT_DETECTED = "OVERPAYMENT_DETECTED"
FLAG_FULLY_PAID = "FULLY_PAID"
FLAG_CASH_PAYMENT = "CASH_PAYMENT"
FLAG_REFUND = "REFUND"

_SECONDS_PER_DAY = 86400
_SETTLED = frozenset({InvoiceStatus.PAID, InvoiceStatus.WRITTEN_OFF})
_TRN_PATTERN = re.compile(r"^\d{15}$")

_DEFAULT_REASONS: dict[tuple[InvoiceStatus, InvoiceStatus], str] = {
    (InvoiceStatus.DRAFT, InvoiceStatus.SENT): "Invoice sent to customer",
    (InvoiceStatus.SENT, InvoiceStatus.PAID): "Payment received and confirmed",
    (InvoiceStatus.SENT, InvoiceStatus.OVERDUE): "Invoice past due date - automated detection",
    (InvoiceStatus.OVERDUE, InvoiceStatus.PAID): "Late payment received and processed",
    (InvoiceStatus.SENT, InvoiceStatus.DISPUTED): "Customer disputed invoice terms",
    (InvoiceStatus.OVERDUE, InvoiceStatus.DISPUTED): "Customer disputed overdue invoice",
    (InvoiceStatus.DISPUTED, InvoiceStatus.PAID): "Dispute resolved - payment received",
    (InvoiceStatus.DISPUTED, InvoiceStatus.SENT): "Dispute resolved - invoice reactivated",
    (InvoiceStatus.SENT, InvoiceStatus.WRITTEN_OFF): "Invoice written off as uncollectable",
    (InvoiceStatus.OVERDUE, InvoiceStatus.WRITTEN_OFF): "Overdue invoice written off as uncollectable",
    (InvoiceStatus.DISPUTED, InvoiceStatus.WRITTEN_OFF): "Disputed invoice written off",
}


def default_reason(old: InvoiceStatus, new: InvoiceStatus) -> str:
    return _DEFAULT_REASONS.get((old, new), f"Status changed from {old.value} to {new.value}")


def is_valid_trn(trn: str | None) -> bool:
    """A tax registration number is exactly 15 digits, ignoring whitespace."""
    if not trn:
        return False
    return bool(_TRN_PATTERN.match(re.sub(r"\s", "", trn)))


def days_past_due(due_date: datetime, now: datetime) -> int:
    """Whole days (rounded up) since the due date; 0 if not yet due."""
    seconds = (now - due_date).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / _SECONDS_PER_DAY)


def build_business_context(
    invoice: Invoice,
    reconciliation: ReconciliationResult,
    now: datetime,
) -> BusinessContext:
    """Snapshot the facts behind a status change, as of ``now``."""
    return BusinessContext(
        is_overdue=invoice.due_date < now and invoice.status not in _SETTLED,
        days_past_due=days_past_due(invoice.due_date, now),
        has_payments=bool(invoice.payments) or not reconciliation.new_payment_amount.is_zero,
        total_paid=reconciliation.total_paid.amount,
        remaining_amount=reconciliation.remaining_amount.amount,
        due_date=invoice.due_date,
        customer_email=invoice.customer_email,
    )


def status_compliance_flags(
    invoice: Invoice,
    new_status: InvoiceStatus,
    context: BusinessContext,
    approval_level: UserRole | None = None,
) -> tuple[str, ...]:
    flags: list[str] = []
    if approval_level is not None:
        flags.append(f"REQUIRES_{approval_level.value}_APPROVAL")
    if new_status is InvoiceStatus.WRITTEN_OFF:
        flags.append(FLAG_TAX_DEDUCTION_ELIGIBLE)
    if is_valid_trn(invoice.trn_number):
        flags.append(FLAG_TRN_COMPLIANT)
    if context.is_overdue:
        flags.append(FLAG_OVERDUE_STATUS)
    return tuple(flags)


def payment_compliance_flags(
    reconciliation: ReconciliationResult,
    method: PaymentMethod,
    is_refund: bool = False,
) -> tuple[str, ...]:
    flags: list[str] = []
    if reconciliation.is_overpaid:
        flags.append(FLAG_OVERPAYMENT_DETECTED)
    if reconciliation.is_fully_paid:
        flags.append(FLAG_FULLY_PAID)
    if method is PaymentMethod.CASH:
        flags.append(FLAG_CASH_PAYMENT)
    if is_refund:
        flags.append(FLAG_REFUND)
    return tuple(flags)
