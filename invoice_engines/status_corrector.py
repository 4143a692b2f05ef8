"""
Module: invoice_engines.status_corrector
Responsibility:
    Resolve the *effective* status of an invoice from an accepted request
    and the payment and due-date facts at commit time.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``now`` is a parameter.

Invariants enforced (rules evaluated in order):
    1. SENT invoice, due date passed, request not in {PAID, WRITTEN_OFF,
       DISPUTED}  ->  OVERDUE, whatever was requested.
    2. Request is PAID but the payments (recomputed here) do not cover the
       total  ->  the current status; no change is applied.
    3. Otherwise  ->  the requested status.

    The result says explicitly whether anything changes and whether the
    request was overridden, so callers never infer it from comparing
    statuses.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from invoice_kernel.domain.invoice import Invoice, InvoiceStatus
from invoice_kernel.logging_config import get_logger
from invoice_engines.reconciliation import ReconciliationCalculator

logger = get_logger("engines.status_corrector")

_OVERDUE_EXEMPT = frozenset(
    {InvoiceStatus.PAID, InvoiceStatus.WRITTEN_OFF, InvoiceStatus.DISPUTED}
)


class CorrectionOutcome(str, Enum):
    AS_REQUESTED = "AS_REQUESTED"
    FORCED_OVERDUE = "FORCED_OVERDUE"
    REVERTED_INSUFFICIENT_PAYMENT = "REVERTED_INSUFFICIENT_PAYMENT"


@dataclass(frozen=True)
class StatusCorrection:
    current_status: InvoiceStatus
    requested_status: InvoiceStatus
    effective_status: InvoiceStatus
    outcome: CorrectionOutcome
    explanation: str

    @property
    def changed(self) -> bool:
        """True when the effective status differs from the current one."""
        return self.effective_status != self.current_status

    @property
    def corrected(self) -> bool:
        """True when the effective status differs from the request."""
        return self.outcome is not CorrectionOutcome.AS_REQUESTED


class StatusCorrector:
    """Applies the correction rules to an already-validated request."""

    def __init__(self, calculator: ReconciliationCalculator | None = None):
        self.calculator = calculator or ReconciliationCalculator()

    def resolve(
        self,
        invoice: Invoice,
        requested: InvoiceStatus,
        now: datetime,
    ) -> StatusCorrection:
        current = invoice.status

        if (
            current is InvoiceStatus.SENT
            and invoice.due_date < now
            and requested not in _OVERDUE_EXEMPT
        ):
            correction = StatusCorrection(
                current_status=current,
                requested_status=requested,
                effective_status=InvoiceStatus.OVERDUE,
                outcome=(
                    CorrectionOutcome.AS_REQUESTED
                    if requested is InvoiceStatus.OVERDUE
                    else CorrectionOutcome.FORCED_OVERDUE
                ),
                explanation="Due date has passed; invoice is overdue",
            )
        elif requested is InvoiceStatus.PAID and not self.calculator.reconcile(invoice).is_settled:
            correction = StatusCorrection(
                current_status=current,
                requested_status=requested,
                effective_status=current,
                outcome=CorrectionOutcome.REVERTED_INSUFFICIENT_PAYMENT,
                explanation="Payments no longer cover the invoice total; status unchanged",
            )
        else:
            correction = StatusCorrection(
                current_status=current,
                requested_status=requested,
                effective_status=requested,
                outcome=CorrectionOutcome.AS_REQUESTED,
                explanation="Status applied as requested",
            )

        if correction.corrected:
            logger.warning(
                "status_corrected",
                extra={
                    "invoice_id": str(invoice.id),
                    "current_status": current.value,
                    "requested_status": requested.value,
                    "effective_status": correction.effective_status.value,
                    "outcome": correction.outcome.value,
                },
            )
        return correction
