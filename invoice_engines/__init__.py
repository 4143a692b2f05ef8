"""
Module: invoice_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    invoice_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import invoice_kernel (domain values, exceptions, logging).
    MUST NOT import invoice_services or invoice_config.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  The current time is an
      explicit parameter supplied by the calling service's Clock.
    - Decimal-only arithmetic; floats are rejected.
    - Determinism: identical inputs always produce identical outputs.
"""

from invoice_engines.compliance import (
    build_business_context,
    default_reason,
    is_valid_trn,
    payment_compliance_flags,
    status_compliance_flags,
)
from invoice_engines.payment_validation import (
    DEFAULT_PAYMENT_RULES,
    PaymentData,
    PaymentValidationRules,
    PaymentValidator,
)
from invoice_engines.reconciliation import (
    DEFAULT_TOLERANCE,
    InvoiceReconciliation,
    ReconciliationCalculator,
    ReconciliationResult,
    TimelineEntry,
    Tolerance,
)
from invoice_engines.status_corrector import (
    CorrectionOutcome,
    StatusCorrection,
    StatusCorrector,
)
from invoice_engines.status_rules import (
    APPROVAL_COMPLIANCE_NOTE,
    INVOICE_STATUS_WORKFLOW,
    StatusValidator,
    TransitionDecision,
    TransitionRequest,
    allowed_transitions,
)

__all__ = [
    "APPROVAL_COMPLIANCE_NOTE",
    "CorrectionOutcome",
    "DEFAULT_PAYMENT_RULES",
    "DEFAULT_TOLERANCE",
    "INVOICE_STATUS_WORKFLOW",
    "InvoiceReconciliation",
    "PaymentData",
    "PaymentValidationRules",
    "PaymentValidator",
    "ReconciliationCalculator",
    "ReconciliationResult",
    "StatusCorrection",
    "StatusCorrector",
    "StatusValidator",
    "TimelineEntry",
    "Tolerance",
    "TransitionDecision",
    "TransitionRequest",
    "allowed_transitions",
    "build_business_context",
    "default_reason",
    "is_valid_trn",
    "payment_compliance_flags",
    "status_compliance_flags",
]
