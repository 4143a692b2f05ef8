"""
Typed Exception Hierarchy for the Invoice Lifecycle Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers render rejections to end users and retry persistence failures.  Both
need to decide by TYPE, never by parsing a message string:

  1. Every error has a typed exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (amounts, statuses, allowed successors)

Example:
    try:
        service.update_status(invoice_id, InvoiceStatus.PAID, ctx)
    except InsufficientPaymentError as e:
        api_response(code=e.code, paid=e.total_paid, due=e.invoice_total)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InvoiceEngineError (base)
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- AccessDeniedError
    |
    +-- TransitionRejectedError
    |   +-- InvalidTransitionError
    |   +-- InsufficientPaymentError
    |   +-- ReasonRequiredError
    |   +-- TerminalStateError
    |   +-- InsufficientRoleError
    |
    +-- PaymentValidationError
    |
    +-- OverpaymentRejectedError
    |   +-- InvoiceNotOverpaidError
    |   +-- RefundExceedsOverpaymentError
    |
    +-- CurrencyMismatchError
    |
    +-- PersistenceFailureError
    |   +-- OptimisticLockError
    |   +-- OperationTimeoutError
    |
    +-- AuditError
    |   +-- AuditWriteFailureError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
RECOVERY GUIDE
===============================================================================

TransitionRejectedError, PaymentValidationError, OverpaymentRejectedError:
    The caller supplied input the business rules refuse.  Retry with
    different input.  The message is safe to show verbatim.

PersistenceFailureError:
    Nothing was committed.  Retry the whole operation.

AuditWriteFailureError:
    The transaction was rolled back and a fallback failure record was
    written.  Investigate before retrying.

ImmutabilityViolationError, AuditChainBrokenError:
    Someone tried to rewrite history.  Alert, do not retry.
"""

from decimal import Decimal


class InvoiceEngineError(Exception):
    """
    Base exception for all invoice engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVOICE_ENGINE_ERROR"


# Lookup and access


class NotFoundError(InvoiceEngineError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class AccessDeniedError(InvoiceEngineError):
    """Invoice belongs to a different company than the caller."""

    code: str = "ACCESS_DENIED"

    def __init__(self, invoice_id: str, company_id: str):
        self.invoice_id = invoice_id
        self.company_id = company_id
        super().__init__(
            f"Access denied: invoice {invoice_id} does not belong to company {company_id}"
        )


# Status transition rejections


class TransitionRejectedError(InvoiceEngineError):
    """Base exception for status transitions refused by the business rules."""

    code: str = "TRANSITION_REJECTED"

    def __init__(
        self,
        message: str,
        current_status: str,
        requested_status: str,
        allowed_transitions: tuple[str, ...] = (),
    ):
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions
        super().__init__(message)


class InvalidTransitionError(TransitionRejectedError):
    """Requested status is not a direct successor of the current status."""

    code: str = "INVALID_TRANSITION"


class InsufficientPaymentError(TransitionRejectedError):
    """PAID requested but payments do not cover the invoice total."""

    code: str = "INSUFFICIENT_PAYMENT"

    def __init__(
        self,
        message: str,
        current_status: str,
        requested_status: str,
        total_paid: Decimal,
        invoice_total: Decimal,
        allowed_transitions: tuple[str, ...] = (),
    ):
        self.total_paid = total_paid
        self.invoice_total = invoice_total
        super().__init__(message, current_status, requested_status, allowed_transitions)


class ReasonRequiredError(TransitionRejectedError):
    """A gated transition was requested without a reason."""

    code: str = "REASON_REQUIRED"


class TerminalStateError(TransitionRejectedError):
    """Invoice is in a terminal status and cannot change."""

    code: str = "TERMINAL_STATE"


class InsufficientRoleError(TransitionRejectedError):
    """Caller's role may not perform this transition without an override."""

    code: str = "INSUFFICIENT_ROLE"


# Payments


class PaymentValidationError(InvoiceEngineError):
    """Payment data failed validation."""

    code: str = "PAYMENT_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Payment validation failed: {'; '.join(self.errors)}")


class OverpaymentRejectedError(InvoiceEngineError):
    """Payment or refund refused by the overpayment policy."""

    code: str = "OVERPAYMENT_REJECTED"

    def __init__(self, message: str, invoice_id: str, overpayment_amount: Decimal):
        self.invoice_id = invoice_id
        self.overpayment_amount = overpayment_amount
        super().__init__(message)


class InvoiceNotOverpaidError(OverpaymentRejectedError):
    """Refund requested for an invoice that is not overpaid."""

    code: str = "INVOICE_NOT_OVERPAID"

    def __init__(self, invoice_id: str, overpayment_amount: Decimal = Decimal("0")):
        super().__init__(
            "Invoice is not overpaid - no refund required",
            invoice_id,
            overpayment_amount,
        )


class RefundExceedsOverpaymentError(OverpaymentRejectedError):
    """Refund amount is larger than the current overpayment."""

    code: str = "REFUND_EXCEEDS_OVERPAYMENT"

    def __init__(
        self, invoice_id: str, refund_amount: Decimal, overpayment_amount: Decimal
    ):
        self.refund_amount = refund_amount
        super().__init__(
            f"Refund amount cannot exceed overpayment amount "
            f"(refund {refund_amount}, overpayment {overpayment_amount})",
            invoice_id,
            overpayment_amount,
        )


class CurrencyMismatchError(InvoiceEngineError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")


# Persistence


class PersistenceFailureError(InvoiceEngineError):
    """The transaction could not commit.  Nothing was persisted."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, message: str, invoice_id: str | None = None):
        self.invoice_id = invoice_id
        super().__init__(message)


class OptimisticLockError(PersistenceFailureError):
    """Invoice row was modified by a concurrent transaction."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction",
            invoice_id=entity_id,
        )


class OperationTimeoutError(PersistenceFailureError):
    """Caller-supplied timeout expired; the transaction was rolled back."""

    code: str = "OPERATION_TIMEOUT"

    def __init__(self, invoice_id: str | None, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Operation on invoice {invoice_id} exceeded {timeout_seconds}s and was rolled back",
            invoice_id=invoice_id,
        )


# Audit


class AuditError(InvoiceEngineError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteFailureError(AuditError):
    """
    The primary audit write failed.

    The status change was rolled back with it.  A best-effort fallback
    record of the failure was attempted before this was raised.
    """

    code: str = "AUDIT_WRITE_FAILURE"

    def __init__(
        self,
        invoice_id: str,
        cause: str,
        fallback_recorded: bool,
        payload: dict | None = None,
    ):
        self.invoice_id = invoice_id
        self.cause = cause
        self.fallback_recorded = fallback_recorded
        self.payload = payload or {}
        super().__init__(f"Audit write failed for invoice {invoice_id}: {cause}")


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = audit_entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(InvoiceEngineError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ConfigurationError(InvoiceEngineError):
    """Configuration file is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)
