"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Callers must be able to prove, after the fact, exactly when and why an
invoice's status changed and how every paid figure was reached.  That proof
only holds if the records it rests on cannot be rewritten:

    StatusAuditEntry      | ALWAYS (from creation)   | Audit trail is sacred
    PaymentAuditEntry     | ALWAYS (from creation)   | Audit trail is sacred
    AuditFailureRecord    | ALWAYS (from creation)   | Evidence of a gap
    Payment               | ALWAYS (from creation)   | Refunds are new rows
    Invoice.status        | Once WRITTEN_OFF         | Terminal state

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners below raise ImmutabilityViolationError, which aborts the flush,
so the database is never modified.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY ALLOW updated_at/updated_by_id CHANGES ON INVOICES?
   They are audit metadata, not financial data.

2. WHY CHECK ATTRIBUTE HISTORY FOR THE TERMINAL STATE?
   The transition INTO WRITTEN_OFF must be allowed.  Only a change whose
   committed (deleted) value was WRITTEN_OFF is blocked.

3. WHY INLINE IMPORTS?
   Avoids circular imports.  Models import from db, db imports from models.

===============================================================================
USAGE
===============================================================================

    from invoice_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY - never in production):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm import attributes

from invoice_kernel.exceptions import ImmutabilityViolationError
from invoice_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_status_audit_update(mapper, connection, target):
    _block("StatusAuditEntry", target, "UPDATE", "Audit entries are immutable and cannot be modified")


def _check_status_audit_delete(mapper, connection, target):
    _block("StatusAuditEntry", target, "DELETE", "Audit entries are immutable and cannot be deleted")


def _check_payment_audit_update(mapper, connection, target):
    _block("PaymentAuditEntry", target, "UPDATE", "Audit entries are immutable and cannot be modified")


def _check_payment_audit_delete(mapper, connection, target):
    _block("PaymentAuditEntry", target, "DELETE", "Audit entries are immutable and cannot be deleted")


def _check_failure_record_update(mapper, connection, target):
    _block("AuditFailureRecord", target, "UPDATE", "Audit failure records are immutable")


def _check_failure_record_delete(mapper, connection, target):
    _block("AuditFailureRecord", target, "DELETE", "Audit failure records are immutable")


def _check_payment_update(mapper, connection, target):
    _block(
        "Payment",
        target,
        "UPDATE",
        "Payments are append-only; record a refund instead of editing a payment",
    )


def _check_payment_delete(mapper, connection, target):
    _block(
        "Payment",
        target,
        "DELETE",
        "Payments are append-only; record a refund instead of deleting a payment",
    )


def _check_invoice_terminal_status(mapper, connection, target):
    """Block any change to an invoice whose committed status is WRITTEN_OFF."""
    from invoice_kernel.domain.invoice import InvoiceStatus

    history = attributes.get_history(target, "status")
    previous = history.deleted[0] if history.deleted else None
    if previous == InvoiceStatus.WRITTEN_OFF.value and history.has_changes():
        _block(
            "Invoice",
            target,
            "UPDATE",
            "Invoice is WRITTEN_OFF; its status can no longer change",
        )


def _check_invoice_delete(mapper, connection, target):
    _block("Invoice", target, "DELETE", "Invoices referenced by an audit trail cannot be deleted")


def _listeners():
    from invoice_kernel.models.audit import (
        AuditFailureRecordModel,
        PaymentAuditEntryModel,
        StatusAuditEntryModel,
    )
    from invoice_kernel.models.invoice import InvoiceModel, PaymentModel

    return (
        (StatusAuditEntryModel, "before_update", _check_status_audit_update),
        (StatusAuditEntryModel, "before_delete", _check_status_audit_delete),
        (PaymentAuditEntryModel, "before_update", _check_payment_audit_update),
        (PaymentAuditEntryModel, "before_delete", _check_payment_audit_delete),
        (AuditFailureRecordModel, "before_update", _check_failure_record_update),
        (AuditFailureRecordModel, "before_delete", _check_failure_record_delete),
        (PaymentModel, "before_update", _check_payment_update),
        (PaymentModel, "before_delete", _check_payment_delete),
        (InvoiceModel, "before_update", _check_invoice_terminal_status),
        (InvoiceModel, "before_delete", _check_invoice_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Idempotent.  Call after models are imported and before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate immutability on
    purpose to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
