"""
AuditRecorder -- append-only, hash-chained audit trail for invoices.

Responsibility:
    Persists one ``StatusAuditEntryModel`` per effective status mutation and
    one ``PaymentAuditEntryModel`` per recorded payment or refund, in the
    caller's transaction.  Verifies the per-invoice hash chain on demand and
    writes the fallback failure record when a primary audit write fails.

Architecture position:
    Services -- imperative shell, called only by InvoiceLifecycleService.

Invariants enforced:
    - Append-only: rows are inserted, never updated or deleted (ORM listeners
      in invoice_kernel.db.immutability).
    - Chain integrity: ``entry_hash = H(invoice_id | action | payload_hash |
      prev_hash)`` where ``prev_hash`` is the previous entry for the same
      invoice and ``payload_hash`` covers every stored field.
    - Sequence: ``seq`` is previous seq + 1 per invoice, read under the
      invoice row lock held by the caller.

Failure modes:
    - AuditWriteFailureError: the INSERT failed.  The savepoint around it is
      rolled back; the caller must roll back the whole transaction and then
      call ``record_failure()``.
    - AuditChainBrokenError: ``verify_chain()`` found a stored hash that does
      not match the recomputed one.

Audit relevance:
    This IS the audit trail.  A status change without its entry can never
    be committed, because both are flushed in the same transaction and the
    lifecycle service rolls back on any recorder failure.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoice_kernel.domain.clock import Clock, SystemClock
from invoice_kernel.domain.invoice import (
    AuditEntry,
    AuditMetadata,
    BusinessContext,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentAuditEntry,
    UserRole,
)
from invoice_kernel.exceptions import AuditChainBrokenError, AuditWriteFailureError
from invoice_kernel.logging_config import get_logger
from invoice_kernel.models.audit import (
    AuditFailureRecordModel,
    PaymentAuditEntryModel,
    StatusAuditEntryModel,
)
from invoice_kernel.selectors.invoice_selector import InvoiceSelector
from invoice_kernel.utils.hashing import hash_audit_entry, hash_payload
from invoice_engines.reconciliation import ReconciliationResult

logger = get_logger("services.audit_recorder")


def status_action(old_status: str, new_status: str) -> str:
    return f"{old_status}->{new_status}"


def status_entry_payload(row: StatusAuditEntryModel) -> dict[str, Any]:
    """The hashed content of a status audit row, rebuilt from its columns."""
    return {
        "invoice_id": row.invoice_id,
        "seq": row.seq,
        "invoice_number": row.invoice_number,
        "company_id": row.company_id,
        "user_id": row.user_id,
        "user_role": row.user_role,
        "old_status": row.old_status,
        "new_status": row.new_status,
        "reason": row.reason,
        "notes": row.notes,
        "business_context": row.business_context,
        "automated_change": row.automated_change,
        "batch_operation": row.batch_operation,
        "compliance_flags": list(row.compliance_flags),
        "occurred_at": row.occurred_at,
    }


class AuditRecorder:
    """
    Writes and verifies invoice audit entries.

    Contract:
        ``record_status_change`` and ``record_payment`` flush inside a
        SAVEPOINT of the caller's session and return the frozen DTO.

    Guarantees:
        - Every status entry is chained to its predecessor for the same
          invoice; the first entry has ``prev_hash`` None.
        - A failed write surfaces as AuditWriteFailureError carrying the
          payload that could not be written.

    Non-goals:
        - Does NOT call ``session.commit()`` on the caller's session.
        - Does NOT decide whether a change is allowed; it records what the
          lifecycle service already decided.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        fallback_session_factory: Callable[[], Session] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._fallback_session_factory = fallback_session_factory
        self._selector = InvoiceSelector(session)

    def _last_status_entry(self, invoice_id: UUID) -> StatusAuditEntryModel | None:
        return self._session.execute(
            select(StatusAuditEntryModel)
            .where(StatusAuditEntryModel.invoice_id == invoice_id)
            .order_by(StatusAuditEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _insert(self, row: Any) -> None:
        with self._session.begin_nested():
            self._session.add(row)
            self._session.flush()

    def record_status_change(
        self,
        invoice: Invoice,
        old_status: InvoiceStatus,
        new_status: InvoiceStatus,
        user_id: str,
        user_role: UserRole,
        reason: str,
        business_context: BusinessContext,
        metadata: AuditMetadata,
        notes: str | None = None,
    ) -> AuditEntry:
        """
        Append a status audit entry for ``invoice``.

        Preconditions:
            - The caller holds the invoice row lock.
            - The status mutation has been flushed in the same transaction.

        Raises:
            AuditWriteFailureError: The INSERT failed.
        """
        last = self._last_status_entry(invoice.id)
        prev_hash = last.entry_hash if last is not None else None

        row = StatusAuditEntryModel(
            invoice_id=invoice.id,
            seq=(last.seq + 1) if last is not None else 1,
            invoice_number=invoice.number,
            company_id=invoice.company_id,
            user_id=user_id,
            user_role=user_role.value,
            old_status=old_status.value,
            new_status=new_status.value,
            reason=reason,
            notes=notes,
            business_context=business_context.to_dict(),
            automated_change=metadata.automated_change,
            batch_operation=metadata.batch_operation,
            compliance_flags=list(metadata.compliance_flags),
            occurred_at=self._clock.now_utc(),
        )
        row.payload_hash = hash_payload(status_entry_payload(row))
        row.prev_hash = prev_hash
        row.entry_hash = hash_audit_entry(
            str(invoice.id),
            status_action(row.old_status, row.new_status),
            row.payload_hash,
            prev_hash,
        )

        try:
            self._insert(row)
        except SQLAlchemyError as exc:
            raise AuditWriteFailureError(
                str(invoice.id),
                f"{type(exc).__name__}: {exc}",
                fallback_recorded=False,
                payload={
                    "company_id": invoice.company_id,
                    "user_id": user_id,
                    "old_status": old_status.value,
                    "new_status": new_status.value,
                    "reason": reason,
                    "error_type": type(exc).__name__,
                },
            ) from exc

        logger.info(
            "status_audit_entry_created",
            extra={
                "invoice_id": str(invoice.id),
                "seq": row.seq,
                "old_status": row.old_status,
                "new_status": row.new_status,
                "compliance_flags": row.compliance_flags,
            },
        )
        return row.to_dto()

    def record_payment(
        self,
        invoice: Invoice,
        payment: Payment,
        user_id: str,
        reconciliation: ReconciliationResult,
        compliance_flags: tuple[str, ...],
    ) -> PaymentAuditEntry:
        """Append a payment audit entry with the post-payment reconciliation."""
        row = PaymentAuditEntryModel(
            invoice_id=invoice.id,
            payment_id=payment.id,
            company_id=invoice.company_id,
            user_id=user_id,
            amount=payment.amount.amount,
            currency=payment.amount.currency,
            method=payment.method.value,
            total_paid=reconciliation.total_paid.amount,
            remaining_amount=reconciliation.remaining_amount.amount,
            overpayment_amount=reconciliation.overpayment_amount.amount,
            payment_status=reconciliation.payment_status.value,
            compliance_flags=list(compliance_flags),
            occurred_at=self._clock.now_utc(),
        )
        try:
            self._insert(row)
        except SQLAlchemyError as exc:
            raise AuditWriteFailureError(
                str(invoice.id),
                f"{type(exc).__name__}: {exc}",
                fallback_recorded=False,
                payload={
                    "company_id": invoice.company_id,
                    "user_id": user_id,
                    "old_status": invoice.status.value,
                    "new_status": invoice.status.value,
                    "payment_id": str(payment.id),
                    "amount": str(payment.amount.amount),
                    "error_type": type(exc).__name__,
                },
            ) from exc

        logger.info(
            "payment_audit_entry_created",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "is_refund": payment.is_refund,
                "payment_status": row.payment_status,
            },
        )
        return row.to_dto()

    def record_failure(self, failure: AuditWriteFailureError) -> bool:
        """
        Best-effort fallback after a primary audit write failed.

        Always emits a CRITICAL ``audit_write_failed`` log record.  When a
        fallback session factory is configured, also writes an
        ``AuditFailureRecordModel`` in an independent transaction.

        Must be called AFTER the caller's transaction was rolled back.

        Returns:
            True if the fallback row was committed.
        """
        payload = failure.payload
        logger.critical(
            "audit_write_failed",
            extra={
                "invoice_id": failure.invoice_id,
                "cause": failure.cause,
                "audit_payload": payload,
            },
        )
        if self._fallback_session_factory is None:
            return False

        fallback = self._fallback_session_factory()
        try:
            fallback.add(
                AuditFailureRecordModel(
                    invoice_id=UUID(failure.invoice_id),
                    company_id=payload.get("company_id", ""),
                    user_id=payload.get("user_id", ""),
                    old_status=payload.get("old_status", ""),
                    new_status=payload.get("new_status", ""),
                    error_type=payload.get("error_type", "Unknown"),
                    error_message=failure.cause,
                    payload=payload,
                    occurred_at=self._clock.now_utc(),
                )
            )
            fallback.commit()
        except SQLAlchemyError:
            fallback.rollback()
            logger.error(
                "audit_fallback_write_failed",
                extra={"invoice_id": failure.invoice_id},
                exc_info=True,
            )
            return False
        finally:
            fallback.close()
        return True

    def verify_chain(self, invoice_id: UUID) -> bool:
        """
        Re-derive the hash chain of one invoice's status audit entries.

        Raises:
            AuditChainBrokenError: A payload hash, entry hash or back-link
                does not match.
        """
        rows = self._session.execute(
            select(StatusAuditEntryModel)
            .where(StatusAuditEntryModel.invoice_id == invoice_id)
            .order_by(StatusAuditEntryModel.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for row in rows:
            if row.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"audit_entry_id": str(row.id)})
                raise AuditChainBrokenError(
                    str(row.id), expected_prev or "None", row.prev_hash or "None"
                )

            payload_hash = hash_payload(status_entry_payload(row))
            if payload_hash != row.payload_hash:
                logger.critical("audit_chain_broken", extra={"audit_entry_id": str(row.id)})
                raise AuditChainBrokenError(str(row.id), payload_hash, row.payload_hash)

            entry_hash = hash_audit_entry(
                str(row.invoice_id),
                status_action(row.old_status, row.new_status),
                row.payload_hash,
                row.prev_hash,
            )
            if entry_hash != row.entry_hash:
                logger.critical("audit_chain_broken", extra={"audit_entry_id": str(row.id)})
                raise AuditChainBrokenError(str(row.id), entry_hash, row.entry_hash)

            expected_prev = row.entry_hash

        return True

    def audit_trail(self, invoice_id: UUID) -> list[AuditEntry]:
        """Status audit entries for ``invoice_id``, oldest first."""
        return self._selector.audit_trail(invoice_id)

    def payment_audit_trail(self, invoice_id: UUID) -> list[PaymentAuditEntry]:
        return self._selector.payment_audit_trail(invoice_id)
