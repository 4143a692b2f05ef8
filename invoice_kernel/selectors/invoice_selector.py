"""
Module: invoice_kernel.selectors.invoice_selector
Responsibility: Read-side queries over invoices, payments and the audit trail.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Results are frozen DTOs.
    - Audit trails are returned oldest first (seq order).
    - Overdue candidates are returned oldest due date first, so the sweep
      works the longest-outstanding invoices first.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from invoice_kernel.domain.invoice import (
    AuditEntry,
    InvoiceStatus,
    PaymentAuditEntry,
)
from invoice_kernel.models.audit import (
    AuditFailureRecordModel,
    PaymentAuditEntryModel,
    StatusAuditEntryModel,
)
from invoice_kernel.models.invoice import InvoiceModel
from invoice_kernel.models.notification import NotificationOutboxModel
from invoice_kernel.selectors.base import BaseSelector


class InvoiceSelector(BaseSelector):
    """Read-only queries for the lifecycle engine and its callers."""

    def overdue_candidates(
        self,
        company_id: str | None,
        due_before: datetime,
        limit: int | None = None,
    ) -> list[UUID]:
        """SENT invoices whose due date is strictly before ``due_before``, oldest first."""
        stmt = (
            select(InvoiceModel.id)
            .where(InvoiceModel.status == InvoiceStatus.SENT.value)
            .where(InvoiceModel.due_date < due_before)
            .order_by(InvoiceModel.due_date, InvoiceModel.number)
        )
        if company_id is not None:
            stmt = stmt.where(InvoiceModel.company_id == company_id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def audit_trail(self, invoice_id: UUID) -> list[AuditEntry]:
        rows = self.session.execute(
            select(StatusAuditEntryModel)
            .where(StatusAuditEntryModel.invoice_id == invoice_id)
            .order_by(StatusAuditEntryModel.seq)
        ).scalars()
        return [row.to_dto() for row in rows]

    def payment_audit_trail(self, invoice_id: UUID) -> list[PaymentAuditEntry]:
        rows = self.session.execute(
            select(PaymentAuditEntryModel)
            .where(PaymentAuditEntryModel.invoice_id == invoice_id)
            .order_by(PaymentAuditEntryModel.occurred_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def audit_failures(self, invoice_id: UUID) -> list[dict]:
        rows = self.session.execute(
            select(AuditFailureRecordModel)
            .where(AuditFailureRecordModel.invoice_id == invoice_id)
            .order_by(AuditFailureRecordModel.occurred_at)
        ).scalars()
        return [
            {
                "event_type": row.event_type,
                "old_status": row.old_status,
                "new_status": row.new_status,
                "error_type": row.error_type,
                "error_message": row.error_message,
                "occurred_at": row.occurred_at,
            }
            for row in rows
        ]

    def pending_notifications(self, invoice_id: UUID) -> list[dict]:
        rows = self.session.execute(
            select(NotificationOutboxModel)
            .where(NotificationOutboxModel.invoice_id == invoice_id)
            .where(NotificationOutboxModel.state == "PENDING")
            .order_by(NotificationOutboxModel.enqueued_at)
        ).scalars()
        return [
            {
                "template_key": row.template_key,
                "subject": row.subject,
                "recipient_email": row.recipient_email,
                "old_status": row.old_status,
                "new_status": row.new_status,
            }
            for row in rows
        ]
