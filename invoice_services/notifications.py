"""
Notification scheduling hand-off.

The lifecycle service decides WHETHER a status change warrants a customer
notification; a ``NotificationScheduler`` decides how it is queued.  The
default scheduler writes an outbox row in the caller's transaction, so a
notification exists if and only if the status change committed.  Rendering
and delivery belong to whatever drains the outbox.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from invoice_kernel.domain.clock import Clock, SystemClock
from invoice_kernel.domain.invoice import Invoice, InvoiceStatus
from invoice_kernel.logging_config import get_logger
from invoice_kernel.models.notification import NotificationOutboxModel

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class NotificationTemplate:
    template_key: str
    subject: str

    def subject_for(self, invoice: Invoice) -> str:
        return self.subject.format(number=invoice.number)


NOTIFIABLE_TRANSITIONS: dict[tuple[InvoiceStatus, InvoiceStatus], NotificationTemplate] = {
    (InvoiceStatus.DRAFT, InvoiceStatus.SENT): NotificationTemplate(
        "invoice_sent", "Invoice {number} - Payment Due"
    ),
    (InvoiceStatus.SENT, InvoiceStatus.OVERDUE): NotificationTemplate(
        "overdue_reminder", "URGENT: Invoice {number} is Past Due"
    ),
    (InvoiceStatus.OVERDUE, InvoiceStatus.PAID): NotificationTemplate(
        "late_payment_received", "Thank You - Invoice {number} Payment Received"
    ),
    (InvoiceStatus.SENT, InvoiceStatus.PAID): NotificationTemplate(
        "payment_confirmation", "Payment Confirmed - Invoice {number}"
    ),
}


def notification_template(
    old_status: InvoiceStatus, new_status: InvoiceStatus
) -> NotificationTemplate | None:
    return NOTIFIABLE_TRANSITIONS.get((old_status, new_status))


class NotificationScheduler(Protocol):
    """Queues a customer notification for a committed status change."""

    def schedule(
        self,
        invoice: Invoice,
        old_status: InvoiceStatus,
        new_status: InvoiceStatus,
        company_id: str,
    ) -> bool:
        """Return True if a notification was queued."""
        ...


class OutboxNotificationScheduler:
    """
    Writes ``NotificationOutboxModel`` rows in the caller's transaction.

    Non-goals:
        - Does NOT render or send anything.
        - Does NOT commit; the lifecycle service owns the transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def schedule(
        self,
        invoice: Invoice,
        old_status: InvoiceStatus,
        new_status: InvoiceStatus,
        company_id: str,
    ) -> bool:
        template = notification_template(old_status, new_status)
        if template is None:
            return False
        if not invoice.customer_email:
            logger.info(
                "notification_skipped_no_recipient",
                extra={"invoice_id": str(invoice.id), "template_key": template.template_key},
            )
            return False

        self._session.add(
            NotificationOutboxModel(
                invoice_id=invoice.id,
                company_id=company_id,
                recipient_email=invoice.customer_email,
                old_status=old_status.value,
                new_status=new_status.value,
                template_key=template.template_key,
                subject=template.subject_for(invoice),
                enqueued_at=self._clock.now_utc(),
            )
        )
        self._session.flush()
        logger.info(
            "notification_enqueued",
            extra={"invoice_id": str(invoice.id), "template_key": template.template_key},
        )
        return True
