"""ORM models.  Importing this package registers every table on Base.metadata."""

from invoice_kernel.models.audit import (
    AuditFailureRecordModel,
    PaymentAuditEntryModel,
    StatusAuditEntryModel,
)
from invoice_kernel.models.invoice import InvoiceModel, PaymentModel
from invoice_kernel.models.notification import NotificationOutboxModel

__all__ = [
    "InvoiceModel",
    "PaymentModel",
    "StatusAuditEntryModel",
    "PaymentAuditEntryModel",
    "AuditFailureRecordModel",
    "NotificationOutboxModel",
]
