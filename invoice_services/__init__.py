"""
invoice_services -- stateful orchestration over the pure engines.

Services own the transaction boundary: they lock the invoice, call the
engines, persist the outcome with its audit entry, and commit or roll back.

MUST NOT be imported by invoice_kernel or invoice_engines.
"""

from invoice_services.audit_recorder import AuditRecorder
from invoice_services.lifecycle_service import (
    SYSTEM_USER_ID,
    BatchItemResult,
    BatchItemStatus,
    BatchResult,
    InvoiceLifecycleService,
    PaymentContext,
    PaymentResult,
    RefundResult,
    StatusChangeContext,
    StatusChangeResult,
)
from invoice_services.notifications import (
    NOTIFIABLE_TRANSITIONS,
    NotificationScheduler,
    OutboxNotificationScheduler,
)

__all__ = [
    "AuditRecorder",
    "BatchItemResult",
    "BatchItemStatus",
    "BatchResult",
    "InvoiceLifecycleService",
    "NOTIFIABLE_TRANSITIONS",
    "NotificationScheduler",
    "OutboxNotificationScheduler",
    "PaymentContext",
    "PaymentResult",
    "RefundResult",
    "SYSTEM_USER_ID",
    "StatusChangeContext",
    "StatusChangeResult",
]
