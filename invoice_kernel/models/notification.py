"""
Module: invoice_kernel.models.notification
Responsibility: Outbox rows for customer notifications enqueued by the
    lifecycle engine.
Architecture position: Kernel > Models.

The engine only enqueues.  Rendering and delivery are owned by an external
worker that drains PENDING rows.  Because the row is written in the same
transaction as the status change, a notification exists if and only if the
change committed.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from invoice_kernel.db.base import Base


class NotificationOutboxModel(Base):
    """A pending customer notification about a status change."""

    __tablename__ = "notification_outbox"

    __table_args__ = (
        Index("idx_notification_outbox_state", "state"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    template_key: Mapped[str] = mapped_column(String(50), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    enqueued_at: Mapped[datetime] = mapped_column(nullable=False)
