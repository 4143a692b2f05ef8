"""
Module: invoice_kernel.models.audit
Responsibility: ORM persistence for the invoice audit trail: status change
    entries, payment audit entries, and audit write failure records.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - All three tables are append-only; no UPDATE or DELETE (ORM listeners
      in db/immutability.py).
    - Status entries form a per-invoice hash chain:
      entry_hash = H(invoice_id | action | payload_hash | prev_hash).
    - (invoice_id, seq) is unique, so two writers can never both append
      entry N for the same invoice.

Audit relevance:
    StatusAuditEntryModel IS the record of when and why an invoice changed.
    It is written in the same transaction as the status change it describes.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from invoice_kernel.db.base import Base
from invoice_kernel.domain.invoice import (
    AuditEntry,
    AuditMetadata,
    BusinessContext,
    InvoiceStatus,
    PaymentAuditEntry,
    PaymentMethod,
    PaymentStatus,
    UserRole,
)
from invoice_kernel.domain.values import Money


class StatusAuditEntryModel(Base):
    """
    Audit entry for one accepted status mutation.

    Contract:
        Rows are append-only.  Each row's entry_hash includes the previous
        row's hash for the same invoice.

    Non-goals:
        - This model does NOT compute hashes; AuditRecorder does.
    """

    __tablename__ = "invoice_status_audit"

    __table_args__ = (
        UniqueConstraint("invoice_id", "seq", name="uq_invoice_status_audit_seq"),
        Index("idx_status_audit_company", "company_id"),
        Index("idx_status_audit_occurred", "occurred_at"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_role: Mapped[str] = mapped_column(String(20), nullable=False)
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_context: Mapped[dict] = mapped_column(JSON, nullable=False)
    automated_change: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    batch_operation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    compliance_flags: Mapped[list] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def to_dto(self) -> AuditEntry:
        return AuditEntry(
            id=self.id,
            invoice_id=self.invoice_id,
            invoice_number=self.invoice_number,
            company_id=self.company_id,
            user_id=self.user_id,
            user_role=UserRole(self.user_role),
            old_status=InvoiceStatus(self.old_status),
            new_status=InvoiceStatus(self.new_status),
            reason=self.reason,
            business_context=BusinessContext.from_dict(self.business_context),
            metadata=AuditMetadata(
                automated_change=self.automated_change,
                batch_operation=self.batch_operation,
                compliance_flags=tuple(self.compliance_flags),
            ),
            timestamp=self.occurred_at,
            entry_hash=self.entry_hash,
            prev_hash=self.prev_hash,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<StatusAuditEntry {self.invoice_number}#{self.seq} "
            f"{self.old_status}->{self.new_status}>"
        )


class PaymentAuditEntryModel(Base):
    """Audit entry for one recorded payment or refund."""

    __tablename__ = "invoice_payment_audit"

    __table_args__ = (
        Index("idx_payment_audit_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice_payments.id"), nullable=False
    )
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    overpayment_amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    compliance_flags: Mapped[list] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> PaymentAuditEntry:
        return PaymentAuditEntry(
            id=self.id,
            invoice_id=self.invoice_id,
            payment_id=self.payment_id,
            company_id=self.company_id,
            user_id=self.user_id,
            amount=Money.of(self.amount, self.currency),
            method=PaymentMethod(self.method),
            total_paid=self.total_paid,
            remaining_amount=self.remaining_amount,
            overpayment_amount=self.overpayment_amount,
            payment_status=PaymentStatus(self.payment_status),
            compliance_flags=tuple(self.compliance_flags),
            timestamp=self.occurred_at,
        )


class AuditFailureRecordModel(Base):
    """
    Fallback record written when the primary audit write fails.

    Written in its own transaction so that it survives the rollback of the
    status change it failed to audit.
    """

    __tablename__ = "audit_failure_records"

    __table_args__ = (
        Index("idx_audit_failure_invoice", "invoice_id"),
    )

    event_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="audit_logging_failed"
    )
    invoice_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    old_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_type: Mapped[str] = mapped_column(String(100), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
