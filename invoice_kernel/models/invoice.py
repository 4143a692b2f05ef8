"""
Module: invoice_kernel.models.invoice
Responsibility: ORM persistence for invoices and their payment rows.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - status is NOT NULL and always an InvoiceStatus value.
    - Invoice rows carry an optimistic ``version`` column (version_id_col);
      a concurrent writer that read a stale version fails at flush.
    - There is NO paid-total column.  Amount paid is always the sum of the
      payment rows.
    - Payment rows are append-only (db/immutability.py).  Refunds are new
      rows with a negative amount.

Failure modes:
    - StaleDataError at flush on a version conflict (translated to
      OptimisticLockError by the lifecycle service).
    - ImmutabilityViolationError on UPDATE/DELETE of a payment row.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from invoice_kernel.db.base import TrackedBase
from invoice_kernel.domain.invoice import (
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentMethod,
)
from invoice_kernel.domain.values import Money


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Maps to the ``Invoice`` frozen dataclass.  Payments are loaded eagerly in
    insertion order via the ``payments`` relationship.

    Guarantees:
        - number is unique within a company (uq_invoices_company_number).
        - version increments on every UPDATE.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("company_id", "number", name="uq_invoices_company_number"),
        Index("idx_invoices_company_status", "company_id", "status"),
        Index("idx_invoices_due_date", "due_date"),
    )

    number: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    trn_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value
    )
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payments: Mapped[list["PaymentModel"]] = relationship(
        back_populates="invoice",
        order_by="PaymentModel.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Invoice:
        """Convert ORM model to frozen dataclass."""
        return Invoice(
            id=self.id,
            number=self.number,
            company_id=self.company_id,
            customer_id=self.customer_id,
            status=InvoiceStatus(self.status),
            total_amount=Money.of(self.total_amount, self.currency),
            due_date=self.due_date,
            payments=tuple(p.to_dto() for p in self.payments),
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            trn_number=self.trn_number,
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.number} [{self.status}]>"


class PaymentModel(TrackedBase):
    """
    ORM model for payment and refund rows.

    Guarantees:
        - sequence is unique per invoice and allocated under the invoice row
          lock, so it reflects insertion order.
        - amount is negative exactly when is_refund is True.
    """

    __tablename__ = "invoice_payments"

    __table_args__ = (
        UniqueConstraint("invoice_id", "sequence", name="uq_invoice_payments_sequence"),
        Index("idx_invoice_payments_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_refund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="payments")

    def to_dto(self) -> Payment:
        return Payment(
            id=self.id,
            invoice_id=self.invoice_id,
            amount=Money.of(self.amount, self.currency),
            payment_date=self.payment_date,
            method=PaymentMethod(self.method),
            sequence=self.sequence,
            reference=self.reference,
            notes=self.notes,
            is_refund=self.is_refund,
        )
