"""
Invoice Domain Models (``invoice_kernel.domain.invoice``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the lifecycle engine:
invoices, payments, business-context snapshots and audit entries, plus the
enumerations shared by every layer.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  Returned by
ORM ``to_dto()`` methods and consumed by the pure engines.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Money`` -- NEVER ``float``.
* ``Invoice.status`` is always an ``InvoiceStatus`` member.
* There is no stored paid-total: ``Invoice.total_paid`` is always the sum of
  ``payments``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from invoice_kernel.domain.values import Money


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "DRAFT"
    SENT = "SENT"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    DISPUTED = "DISPUTED"
    WRITTEN_OFF = "WRITTEN_OFF"


class PaymentMethod(str, Enum):
    """How a payment was made."""
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    STRIPE_CARD = "STRIPE_CARD"
    OTHER = "OTHER"


class UserRole(str, Enum):
    """Caller roles, trusted as already authenticated."""
    ADMIN = "ADMIN"
    FINANCE = "FINANCE"
    USER = "USER"
    VIEWER = "VIEWER"


class PaymentStatus(str, Enum):
    """Payment completeness derived by reconciliation."""
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_PAID = "FULLY_PAID"
    OVERPAID = "OVERPAID"


@dataclass(frozen=True)
class Payment:
    """A single payment (positive) or refund (negative) against an invoice."""
    id: UUID
    invoice_id: UUID
    amount: Money
    payment_date: datetime
    method: PaymentMethod
    sequence: int
    reference: str | None = None
    notes: str | None = None
    is_refund: bool = False


@dataclass(frozen=True)
class Invoice:
    """An invoice and its full payment history in insertion order."""
    id: UUID
    number: str
    company_id: str
    customer_id: str
    status: InvoiceStatus
    total_amount: Money
    due_date: datetime
    payments: tuple[Payment, ...] = ()
    customer_name: str | None = None
    customer_email: str | None = None
    trn_number: str | None = None
    version: int = 1

    @property
    def currency(self) -> str:
        return self.total_amount.currency

    @property
    def total_paid(self) -> Money:
        total = Money.zero(self.currency)
        for payment in self.payments:
            total = total + payment.amount
        return total


@dataclass(frozen=True)
class BusinessContext:
    """
    Snapshot of the payment and due-date facts at the moment of a change.

    Every field is required so that no compliance datum can be silently
    omitted from an audit entry.
    """
    is_overdue: bool
    days_past_due: int
    has_payments: bool
    total_paid: Decimal
    remaining_amount: Decimal
    due_date: datetime
    customer_email: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_overdue": self.is_overdue,
            "days_past_due": self.days_past_due,
            "has_payments": self.has_payments,
            "total_paid": str(self.total_paid),
            "remaining_amount": str(self.remaining_amount),
            "due_date": self.due_date.isoformat(),
            "customer_email": self.customer_email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusinessContext:
        return cls(
            is_overdue=bool(data["is_overdue"]),
            days_past_due=int(data["days_past_due"]),
            has_payments=bool(data["has_payments"]),
            total_paid=Decimal(data["total_paid"]),
            remaining_amount=Decimal(data["remaining_amount"]),
            due_date=datetime.fromisoformat(data["due_date"]),
            customer_email=data.get("customer_email"),
        )


@dataclass(frozen=True)
class AuditMetadata:
    automated_change: bool = False
    batch_operation: bool = False
    compliance_flags: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuditEntry:
    """One accepted status mutation.  Append-only once persisted."""
    id: UUID
    invoice_id: UUID
    invoice_number: str
    company_id: str
    user_id: str
    user_role: UserRole
    old_status: InvoiceStatus
    new_status: InvoiceStatus
    reason: str
    business_context: BusinessContext
    metadata: AuditMetadata
    timestamp: datetime
    entry_hash: str = ""
    prev_hash: str | None = None
    notes: str | None = None

    @property
    def compliance_flags(self) -> tuple[str, ...]:
        return self.metadata.compliance_flags


@dataclass(frozen=True)
class PaymentAuditEntry:
    """One recorded payment or refund with its reconciliation snapshot."""
    id: UUID
    invoice_id: UUID
    payment_id: UUID
    company_id: str
    user_id: str
    amount: Money
    method: PaymentMethod
    total_paid: Decimal
    remaining_amount: Decimal
    overpayment_amount: Decimal
    payment_status: PaymentStatus
    compliance_flags: tuple[str, ...] = field(default_factory=tuple)
    timestamp: datetime | None = None
