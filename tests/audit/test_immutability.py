"""
Tests for ORM-level immutability enforcement.

Audit entries, payment audit entries, failure records and payment rows are
append-only.  A WRITTEN_OFF invoice's status can no longer change.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from invoice_kernel.domain.invoice import InvoiceStatus, PaymentMethod
from invoice_kernel.exceptions import ImmutabilityViolationError
from invoice_kernel.models.audit import PaymentAuditEntryModel, StatusAuditEntryModel
from invoice_engines.payment_validation import PaymentData

from tests.conftest import NOW

S = InvoiceStatus


@pytest.fixture
def status_entry(service, session, create_invoice, finance_context):
    invoice = create_invoice(status=S.DRAFT)
    service.update_status(invoice.id, S.SENT, finance_context())
    return session.execute(
        select(StatusAuditEntryModel).where(StatusAuditEntryModel.invoice_id == invoice.id)
    ).scalar_one()


class TestStatusAuditImmutability:
    def test_update_blocked(self, session, status_entry):
        status_entry.reason = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"
        session.rollback()

    def test_delete_blocked(self, session, status_entry):
        session.delete(status_entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestPaymentImmutability:
    def test_payment_row_update_blocked(self, session, create_invoice):
        invoice = create_invoice(payments=["100.00"])
        payment = invoice.payments[0]

        payment.amount = payment.amount * 2
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_payment_row_delete_blocked(self, session, create_invoice):
        invoice = create_invoice(payments=["100.00"])
        session.delete(invoice.payments[0])
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_payment_audit_update_blocked(self, service, session, create_invoice, payment_context):
        invoice = create_invoice()
        service.record_payment(
            invoice.id,
            PaymentData(
                amount=Decimal("10.00"),
                payment_date=NOW - timedelta(hours=1),
                method=PaymentMethod.CASH,
            ),
            payment_context(),
        )
        row = session.execute(
            select(PaymentAuditEntryModel).where(PaymentAuditEntryModel.invoice_id == invoice.id)
        ).scalar_one()

        row.payment_status = "FULLY_PAID"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestWrittenOffInvoice:
    def test_status_change_blocked_at_orm_level(self, session, create_invoice):
        invoice = create_invoice(status=S.WRITTEN_OFF)

        invoice.status = S.SENT.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_invoice_delete_blocked(self, session, create_invoice):
        invoice = create_invoice(status=S.DRAFT)
        session.delete(invoice)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
