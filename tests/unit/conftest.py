"""Fixtures for pure engine tests: frozen Invoice DTOs, no database."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from invoice_kernel.domain.invoice import Invoice, InvoiceStatus, Payment, PaymentMethod
from invoice_kernel.domain.values import Money

UNIT_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return UNIT_NOW


@pytest.fixture
def make_invoice():
    def _make(
        total: str = "1000.00",
        payments: tuple[str, ...] = (),
        status: InvoiceStatus = InvoiceStatus.SENT,
        due_in_days: int = 30,
        currency: str = "AED",
        trn_number: str | None = None,
        customer_email: str | None = "billing@customer.example",
    ) -> Invoice:
        invoice_id = uuid4()
        rows = tuple(
            Payment(
                id=uuid4(),
                invoice_id=invoice_id,
                amount=Money.of(amount, currency),
                payment_date=UNIT_NOW - timedelta(days=len(payments) - i),
                method=PaymentMethod.BANK_TRANSFER,
                sequence=i + 1,
                reference=f"TRX-{i + 1}",
                is_refund=amount.startswith("-"),
            )
            for i, amount in enumerate(payments)
        )
        return Invoice(
            id=invoice_id,
            number="INV-00001",
            company_id="company-1",
            customer_id="customer-1",
            status=status,
            total_amount=Money.of(total, currency),
            due_date=UNIT_NOW + timedelta(days=due_in_days),
            payments=rows,
            customer_email=customer_email,
            trn_number=trn_number,
        )

    return _make
