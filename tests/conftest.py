"""
Pytest fixtures for the invoice lifecycle engine test suite.

Provides:
- An in-memory SQLite engine shared by the whole session
- A per-test session that joins an outer transaction rolled back at teardown
- A deterministic clock and a lifecycle service wired to both
- An invoice factory that inserts invoices with pre-existing payments
- Structured log capture
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

from invoice_config import get_active_config
from invoice_kernel.db.engine import create_tables, init_engine_from_url, reset_engine
from invoice_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from invoice_kernel.domain.clock import DeterministicClock
from invoice_kernel.domain.invoice import InvoiceStatus, PaymentMethod, UserRole
from invoice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from invoice_kernel.models.invoice import InvoiceModel, PaymentModel
from invoice_services.lifecycle_service import (
    InvoiceLifecycleService,
    PaymentContext,
    StatusChangeContext,
)

COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture invoice_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.update_status(...)
            logs = captured_logs()
            assert any(r["message"] == "status_change_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("invoice_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single in-memory SQLite engine for the entire test session."""
    eng = init_engine_from_url("sqlite://")
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def db_connection(db_engine):
    """A connection holding an outer transaction that is never committed."""
    conn = db_engine.connect()
    trans = conn.begin()
    yield conn
    try:
        trans.rollback()
    finally:
        conn.close()


@pytest.fixture
def session(db_connection) -> Generator[Session, None, None]:
    """
    Provide a database session for testing.

    The session joins the outer transaction of ``db_connection``; every
    ``session.commit()`` releases a SAVEPOINT and the outer rollback at
    teardown undoes all data changes made during the test.
    """
    sess = Session(
        bind=db_connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    yield sess
    sess.close()


@pytest.fixture
def fallback_session_factory(db_connection):
    """Independent sessions on the test connection, for audit fallback writes."""

    def _factory() -> Session:
        return Session(bind=db_connection, join_transaction_mode="create_savepoint")

    return _factory


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(NOW)


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def service(session, clock, config, fallback_session_factory):
    return InvoiceLifecycleService(
        session,
        clock=clock,
        config=config,
        audit_fallback_session_factory=fallback_session_factory,
    )


@pytest.fixture
def finance_context():
    def _make(**overrides) -> StatusChangeContext:
        values = {
            "user_id": "user-finance",
            "user_role": UserRole.FINANCE,
            "company_id": COMPANY_ID,
        }
        values.update(overrides)
        return StatusChangeContext(**values)

    return _make


@pytest.fixture
def payment_context():
    def _make(**overrides) -> PaymentContext:
        values = {
            "user_id": "user-finance",
            "user_role": UserRole.FINANCE,
            "company_id": COMPANY_ID,
        }
        values.update(overrides)
        return PaymentContext(**values)

    return _make


# =============================================================================
# Data
# =============================================================================


@pytest.fixture
def create_invoice(session, clock):
    """
    Insert and commit an invoice, optionally with existing payments.

    ``payments`` is a list of amounts (strings or Decimals); each becomes a
    BANK_TRANSFER row dated one day before the clock.
    """
    counter = iter(range(1, 10_000))

    def _create(
        total: str = "1000.00",
        status: InvoiceStatus = InvoiceStatus.SENT,
        due_in_days: int = 30,
        payments: list[str] | None = None,
        company_id: str = COMPANY_ID,
        currency: str = "AED",
        customer_email: str | None = "billing@customer.example",
        trn_number: str | None = None,
    ) -> InvoiceModel:
        model = InvoiceModel(
            id=uuid4(),
            number=f"INV-{next(counter):05d}",
            company_id=company_id,
            customer_id="customer-1",
            customer_name="Customer One LLC",
            customer_email=customer_email,
            trn_number=trn_number,
            status=status.value,
            total_amount=Decimal(total),
            currency=currency,
            due_date=clock.now() + timedelta(days=due_in_days),
            created_by_id="fixture",
        )
        for sequence, amount in enumerate(payments or [], start=1):
            model.payments.append(
                PaymentModel(
                    sequence=sequence,
                    amount=Decimal(amount),
                    currency=currency,
                    payment_date=clock.now() - timedelta(days=1),
                    method=PaymentMethod.BANK_TRANSFER.value,
                    reference=f"TRX-{sequence}",
                    is_refund=Decimal(amount) < 0,
                    created_by_id="fixture",
                )
            )
        session.add(model)
        session.commit()
        return model

    return _create
