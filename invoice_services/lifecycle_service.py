"""
invoice_services.lifecycle_service -- Invoice status and payment orchestration.

Responsibility:
    Owns the write path to ``Invoice.status``, payment rows and audit
    entries.  Orchestrates fetch -> reconcile -> validate -> correct ->
    persist -> audit -> notify for single invoices, batches, the overdue
    sweep, payment recording and overpayment refunds.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes the pure engines (ReconciliationCalculator, StatusValidator,
    StatusCorrector, PaymentValidator, compliance builders) with the
    AuditRecorder and a NotificationScheduler.

Invariants enforced:
    - Atomicity: one invoice's status write, audit entry and notification
      commit together or not at all.  Every public write operation commits
      on success and rolls back on any failure.
    - Isolation: the invoice row is read with ``SELECT ... FOR UPDATE`` and
      carries an optimistic version column, so a concurrent writer on the
      same invoice either waits or fails with OptimisticLockError.
    - Access: an invoice owned by another company is refused with
      AccessDeniedError before any other check.
    - Effective status: the persisted status is the corrector's output,
      never the raw request, and ``changed`` says whether anything moved.
    - Amount paid is never stored; it is always the sum of payment rows.

Failure modes:
    - InvoiceNotFoundError, AccessDeniedError: lookup failures.
    - TransitionRejectedError subclasses: the validator refused.
    - PaymentValidationError, OverpaymentRejectedError, CurrencyMismatchError:
      payment input refused.
    - PersistenceFailureError / OptimisticLockError: commit failed.
    - OperationTimeoutError: the caller's timeout expired; rolled back.
    - AuditWriteFailureError: audit INSERT failed; rolled back, fallback
      record attempted, then raised.

Audit relevance:
    Every accepted mutation returns its audit entry so callers can show
    "what changed and why" without a second round-trip.  Batch operations
    never abort on a single invoice's failure; each failure is reported in
    the per-item results.

Usage:
    service = InvoiceLifecycleService(session, clock=SystemClock())
    result = service.update_status(
        invoice_id,
        InvoiceStatus.SENT,
        StatusChangeContext(user_id="u-1", user_role=UserRole.FINANCE, company_id="c-1"),
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from invoice_config import get_active_config
from invoice_config.schema import LifecycleConfig, OverdueDetectionConfig
from invoice_kernel.db.engine import is_postgres
from invoice_kernel.domain.clock import Clock, Deadline, SystemClock
from invoice_kernel.domain.invoice import (
    AuditEntry,
    AuditMetadata,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentAuditEntry,
    PaymentMethod,
    UserRole,
)
from invoice_kernel.domain.values import Money
from invoice_kernel.domain.workflow import Workflow
from invoice_kernel.exceptions import (
    AccessDeniedError,
    AuditWriteFailureError,
    InvoiceEngineError,
    InvoiceNotFoundError,
    InvoiceNotOverpaidError,
    OperationTimeoutError,
    OptimisticLockError,
    PaymentValidationError,
    PersistenceFailureError,
    RefundExceedsOverpaymentError,
)
from invoice_kernel.logging_config import LogContext, get_logger
from invoice_kernel.models.invoice import InvoiceModel, PaymentModel
from invoice_kernel.selectors.invoice_selector import InvoiceSelector
from invoice_engines.compliance import (
    build_business_context,
    default_reason,
    payment_compliance_flags,
    status_compliance_flags,
)
from invoice_engines.payment_validation import (
    PaymentData,
    PaymentValidationRules,
    PaymentValidator,
)
from invoice_engines.reconciliation import (
    InvoiceReconciliation,
    ReconciliationCalculator,
    ReconciliationResult,
)
from invoice_engines.status_corrector import (
    CorrectionOutcome,
    StatusCorrection,
    StatusCorrector,
)
from invoice_engines.status_rules import (
    INVOICE_STATUS_WORKFLOW,
    StatusValidator,
    TransitionDecision,
    TransitionRequest,
)
from invoice_services.audit_recorder import AuditRecorder
from invoice_services.notifications import (
    NotificationScheduler,
    OutboxNotificationScheduler,
    notification_template,
)

logger = get_logger("services.lifecycle")

SYSTEM_USER_ID = "system"

REFUND_NOTE_PREFIX = "Overpayment refund"

T = TypeVar("T")


# =============================================================================
# Caller context
# =============================================================================


@dataclass(frozen=True)
class StatusChangeContext:
    """Who is asking, on behalf of which company, and why."""

    user_id: str
    user_role: UserRole
    company_id: str
    reason: str | None = None
    notes: str | None = None
    force_override: bool = False
    notify_customer: bool = False
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class PaymentContext:
    """Caller context for payment recording and refunds."""

    user_id: str
    user_role: UserRole
    company_id: str
    auto_sync_status: bool = True
    notify_customer: bool = False
    timeout_seconds: float | None = None

    def as_status_context(self, reason: str | None = None) -> StatusChangeContext:
        return StatusChangeContext(
            user_id=self.user_id,
            user_role=self.user_role,
            company_id=self.company_id,
            reason=reason,
            notify_customer=self.notify_customer,
            timeout_seconds=self.timeout_seconds,
        )


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class StatusChangeResult:
    """
    Outcome of one status request.

    ``changed`` is False when the corrector kept the current status (for
    example a PAID request the payments no longer support); ``outcome``
    says why.  ``audit_entry`` is present exactly when a change was
    persisted.
    """

    invoice_id: UUID
    invoice_number: str
    old_status: InvoiceStatus
    requested_status: InvoiceStatus
    new_status: InvoiceStatus
    changed: bool
    outcome: CorrectionOutcome
    reason: str | None
    compliance_note: str | None
    reconciliation: ReconciliationResult
    audit_entry: AuditEntry | None = None
    requires_approval: bool = False
    approval_level: UserRole | None = None
    notification_scheduled: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class PaymentResult:
    payment: Payment
    reconciliation: ReconciliationResult
    audit_entry: PaymentAuditEntry
    status_change: StatusChangeResult | None = None

    @property
    def invoice_status(self) -> InvoiceStatus:
        if self.status_change is not None and self.status_change.changed:
            return self.status_change.new_status
        return self.reconciliation.current_status


@dataclass(frozen=True)
class RefundResult:
    refund: Payment
    before: ReconciliationResult
    after: ReconciliationResult
    audit_entry: PaymentAuditEntry


class BatchItemStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass(frozen=True)
class BatchItemResult:
    invoice_id: UUID
    status: BatchItemStatus
    old_status: InvoiceStatus | None = None
    new_status: InvoiceStatus | None = None
    message: str | None = None
    error_code: str | None = None
    status_change: StatusChangeResult | None = None
    payment: PaymentResult | None = None


@dataclass(frozen=True)
class BatchResult:
    """
    Aggregate outcome of a batch.

    Monetary figures are keyed by currency tag; amounts in different
    currencies are never added together.  For every successful item,
    ``total_amount_affected`` adds the outstanding balance and
    ``paid_amount_affected`` the amount paid so far; ``overdue_amount_affected``
    adds the outstanding balance of items moved to OVERDUE.
    """

    batch_id: UUID
    dry_run: bool
    total_requested: int
    results: tuple[BatchItemResult, ...]
    total_amount_affected: dict[str, Decimal] = field(default_factory=dict)
    paid_amount_affected: dict[str, Decimal] = field(default_factory=dict)
    overdue_amount_affected: dict[str, Decimal] = field(default_factory=dict)
    duration_ms: float = 0.0

    def _count(self, status: BatchItemStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def success_count(self) -> int:
        return self._count(BatchItemStatus.SUCCESS)

    @property
    def failed_count(self) -> int:
        return self._count(BatchItemStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(BatchItemStatus.SKIPPED)

    @property
    def audit_entries(self) -> tuple[AuditEntry, ...]:
        entries = []
        for r in self.results:
            change = r.status_change or (r.payment.status_change if r.payment else None)
            if change is not None and change.audit_entry is not None:
                entries.append(change.audit_entry)
        return tuple(entries)

    @property
    def failures(self) -> tuple[BatchItemResult, ...]:
        return tuple(r for r in self.results if r.status is BatchItemStatus.FAILED)


@dataclass(frozen=True)
class _TransitionPlan:
    invoice: Invoice
    reconciliation: ReconciliationResult
    decision: TransitionDecision | None
    correction: StatusCorrection


def _add(totals: dict[str, Decimal], money: Money) -> None:
    totals[money.currency] = totals.get(money.currency, Decimal("0")) + money.amount


def _unique(ids: Iterable[UUID]) -> list[UUID]:
    seen: set[UUID] = set()
    ordered = []
    for invoice_id in ids:
        if invoice_id not in seen:
            seen.add(invoice_id)
            ordered.append(invoice_id)
    return ordered


# =============================================================================
# Service
# =============================================================================


class InvoiceLifecycleService:
    """
    Orchestrates invoice status changes, payments and refunds.

    Contract:
        Every public write operation is one transaction per invoice: it
        commits on success and rolls back on any exception before
        re-raising it (or, in batches, recording it per item).

    Guarantees:
        - A status change is persisted only with its audit entry.
        - Engines are pure; all I/O and time come from this service's
          session and clock.
        - The rule table and tolerance are immutable values injected at
          construction.

    Non-goals:
        - Does NOT create invoices.
        - Does NOT render or deliver notifications.
        - Does NOT authenticate callers; the context is trusted.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LifecycleConfig | None = None,
        notification_scheduler: NotificationScheduler | None = None,
        audit_fallback_session_factory: Callable[[], Session] | None = None,
        workflow: Workflow = INVOICE_STATUS_WORKFLOW,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._notifications = notification_scheduler or OutboxNotificationScheduler(
            session, self._clock
        )
        self._calculator = ReconciliationCalculator(self._config.tolerance)
        self._validator = StatusValidator(workflow, self._config.tolerance)
        self._corrector = StatusCorrector(self._calculator)
        self._audit = AuditRecorder(
            session, self._clock, fallback_session_factory=audit_fallback_session_factory
        )

    @property
    def audit(self) -> AuditRecorder:
        return self._audit

    # =========================================================================
    # Transaction plumbing
    # =========================================================================

    def _deadline(self, timeout_seconds: float | None) -> Deadline:
        if timeout_seconds is None:
            timeout_seconds = self._config.operation_timeout_seconds
        return Deadline(timeout_seconds)

    def _check_deadline(self, deadline: Deadline, invoice_id: UUID | None) -> None:
        if deadline.expired():
            raise OperationTimeoutError(
                str(invoice_id) if invoice_id else None, deadline.timeout_seconds
            )

    def _apply_statement_timeout(self, deadline: Deadline) -> None:
        remaining = deadline.remaining()
        if remaining is None or not is_postgres(self._session):
            return
        self._session.execute(
            text(f"SET LOCAL statement_timeout = {max(1, int(remaining * 1000))}")
        )

    def _in_transaction(
        self,
        operation: str,
        invoice_id: UUID,
        deadline: Deadline,
        work: Callable[[], T],
        dry_run: bool = False,
    ) -> T:
        """
        Run ``work`` as one unit of work for ``invoice_id``.

        Commits on success (rolls back instead when ``dry_run``).  Rolls back
        and re-raises on failure, translating SQLAlchemy errors into the
        engine's persistence errors.
        """
        t0 = time.monotonic()
        try:
            self._check_deadline(deadline, invoice_id)
            self._apply_statement_timeout(deadline)
            result = work()
            self._check_deadline(deadline, invoice_id)
            if dry_run:
                self._session.rollback()
            else:
                self._session.commit()
        except AuditWriteFailureError as exc:
            self._session.rollback()
            recorded = self._audit.record_failure(exc)
            raise AuditWriteFailureError(
                exc.invoice_id, exc.cause, fallback_recorded=recorded, payload=exc.payload
            ) from exc
        except StaleDataError as exc:
            self._session.rollback()
            logger.warning(
                f"{operation}_conflict",
                extra={"invoice_id": str(invoice_id)},
            )
            raise OptimisticLockError("Invoice", str(invoice_id)) from exc
        except SQLAlchemyError as exc:
            self._session.rollback()
            if deadline.expired() or "statement timeout" in str(exc):
                raise OperationTimeoutError(str(invoice_id), deadline.timeout_seconds) from exc
            logger.error(
                f"{operation}_persistence_failed",
                extra={"invoice_id": str(invoice_id)},
                exc_info=True,
            )
            raise PersistenceFailureError(
                f"{operation} failed for invoice {invoice_id}: {exc}",
                invoice_id=str(invoice_id),
            ) from exc
        except Exception:
            self._session.rollback()
            raise

        logger.debug(
            f"{operation}_committed",
            extra={
                "invoice_id": str(invoice_id),
                "dry_run": dry_run,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return result

    def _lock_invoice(self, invoice_id: UUID, company_id: str) -> InvoiceModel:
        model = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise InvoiceNotFoundError(str(invoice_id))
        if model.company_id != company_id:
            logger.warning(
                "invoice_access_denied",
                extra={"invoice_id": str(invoice_id), "company_id": company_id},
            )
            raise AccessDeniedError(str(invoice_id), company_id)
        return model

    def _touch(self, model: InvoiceModel, user_id: str) -> None:
        """Force an UPDATE of the invoice row so its version advances."""
        model.updated_by_id = user_id
        flag_modified(model, "updated_by_id")

    # =========================================================================
    # Status transitions
    # =========================================================================

    def _plan(
        self,
        invoice: Invoice,
        requested: InvoiceStatus | None,
        context: StatusChangeContext,
    ) -> _TransitionPlan:
        """
        Validate and correct a request without writing anything.

        ``requested=None`` is the overdue sweep: the corrector is asked what
        the current status should be, and the resulting move is validated.
        """
        now = self._clock.now()
        reconciliation = self._calculator.reconcile(invoice)
        request = TransitionRequest(
            user_role=context.user_role,
            reason=context.reason,
            force_override=context.force_override,
        )

        if requested is None:
            correction = self._corrector.resolve(invoice, invoice.status, now)
            if not correction.changed:
                return _TransitionPlan(invoice, reconciliation, None, correction)
            decision = self._validator.validate(
                invoice.status, correction.effective_status, request, reconciliation
            )
            decision.raise_if_rejected()
            return _TransitionPlan(invoice, reconciliation, decision, correction)

        decision = self._validator.validate(invoice.status, requested, request, reconciliation)
        decision.raise_if_rejected()
        correction = self._corrector.resolve(invoice, requested, now)
        if correction.changed and correction.effective_status is not requested:
            decision = self._validator.validate(
                invoice.status, correction.effective_status, request, reconciliation
            )
            decision.raise_if_rejected()
        return _TransitionPlan(invoice, reconciliation, decision, correction)

    def _result(
        self,
        plan: _TransitionPlan,
        reason: str | None,
        audit_entry: AuditEntry | None = None,
        notification_scheduled: bool = False,
        dry_run: bool = False,
    ) -> StatusChangeResult:
        correction = plan.correction
        decision = plan.decision
        return StatusChangeResult(
            invoice_id=plan.invoice.id,
            invoice_number=plan.invoice.number,
            old_status=correction.current_status,
            requested_status=correction.requested_status,
            new_status=correction.effective_status,
            changed=correction.changed,
            outcome=correction.outcome,
            reason=reason,
            compliance_note=decision.compliance_note if decision else None,
            reconciliation=plan.reconciliation,
            audit_entry=audit_entry,
            requires_approval=decision.requires_approval if decision else False,
            approval_level=decision.approval_level if decision else None,
            notification_scheduled=notification_scheduled,
            dry_run=dry_run,
        )

    def _apply(
        self,
        model: InvoiceModel,
        plan: _TransitionPlan,
        context: StatusChangeContext,
        deadline: Deadline,
        automated: bool = False,
        batch: bool = False,
    ) -> StatusChangeResult:
        """Persist a planned change with its audit entry and notification."""
        invoice = plan.invoice
        correction = plan.correction
        if not correction.changed:
            logger.warning(
                "status_change_not_applied",
                extra={
                    "invoice_id": str(invoice.id),
                    "requested_status": correction.requested_status.value,
                    "outcome": correction.outcome.value,
                },
            )
            return self._result(plan, reason=None)

        old_status = correction.current_status
        new_status = correction.effective_status
        now = self._clock.now()
        reason = context.reason or default_reason(old_status, new_status)

        business_context = build_business_context(invoice, plan.reconciliation, now)
        flags = status_compliance_flags(
            invoice,
            new_status,
            business_context,
            plan.decision.approval_level if plan.decision else None,
        )

        self._check_deadline(deadline, invoice.id)
        model.status = new_status.value
        self._touch(model, context.user_id)
        self._session.flush()

        entry = self._audit.record_status_change(
            invoice=invoice,
            old_status=old_status,
            new_status=new_status,
            user_id=context.user_id,
            user_role=context.user_role,
            reason=reason,
            business_context=business_context,
            metadata=AuditMetadata(
                automated_change=automated or correction.corrected,
                batch_operation=batch,
                compliance_flags=flags,
            ),
            notes=context.notes,
        )

        scheduled = False
        if context.notify_customer and notification_template(old_status, new_status):
            scheduled = self._notifications.schedule(
                invoice, old_status, new_status, invoice.company_id
            )

        logger.info(
            "status_change_applied",
            extra={
                "invoice_id": str(invoice.id),
                "old_status": old_status.value,
                "new_status": new_status.value,
                "requested_status": correction.requested_status.value,
                "outcome": correction.outcome.value,
                "automated_change": automated,
                "batch_operation": batch,
            },
        )
        return self._result(plan, reason, audit_entry=entry, notification_scheduled=scheduled)

    def _change_status(
        self,
        model: InvoiceModel,
        requested: InvoiceStatus | None,
        context: StatusChangeContext,
        deadline: Deadline,
        automated: bool = False,
        batch: bool = False,
        dry_run: bool = False,
    ) -> StatusChangeResult:
        plan = self._plan(model.to_dto(), requested, context)
        if dry_run:
            reason = context.reason or default_reason(
                plan.correction.current_status, plan.correction.effective_status
            )
            return self._result(plan, reason if plan.correction.changed else None, dry_run=True)
        return self._apply(model, plan, context, deadline, automated=automated, batch=batch)

    def update_status(
        self,
        invoice_id: UUID,
        requested_status: InvoiceStatus,
        context: StatusChangeContext,
    ) -> StatusChangeResult:
        """
        Apply a requested status change to one invoice.

        Preconditions:
            - ``context`` identifies an already-authenticated caller.

        Postconditions:
            - On ``changed=True`` the invoice status and its audit entry are
              committed together.
            - On ``changed=False`` nothing was written.

        Raises:
            InvoiceNotFoundError, AccessDeniedError, TransitionRejectedError,
            PersistenceFailureError, AuditWriteFailureError.
        """
        deadline = self._deadline(context.timeout_seconds)
        with LogContext.bind(
            invoice_id=invoice_id,
            company_id=context.company_id,
            actor_id=context.user_id,
        ):
            logger.info(
                "status_change_requested",
                extra={
                    "requested_status": requested_status.value,
                    "user_role": context.user_role.value,
                    "force_override": context.force_override,
                },
            )
            return self._in_transaction(
                "status_change",
                invoice_id,
                deadline,
                lambda: self._change_status(
                    self._lock_invoice(invoice_id, context.company_id),
                    requested_status,
                    context,
                    deadline,
                ),
            )

    # =========================================================================
    # Batches
    # =========================================================================

    def _run_batch(
        self,
        invoice_ids: Sequence[UUID],
        requested: InvoiceStatus | None,
        context: StatusChangeContext,
        dry_run: bool,
        automated: bool,
        operation: str,
        chunk_size: int | None = None,
    ) -> BatchResult:
        batch_id = uuid4()
        t0 = time.monotonic()
        results: list[BatchItemResult] = []
        total: dict[str, Decimal] = {}
        paid: dict[str, Decimal] = {}
        overdue: dict[str, Decimal] = {}

        with LogContext.bind(batch_id=batch_id, company_id=context.company_id, actor_id=context.user_id):
            logger.info(
                f"{operation}_started",
                extra={"total_requested": len(invoice_ids), "dry_run": dry_run},
            )
            unique_ids = _unique(invoice_ids)
            size = chunk_size or len(unique_ids) or 1
            for start in range(0, len(unique_ids), size):
                chunk = unique_ids[start : start + size]
                for invoice_id in chunk:
                    item = self._batch_item(invoice_id, requested, context, dry_run, automated)
                    results.append(item)
                    change = item.status_change
                    if item.status is BatchItemStatus.SUCCESS and change is not None:
                        recon = change.reconciliation
                        _add(total, recon.remaining_amount)
                        _add(paid, recon.total_paid)
                        if change.new_status is InvoiceStatus.OVERDUE:
                            _add(overdue, recon.remaining_amount)
                logger.debug(
                    f"{operation}_chunk_completed",
                    extra={"chunk_start": start, "chunk_items": len(chunk)},
                )

            result = BatchResult(
                batch_id=batch_id,
                dry_run=dry_run,
                total_requested=len(invoice_ids),
                results=tuple(results),
                total_amount_affected=total,
                paid_amount_affected=paid,
                overdue_amount_affected=overdue,
                duration_ms=round((time.monotonic() - t0) * 1000, 2),
            )
            logger.info(
                f"{operation}_completed",
                extra={
                    "success_count": result.success_count,
                    "failed_count": result.failed_count,
                    "skipped_count": result.skipped_count,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    def _batch_item(
        self,
        invoice_id: UUID,
        requested: InvoiceStatus | None,
        context: StatusChangeContext,
        dry_run: bool,
        automated: bool,
    ) -> BatchItemResult:
        deadline = self._deadline(context.timeout_seconds)

        def work() -> StatusChangeResult | BatchItemResult:
            model = self._lock_invoice(invoice_id, context.company_id)
            current = InvoiceStatus(model.status)
            if requested is not None and current is requested:
                return BatchItemResult(
                    invoice_id=invoice_id,
                    status=BatchItemStatus.SKIPPED,
                    old_status=current,
                    new_status=current,
                    message=f"Invoice is already {current.value}",
                )
            return self._change_status(
                model,
                requested,
                context,
                deadline,
                automated=automated,
                batch=True,
                dry_run=dry_run,
            )

        with LogContext.bind(invoice_id=invoice_id):
            try:
                outcome = self._in_transaction(
                    "batch_status_change", invoice_id, deadline, work, dry_run=dry_run
                )
            except InvoiceEngineError as exc:
                logger.warning(
                    "batch_item_failed",
                    extra={"error_code": exc.code, "error_message": str(exc)},
                )
                return BatchItemResult(
                    invoice_id=invoice_id,
                    status=BatchItemStatus.FAILED,
                    message=str(exc),
                    error_code=exc.code,
                )

        if isinstance(outcome, BatchItemResult):
            return outcome
        if not outcome.changed:
            return BatchItemResult(
                invoice_id=invoice_id,
                status=BatchItemStatus.SKIPPED,
                old_status=outcome.old_status,
                new_status=outcome.new_status,
                message=f"No change applied ({outcome.outcome.value})",
                status_change=outcome,
            )
        return BatchItemResult(
            invoice_id=invoice_id,
            status=BatchItemStatus.SUCCESS,
            old_status=outcome.old_status,
            new_status=outcome.new_status,
            status_change=outcome,
        )

    def bulk_update_status(
        self,
        invoice_ids: Sequence[UUID],
        requested_status: InvoiceStatus,
        context: StatusChangeContext,
        dry_run: bool = False,
    ) -> BatchResult:
        """
        Apply the same requested status to many invoices independently.

        Each invoice is its own transaction.  A failure is recorded in the
        per-item results and never aborts the batch.  Invoices already in
        the requested status are skipped without an audit entry.  With
        ``dry_run`` every item is evaluated and rolled back.
        """
        return self._run_batch(
            invoice_ids,
            requested_status,
            context,
            dry_run=dry_run,
            automated=False,
            operation="bulk_status_update",
        )

    def detect_and_update_overdue(
        self,
        company_id: str,
        config: OverdueDetectionConfig | None = None,
    ) -> BatchResult:
        """
        Move SENT invoices past their due date to OVERDUE.

        Candidates are every SENT invoice due before
        ``now - grace_period_days``, oldest first, worked in chunks of
        ``batch_size``.  Each candidate is evaluated by the status corrector
        with no explicit request, so the corrector alone decides that the
        invoice is overdue.  Runs as the system user.
        """
        config = config or self._config.overdue
        cutoff = self._clock.now() - timedelta(days=config.grace_period_days)
        candidates = self._overdue_candidates(company_id, cutoff)
        context = StatusChangeContext(
            user_id=SYSTEM_USER_ID,
            user_role=UserRole.ADMIN,
            company_id=company_id,
            notify_customer=config.enable_notifications,
        )
        return self._run_batch(
            candidates,
            None,
            context,
            dry_run=config.dry_run,
            automated=True,
            operation="overdue_detection",
            chunk_size=config.batch_size,
        )

    def _overdue_candidates(self, company_id: str, cutoff: datetime) -> list[UUID]:
        candidates = InvoiceSelector(self._session).overdue_candidates(company_id, cutoff)
        # End the read transaction so each candidate gets its own.
        self._session.rollback()
        return candidates

    # =========================================================================
    # Payments
    # =========================================================================

    def _add_payment_row(
        self,
        model: InvoiceModel,
        amount: Money,
        payment_date: datetime,
        method: PaymentMethod,
        user_id: str,
        reference: str | None,
        notes: str | None,
        is_refund: bool,
    ) -> Payment:
        row = PaymentModel(
            sequence=len(model.payments) + 1,
            amount=amount.amount,
            currency=amount.currency,
            payment_date=payment_date,
            method=method.value,
            reference=reference,
            notes=notes,
            is_refund=is_refund,
            created_by_id=user_id,
        )
        model.payments.append(row)
        self._touch(model, user_id)
        self._session.flush()
        return row.to_dto()

    def _record_payment(
        self,
        invoice_id: UUID,
        payment: PaymentData,
        context: PaymentContext,
        rules: PaymentValidationRules,
        deadline: Deadline,
        batch: bool = False,
    ) -> PaymentResult:
        model = self._lock_invoice(invoice_id, context.company_id)
        invoice = model.to_dto()
        if invoice.status is InvoiceStatus.WRITTEN_OFF:
            raise PaymentValidationError(
                ["Cannot record a payment against a WRITTEN_OFF invoice"]
            )

        validator = PaymentValidator(rules)
        amount = validator.validate(payment, invoice.currency, self._clock.now())
        reconciliation = self._calculator.reconcile(invoice, new_payment=amount)
        validator.check_overpayment(reconciliation)

        self._check_deadline(deadline, invoice_id)
        recorded = self._add_payment_row(
            model,
            amount,
            payment.payment_date,
            payment.method,
            context.user_id,
            payment.reference,
            payment.notes,
            is_refund=False,
        )
        audit_entry = self._audit.record_payment(
            invoice,
            recorded,
            context.user_id,
            reconciliation,
            payment_compliance_flags(reconciliation, payment.method),
        )
        logger.info(
            "payment_recorded",
            extra={
                "invoice_id": str(invoice_id),
                "amount": amount.amount,
                "currency": amount.currency,
                "method": payment.method.value,
                "payment_status": reconciliation.payment_status.value,
            },
        )

        status_change = None
        if (
            context.auto_sync_status
            and reconciliation.is_settled
            and invoice.status is not InvoiceStatus.PAID
            and self._validator.workflow.find_transition(
                invoice.status.value, InvoiceStatus.PAID.value
            )
        ):
            status_context = context.as_status_context()
            plan = self._plan(model.to_dto(), InvoiceStatus.PAID, status_context)
            status_change = self._apply(
                model, plan, status_context, deadline, automated=True, batch=batch
            )

        return PaymentResult(
            payment=recorded,
            reconciliation=reconciliation,
            audit_entry=audit_entry,
            status_change=status_change,
        )

    def record_payment(
        self,
        invoice_id: UUID,
        payment: PaymentData,
        context: PaymentContext,
        rules: PaymentValidationRules | None = None,
    ) -> PaymentResult:
        """
        Validate and record one payment, then sync the status if settled.

        When the payment settles the invoice and ``auto_sync_status`` is set,
        the PAID transition runs in the same transaction as the payment row.

        Raises:
            PaymentValidationError, CurrencyMismatchError,
            OverpaymentRejectedError, InvoiceNotFoundError,
            AccessDeniedError, PersistenceFailureError.
        """
        deadline = self._deadline(context.timeout_seconds)
        with LogContext.bind(
            invoice_id=invoice_id,
            company_id=context.company_id,
            actor_id=context.user_id,
        ):
            return self._in_transaction(
                "payment",
                invoice_id,
                deadline,
                lambda: self._record_payment(
                    invoice_id,
                    payment,
                    context,
                    rules or self._config.payment_rules,
                    deadline,
                ),
            )

    def bulk_record_payments(
        self,
        items: Sequence[tuple[UUID, PaymentData]],
        context: PaymentContext,
        rules: PaymentValidationRules | None = None,
    ) -> BatchResult:
        """Record many payments, one transaction each, with per-item results."""
        rules = rules or self._config.payment_rules
        batch_id = uuid4()
        t0 = time.monotonic()
        results: list[BatchItemResult] = []
        total: dict[str, Decimal] = {}
        paid: dict[str, Decimal] = {}

        with LogContext.bind(batch_id=batch_id, company_id=context.company_id, actor_id=context.user_id):
            for invoice_id, payment in items:
                deadline = self._deadline(context.timeout_seconds)
                with LogContext.bind(invoice_id=invoice_id):
                    try:
                        outcome = self._in_transaction(
                            "batch_payment",
                            invoice_id,
                            deadline,
                            lambda: self._record_payment(
                                invoice_id, payment, context, rules, deadline, batch=True
                            ),
                        )
                    except InvoiceEngineError as exc:
                        logger.warning(
                            "batch_item_failed",
                            extra={"error_code": exc.code, "error_message": str(exc)},
                        )
                        results.append(
                            BatchItemResult(
                                invoice_id=invoice_id,
                                status=BatchItemStatus.FAILED,
                                message=str(exc),
                                error_code=exc.code,
                            )
                        )
                        continue

                _add(total, outcome.payment.amount)
                if outcome.reconciliation.is_settled:
                    _add(paid, outcome.reconciliation.total_paid)
                results.append(
                    BatchItemResult(
                        invoice_id=invoice_id,
                        status=BatchItemStatus.SUCCESS,
                        old_status=outcome.reconciliation.current_status,
                        new_status=outcome.invoice_status,
                        payment=outcome,
                        status_change=outcome.status_change,
                    )
                )

            result = BatchResult(
                batch_id=batch_id,
                dry_run=False,
                total_requested=len(items),
                results=tuple(results),
                total_amount_affected=total,
                paid_amount_affected=paid,
                duration_ms=round((time.monotonic() - t0) * 1000, 2),
            )
            logger.info(
                "bulk_payment_completed",
                extra={
                    "success_count": result.success_count,
                    "failed_count": result.failed_count,
                    "duration_ms": result.duration_ms,
                },
            )
        return result

    # =========================================================================
    # Refunds
    # =========================================================================

    def _refund(
        self,
        invoice_id: UUID,
        refund_amount: Decimal,
        context: PaymentContext,
        method: PaymentMethod,
        reference: str | None,
        notes: str | None,
        deadline: Deadline,
    ) -> RefundResult:
        model = self._lock_invoice(invoice_id, context.company_id)
        invoice = model.to_dto()
        before = self._calculator.reconcile(invoice)

        if not before.is_overpaid:
            raise InvoiceNotOverpaidError(str(invoice_id), before.overpayment_amount.amount)
        if isinstance(refund_amount, float):
            raise PaymentValidationError(["Refund amount must be a Decimal, not a float"])
        refund = Money.of(refund_amount, invoice.currency)
        if not refund.is_positive:
            raise PaymentValidationError(["Refund amount must be greater than zero"])
        if refund > before.overpayment_amount:
            raise RefundExceedsOverpaymentError(
                str(invoice_id), refund.amount, before.overpayment_amount.amount
            )

        after = self._calculator.reconcile(invoice, new_payment=-refund)

        self._check_deadline(deadline, invoice_id)
        recorded = self._add_payment_row(
            model,
            -refund,
            self._clock.now(),
            method,
            context.user_id,
            reference,
            f"{REFUND_NOTE_PREFIX} - {notes or 'excess payment returned'}",
            is_refund=True,
        )
        audit_entry = self._audit.record_payment(
            invoice,
            recorded,
            context.user_id,
            after,
            payment_compliance_flags(after, method, is_refund=True),
        )
        logger.info(
            "overpayment_refunded",
            extra={
                "invoice_id": str(invoice_id),
                "refund_amount": refund.amount,
                "overpayment_before": before.overpayment_amount.amount,
                "overpayment_after": after.overpayment_amount.amount,
            },
        )
        return RefundResult(refund=recorded, before=before, after=after, audit_entry=audit_entry)

    def process_overpayment_refund(
        self,
        invoice_id: UUID,
        refund_amount: Decimal,
        context: PaymentContext,
        method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        reference: str | None = None,
        notes: str | None = None,
    ) -> RefundResult:
        """
        Return part or all of an overpayment as a negative payment row.

        Raises:
            InvoiceNotOverpaidError: The invoice is not currently overpaid.
            RefundExceedsOverpaymentError: ``refund_amount`` is larger than
                the overpayment.
        """
        deadline = self._deadline(context.timeout_seconds)
        with LogContext.bind(
            invoice_id=invoice_id,
            company_id=context.company_id,
            actor_id=context.user_id,
        ):
            return self._in_transaction(
                "refund",
                invoice_id,
                deadline,
                lambda: self._refund(
                    invoice_id, refund_amount, context, method, reference, notes, deadline
                ),
            )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_invoice_reconciliation(self, invoice_id: UUID, company_id: str) -> InvoiceReconciliation:
        """Reconciliation figures plus payment timeline.  Read-only."""
        model = self._session.get(InvoiceModel, invoice_id)
        if model is None:
            raise InvoiceNotFoundError(str(invoice_id))
        if model.company_id != company_id:
            raise AccessDeniedError(str(invoice_id), company_id)
        return self._calculator.full_report(model.to_dto())

    def audit_trail(self, invoice_id: UUID, company_id: str) -> list[AuditEntry]:
        model = self._session.get(InvoiceModel, invoice_id)
        if model is None:
            raise InvoiceNotFoundError(str(invoice_id))
        if model.company_id != company_id:
            raise AccessDeniedError(str(invoice_id), company_id)
        return self._audit.audit_trail(invoice_id)
