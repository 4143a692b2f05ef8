"""
Module: invoice_engines.status_rules
Responsibility:
    The invoice status rule table and the validator that accepts or rejects
    a requested status change.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The rule table is an immutable ``Workflow`` value; it is injected into
      the validator, never looked up from a process-wide mutable registry.
    - WRITTEN_OFF is terminal: it has no outgoing edges, and the validator
      rejects any change out of it even under a custom table that declares
      some.
    - Checks run in a fixed order, so each input has exactly one outcome:
        1. edge exists in the table        -> InvalidTransition
        2. PAID guard (payment sufficient) -> InsufficientPayment
        3. reason present where required   -> ReasonRequired
        4. current status not terminal     -> TerminalState
        5. role may fire gated transitions -> InsufficientRole, unless a
           forced override with a reason is supplied, which is accepted and
           flagged for approval.

Failure modes:
    - The validator never raises for a business rejection; it returns a
      ``TransitionDecision`` with ``approved=False``.
      ``TransitionDecision.raise_if_rejected()`` converts it to the typed
      exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from invoice_kernel.domain.invoice import InvoiceStatus, UserRole
from invoice_kernel.domain.workflow import Guard, Transition, Workflow
from invoice_kernel.exceptions import (
    InsufficientPaymentError,
    InsufficientRoleError,
    InvalidTransitionError,
    ReasonRequiredError,
    TerminalStateError,
    TransitionRejectedError,
)
from invoice_kernel.logging_config import get_logger
from invoice_engines.reconciliation import (
    DEFAULT_TOLERANCE,
    ReconciliationResult,
    Tolerance,
)
from invoice_engines.tracer import traced_engine

logger = get_logger("engines.status_rules")

APPROVAL_COMPLIANCE_NOTE = "Status transition approved under UAE business rules"

# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

PAYMENT_SUFFICIENT = Guard(
    name="payment_sufficient",
    description="Payments cover the invoice total within tolerance",
)

# -----------------------------------------------------------------------------
# Rule table
# -----------------------------------------------------------------------------

_PRIVILEGED = (UserRole.ADMIN.value, UserRole.FINANCE.value)

_S = InvoiceStatus


def _to_paid(from_state: InvoiceStatus) -> Transition:
    return Transition(
        from_state=from_state.value,
        to_state=_S.PAID.value,
        action="mark_paid",
        guard=PAYMENT_SUFFICIENT,
    )


def _gated(from_state: InvoiceStatus, to_state: InvoiceStatus, action: str) -> Transition:
    return Transition(
        from_state=from_state.value,
        to_state=to_state.value,
        action=action,
        requires_reason=True,
        requires_approval=True,
        approval_roles=_PRIVILEGED,
    )


INVOICE_STATUS_WORKFLOW = Workflow(
    name="invoice_status",
    description="Invoice collection lifecycle",
    initial_state=_S.DRAFT.value,
    states=tuple(s.value for s in InvoiceStatus),
    transitions=(
        Transition(_S.DRAFT.value, _S.SENT.value, action="send"),
        _gated(_S.DRAFT, _S.WRITTEN_OFF, "write_off"),
        _to_paid(_S.SENT),
        Transition(_S.SENT.value, _S.OVERDUE.value, action="mark_overdue"),
        _gated(_S.SENT, _S.DISPUTED, "dispute"),
        _gated(_S.SENT, _S.WRITTEN_OFF, "write_off"),
        _to_paid(_S.OVERDUE),
        _gated(_S.OVERDUE, _S.DISPUTED, "dispute"),
        _gated(_S.OVERDUE, _S.WRITTEN_OFF, "write_off"),
        _gated(_S.PAID, _S.DISPUTED, "dispute"),
        _to_paid(_S.DISPUTED),
        Transition(_S.DISPUTED.value, _S.OVERDUE.value, action="resolve_overdue"),
        Transition(_S.DISPUTED.value, _S.SENT.value, action="resolve_reactivate"),
        _gated(_S.DISPUTED, _S.WRITTEN_OFF, "write_off"),
    ),
    terminal_states=(_S.WRITTEN_OFF.value,),
)


def allowed_transitions(
    current: InvoiceStatus, workflow: Workflow = INVOICE_STATUS_WORKFLOW
) -> tuple[InvoiceStatus, ...]:
    return tuple(InvoiceStatus(s) for s in workflow.successors(current.value))


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionRequest:
    """Caller-side facts the validator needs beyond the two statuses."""

    user_role: UserRole
    reason: str | None = None
    force_override: bool = False

    @property
    def has_reason(self) -> bool:
        return bool(self.reason and self.reason.strip())


_REJECTION_TYPES: dict[str, type[TransitionRejectedError]] = {
    InvalidTransitionError.code: InvalidTransitionError,
    ReasonRequiredError.code: ReasonRequiredError,
    TerminalStateError.code: TerminalStateError,
    InsufficientRoleError.code: InsufficientRoleError,
}


@dataclass(frozen=True)
class TransitionDecision:
    """
    Outcome of validating one requested status change.

    On approval ``message`` is the compliance note; on rejection it is a
    human-readable reason safe to show verbatim.
    """

    approved: bool
    current_status: InvoiceStatus
    requested_status: InvoiceStatus
    message: str
    allowed_transitions: tuple[InvoiceStatus, ...]
    error_code: str | None = None
    requires_approval: bool = False
    approval_level: UserRole | None = None
    total_paid: Decimal | None = None
    invoice_total: Decimal | None = None

    @property
    def compliance_note(self) -> str | None:
        return self.message if self.approved else None

    def raise_if_rejected(self) -> None:
        if self.approved:
            return
        allowed = tuple(s.value for s in self.allowed_transitions)
        if self.error_code == InsufficientPaymentError.code:
            raise InsufficientPaymentError(
                self.message,
                self.current_status.value,
                self.requested_status.value,
                total_paid=self.total_paid,
                invoice_total=self.invoice_total,
                allowed_transitions=allowed,
            )
        error_type = _REJECTION_TYPES[self.error_code]
        raise error_type(
            self.message,
            self.current_status.value,
            self.requested_status.value,
            allowed,
        )


class StatusValidator:
    """
    Accepts or rejects a requested status change.

    Contract:
        Pure function of (current, requested, request, reconciliation) and the
        injected rule table and tolerance.

    Non-goals:
        - Does not decide the *effective* status; see StatusCorrector.
        - Does not authenticate the caller; the role is trusted.
    """

    def __init__(
        self,
        workflow: Workflow = INVOICE_STATUS_WORKFLOW,
        tolerance: Tolerance = DEFAULT_TOLERANCE,
    ):
        self.workflow = workflow
        self.tolerance = tolerance

    def _reject(
        self,
        current: InvoiceStatus,
        requested: InvoiceStatus,
        code: str,
        message: str,
        **extra,
    ) -> TransitionDecision:
        logger.info(
            "status_transition_rejected",
            extra={
                "current_status": current.value,
                "requested_status": requested.value,
                "error_code": code,
            },
        )
        return TransitionDecision(
            approved=False,
            current_status=current,
            requested_status=requested,
            message=message,
            allowed_transitions=allowed_transitions(current, self.workflow),
            error_code=code,
            **extra,
        )

    @traced_engine("status_validator", "1.0", fingerprint_fields=("current", "requested"))
    def validate(
        self,
        current: InvoiceStatus,
        requested: InvoiceStatus,
        request: TransitionRequest,
        reconciliation: ReconciliationResult | None = None,
    ) -> TransitionDecision:
        allowed = allowed_transitions(current, self.workflow)

        # 1. Edge must exist
        transition = self.workflow.find_transition(current.value, requested.value)
        if transition is None:
            allowed_text = ", ".join(s.value for s in allowed) or "none"
            return self._reject(
                current,
                requested,
                InvalidTransitionError.code,
                f"Invalid transition from {current.value} to {requested.value}. "
                f"Allowed transitions: {allowed_text}",
            )

        # 2. Payment guard
        if transition.guard == PAYMENT_SUFFICIENT:
            if reconciliation is None:
                raise ValueError("A reconciliation is required to validate a PAID transition")
            if not self.tolerance.covers(reconciliation.invoice_total, reconciliation.total_paid):
                paid = reconciliation.total_paid
                due = reconciliation.invoice_total
                return self._reject(
                    current,
                    requested,
                    InsufficientPaymentError.code,
                    f"Cannot mark as PAID - insufficient payment. "
                    f"Paid: {paid.amount} {paid.currency}, Due: {due.amount} {due.currency}",
                    total_paid=paid.amount,
                    invoice_total=due.amount,
                )

        # 3. Reason
        if transition.requires_reason and not request.has_reason:
            return self._reject(
                current,
                requested,
                ReasonRequiredError.code,
                f"A reason is required to change status to {requested.value}",
            )

        # 4. Terminal state
        if current is InvoiceStatus.WRITTEN_OFF or self.workflow.is_terminal(current.value):
            return self._reject(
                current,
                requested,
                TerminalStateError.code,
                f"Invoice is {current.value}; no further status changes are allowed",
            )

        # 5. Role
        requires_approval = False
        approval_level = None
        if transition.requires_approval and request.user_role.value not in transition.approval_roles:
            if not (request.force_override and request.has_reason):
                return self._reject(
                    current,
                    requested,
                    InsufficientRoleError.code,
                    f"Role {request.user_role.value} cannot change status to "
                    f"{requested.value} without forceOverride and a reason",
                )
            requires_approval = True
            approval_level = UserRole(transition.approval_roles[0])
            logger.warning(
                "status_transition_forced_override",
                extra={
                    "current_status": current.value,
                    "requested_status": requested.value,
                    "user_role": request.user_role.value,
                    "approval_level": approval_level.value,
                },
            )

        return TransitionDecision(
            approved=True,
            current_status=current,
            requested_status=requested,
            message=APPROVAL_COMPLIANCE_NOTE,
            allowed_transitions=allowed,
            requires_approval=requires_approval,
            approval_level=approval_level,
        )
