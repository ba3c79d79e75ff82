"""
ReconciliationEngine -- the only writer of the revenue ledger.

Responsibility:
    Applies sales, payments, returns and voids atomically.  Each operation
    validates its request, writes the ledger records, moves invoice dues
    (including overpayment spillover across invoices) and adjusts the
    customer balance exactly once, all in one transaction.

Architecture position:
    Kernel > Services -- the imperative shell that owns transactions.
    Uses LedgerStore and BalanceTracker within a session it opens and
    commits itself.

Invariants enforced:
    - Atomicity: ledger write and balance adjustment commit together or not
      at all.
    - Balance: after every write, the affected customer's balance equals
      the sum of dues of their non-void invoices minus advance credit
      (checked before commit).
    - Idempotency: a replayed request (same key, same payload) returns
      ALREADY_APPLIED and writes nothing; the same key with a different
      payload is rejected.
    - Per-customer serialization: operations on one customer never
      interleave within a process; different customers run in parallel.

Failure modes:
    - Expected failures (validation, not found, conflict after retries) come
      back as a ReconciliationResult with a status, never as exceptions.
    - ConsistencyViolation is logged at CRITICAL and re-raised after the
      transaction has been rolled back: it means a bug, not bad input.

Audit relevance:
    Every operation logs ``<operation>_started`` and ``<operation>_completed``
    with a correlation id, customer, idempotency key and duration.

Usage:
    engine = ReconciliationEngine(session_factory, clock=SystemClock())
    result = engine.record_payment(PaymentDraft(
        idempotency_key="till-3:pay:8812",
        customer_id="C-104",
        amount=Decimal("150.00"),
        mode="cash",
        invoice_id=invoice_id,
    ))
    if not result.is_success:
        return http_error(result.status, result.error_code, result.message)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from revenue_kernel.db.engine import session_scope
from revenue_kernel.db.types import ZERO
from revenue_kernel.domain.clock import Clock, SystemClock
from revenue_kernel.domain.dtos import (
    BalanceInfo,
    InvoiceDraft,
    InvoiceInfo,
    PaymentDraft,
    PaymentInfo,
    ReturnDraft,
    ReturnInfo,
    VoidDraft,
)
from revenue_kernel.domain.modes import InvoiceStatus, RefundMode
from revenue_kernel.domain.pricing import (
    NormalizedReturnLine,
    normalize_payment,
    normalize_return,
    price_invoice,
    require_key,
)
from revenue_kernel.domain.spillover import OpenInvoice, SpilloverPolicy, allocate_spillover
from revenue_kernel.exceptions import (
    ConsistencyViolation,
    DuplicateRecordError,
    IdempotencyKeyReusedError,
    NotFoundError,
    ReconciliationError,
    ReturnCeilingExceededError,
    RetryExhaustedError,
    ValidationError,
)
from revenue_kernel.logging_config import LogContext, get_logger
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.services.balance_tracker import BalanceTracker
from revenue_kernel.services.ledger_store import LedgerStore
from revenue_kernel.services.locking import CustomerLockRegistry
from revenue_kernel.utils.idempotency import balance_event_id

logger = get_logger("services.reconciliation_engine")

# Transient errors from a concurrent writer; the whole operation is retried.
# An IntegrityError gets one retry: a racing insert of the same key resolves
# to a replay on the second attempt, anything else repeats.
_CONFLICT_ERRORS = (StaleDataError, OperationalError, IntegrityError)


class ReconciliationStatus(str, Enum):
    """Outcome of an engine operation."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class ReconciliationResult:
    """Result of an engine operation, with the affected records as DTOs."""

    status: ReconciliationStatus
    operation: str
    invoice: InvoiceInfo | None = None
    payment: PaymentInfo | None = None
    sales_return: ReturnInfo | None = None
    balance: BalanceInfo | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False

    @property
    def is_success(self) -> bool:
        return self.status in (
            ReconciliationStatus.APPLIED,
            ReconciliationStatus.ALREADY_APPLIED,
        )

    @classmethod
    def from_error(cls, operation: str, exc: ReconciliationError) -> ReconciliationResult:
        if isinstance(exc, ValidationError):
            status = ReconciliationStatus.VALIDATION_FAILED
        elif isinstance(exc, NotFoundError):
            status = ReconciliationStatus.NOT_FOUND
        else:
            status = ReconciliationStatus.CONFLICT
        return cls(
            status=status,
            operation=operation,
            error_code=exc.code,
            message=str(exc),
            retryable=(
                status is ReconciliationStatus.CONFLICT
                and not isinstance(exc, DuplicateRecordError)
            ),
        )


@dataclass(frozen=True)
class ReconciliationSettings:
    """Kernel-side tunables (built from EngineConfig by revenue_config.bridges)."""

    decimal_places: int = 2
    rounding_tolerance: Decimal = Decimal("0.01")
    spillover_policy: SpilloverPolicy = SpilloverPolicy.OLDEST_FIRST
    max_conflict_retries: int = 5
    retry_backoff_seconds: float = 0.05


class ReconciliationEngine:
    """
    Applies ledger mutations atomically and idempotently.

    Contract:
        Each public operation opens its own session from ``session_factory``,
        commits on success and rolls back on any failure.  Operations for the
        same customer are serialized by ``locks``; share one registry (and so
        one engine) per process.

    Non-goals:
        - Does NOT auto-apply advance credit to new sales; advance credit is
          consumed by an explicit credit-clearance payment.
        - Does NOT produce reports (see PeriodAggregator).
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        settings: ReconciliationSettings | None = None,
        locks: CustomerLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or ReconciliationSettings()
        self._locks = locks or CustomerLockRegistry()

    @property
    def settings(self) -> ReconciliationSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def record_sale(self, draft: InvoiceDraft) -> ReconciliationResult:
        """Record an invoice with its initial payments and open its due."""
        return self._execute(
            "record_sale",
            customer_id=draft.customer_id,
            idempotency_key=draft.idempotency_key,
            actor_id=draft.actor_id,
            work=lambda session: self._record_sale(session, draft),
        )

    def record_payment(self, draft: PaymentDraft) -> ReconciliationResult:
        """Apply a payment to an invoice, spilling any excess to other dues."""
        return self._execute(
            "record_payment",
            customer_id=draft.customer_id,
            idempotency_key=draft.idempotency_key,
            actor_id=draft.actor_id,
            invoice_id=draft.invoice_id,
            work=lambda session: self._record_payment(session, draft),
        )

    def record_return(self, draft: ReturnDraft) -> ReconciliationResult:
        """Record goods returned against an invoice."""
        return self._execute(
            "record_return",
            customer_id=self._customer_of(draft.invoice_id),
            idempotency_key=draft.idempotency_key,
            actor_id=draft.actor_id,
            invoice_id=draft.invoice_id,
            work=lambda session: self._record_return(session, draft),
        )

    def void_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        idempotency_key: str,
        actor_id: str = "system",
    ) -> ReconciliationResult:
        """Void an open or partially paid invoice, removing its due from the balance."""
        draft = VoidDraft(
            idempotency_key=idempotency_key,
            invoice_id=invoice_id,
            reason=reason,
            actor_id=actor_id,
        )
        return self._execute(
            "void_invoice",
            customer_id=self._customer_of(invoice_id),
            idempotency_key=idempotency_key,
            actor_id=actor_id,
            invoice_id=invoice_id,
            work=lambda session: self._void_invoice(session, draft),
        )

    def get_balance(self, customer_id: str) -> BalanceInfo:
        """
        Read a customer's balance.

        Raises:
            CustomerNotFoundError: If the customer has no account.
        """
        with session_scope(self._session_factory) as session:
            return BalanceTracker(session, self._clock).get_balance_info(customer_id)

    # ------------------------------------------------------------------
    # Transaction and retry envelope
    # ------------------------------------------------------------------

    def _execute(
        self,
        operation: str,
        *,
        customer_id: str | None,
        idempotency_key: str,
        actor_id: str,
        work: Callable[[Session], ReconciliationResult],
        invoice_id: UUID | None = None,
    ) -> ReconciliationResult:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=operation,
            customer_id=customer_id,
            invoice_id=str(invoice_id) if invoice_id else None,
            idempotency_key=idempotency_key,
            actor_id=actor_id,
        ):
            logger.info(f"{operation}_started")
            t0 = time.monotonic()
            result = self._run_with_retries(operation, customer_id, work)
            logger.info(
                f"{operation}_completed",
                extra={
                    "status": result.status.value,
                    "error_code": result.error_code,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _run_with_retries(
        self,
        operation: str,
        customer_id: str | None,
        work: Callable[[Session], ReconciliationResult],
    ) -> ReconciliationResult:
        max_attempts = self._settings.max_conflict_retries
        attempt = 0
        integrity_failed = False
        while True:
            attempt += 1
            try:
                with self._locks.hold(customer_id):
                    with session_scope(self._session_factory) as session:
                        return work(session)
            except (ValidationError, NotFoundError) as exc:
                logger.warning(
                    f"{operation}_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                return ReconciliationResult.from_error(operation, exc)
            except ConsistencyViolation:
                logger.critical(f"{operation}_consistency_violation", exc_info=True)
                raise
            except _CONFLICT_ERRORS as exc:
                reason = f"{type(exc).__name__}: {exc}".splitlines()[0]
                if isinstance(exc, IntegrityError):
                    if integrity_failed:
                        duplicate = DuplicateRecordError(customer_id, reason)
                        logger.error(
                            f"{operation}_duplicate_record",
                            extra={"attempts": attempt, "reason": reason},
                        )
                        return ReconciliationResult.from_error(operation, duplicate)
                    integrity_failed = True
                if attempt >= max_attempts:
                    exhausted = RetryExhaustedError(customer_id, attempt, reason)
                    logger.error(
                        f"{operation}_retry_exhausted",
                        extra={"attempts": attempt, "reason": reason},
                    )
                    return ReconciliationResult.from_error(operation, exhausted)
                logger.warning(
                    f"{operation}_conflict_retry",
                    extra={"attempt": attempt, "reason": reason},
                )
                time.sleep(self._settings.retry_backoff_seconds * attempt)

    def _customer_of(self, invoice_id: UUID) -> str | None:
        """Owning customer of an invoice, read ahead of locking.  Immutable."""
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(Invoice.customer_id).where(Invoice.id == invoice_id)
            ).scalar_one_or_none()

    def _services(self, session: Session) -> tuple[LedgerStore, BalanceTracker]:
        return LedgerStore(session, self._clock), BalanceTracker(session, self._clock)

    @staticmethod
    def _check_replay(stored_fingerprint: str, fingerprint: str, key: str, operation: str) -> None:
        if stored_fingerprint != fingerprint:
            raise IdempotencyKeyReusedError(key, operation)

    # ------------------------------------------------------------------
    # record_sale
    # ------------------------------------------------------------------

    def _record_sale(self, session: Session, draft: InvoiceDraft) -> ReconciliationResult:
        priced = price_invoice(
            draft,
            self._settings.decimal_places,
            self._settings.rounding_tolerance,
        )
        ledger, balances = self._services(session)

        existing = ledger.find_invoice_by_key(draft.idempotency_key)
        if existing is not None:
            self._check_replay(
                existing.request_fingerprint, priced.fingerprint, draft.idempotency_key, "sale"
            )
            return self._already_applied(
                "record_sale",
                balances,
                existing.customer_id,
                invoice=InvoiceInfo.from_model(existing),
            )

        if priced.customer_id is not None:
            balances.open_account(priced.customer_id)
            balances.lock_account(priced.customer_id)

        invoice = ledger.create_invoice(priced)

        balance = None
        if invoice.customer_id is not None:
            balances.adjust_balance(
                invoice.customer_id,
                invoice.initial_due,
                event_id=balance_event_id("sale", invoice.id),
                actor_id=draft.actor_id,
            )
            balance = balances.verify_customer(invoice.customer_id)

        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            operation="record_sale",
            invoice=InvoiceInfo.from_model(invoice),
            balance=balance,
        )

    # ------------------------------------------------------------------
    # record_payment
    # ------------------------------------------------------------------

    def _record_payment(self, session: Session, draft: PaymentDraft) -> ReconciliationResult:
        normalized = normalize_payment(draft, self._settings.decimal_places)
        ledger, balances = self._services(session)
        customer_id = draft.customer_id
        amount = normalized.amount
        mode = normalized.mode

        existing = ledger.find_payment_by_key(draft.idempotency_key)
        if existing is not None:
            self._check_replay(
                existing.request_fingerprint,
                normalized.fingerprint,
                draft.idempotency_key,
                "payment",
            )
            return self._already_applied(
                "record_payment",
                balances,
                customer_id,
                payment=PaymentInfo.from_model(existing),
            )

        # Account row first, then invoices: one lock order for every operation
        account = balances.lock_account(customer_id)

        target: Invoice | None = None
        if draft.invoice_id is not None:
            target = ledger.require_open_invoice(draft.invoice_id)
            if target.customer_id != customer_id:
                raise ValidationError(
                    f"Invoice {target.id} does not belong to customer {customer_id}",
                    field="invoice_id",
                )

        if not mode.moves_money and amount > account.advance_credit:
            raise ValidationError(
                f"Credit clearance of {amount} exceeds advance credit "
                f"{account.advance_credit}",
                field="amount",
            )

        # Targeted invoice first, then spillover over the rest
        applications: list[tuple[Invoice, Decimal]] = []
        remaining = amount
        if target is not None and target.due_amount > 0:
            first = min(remaining, target.due_amount)
            applications.append((target, first))
            remaining -= first

        if remaining > 0:
            others = ledger.open_invoices_for_customer(
                customer_id,
                exclude=[target.id] if target is not None else (),
            )
            by_id = {inv.id: inv for inv in others}
            spill = allocate_spillover(
                remaining,
                [OpenInvoice(inv.id, inv.created_at, inv.due_amount) for inv in others],
                self._settings.spillover_policy,
            )
            applications.extend((by_id[line.invoice_id], line.applied) for line in spill.lines)
            remaining = spill.unapplied

        applied = amount - remaining
        if not mode.moves_money and remaining > 0:
            raise ValidationError(
                f"Credit clearance of {amount} exceeds open dues {applied}",
                field="amount",
            )
        advance = remaining if mode.moves_money else ZERO

        payment = ledger.append_payment(
            customer_id=customer_id,
            invoice_id=draft.invoice_id,
            amount=amount,
            mode=mode,
            idempotency_key=draft.idempotency_key,
            fingerprint=normalized.fingerprint,
            applied_amount=applied,
            advance_amount=advance,
            description=draft.description,
            recorded_at=draft.recorded_at,
            actor_id=draft.actor_id,
        )
        for sequence, (invoice, portion) in enumerate(applications):
            ledger.reduce_due(invoice, portion)
            ledger.record_application(payment, invoice.id, portion, sequence)

        event_id = balance_event_id("payment", payment.id)
        if mode.moves_money:
            balances.adjust_balance(
                customer_id,
                -amount,
                event_id=event_id,
                advance_delta=advance,
                actor_id=draft.actor_id,
            )
        else:
            balances.adjust_balance(
                customer_id,
                ZERO,
                event_id=event_id,
                advance_delta=-applied,
                actor_id=draft.actor_id,
            )
        balance = balances.verify_customer(customer_id)

        logger.info(
            "payment_applied",
            extra={
                "payment_id": str(payment.id),
                "amount": str(amount),
                "mode": mode.value,
                "applied": str(applied),
                "advance": str(advance),
                "invoices_touched": len(applications),
            },
        )
        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            operation="record_payment",
            invoice=InvoiceInfo.from_model(target) if target is not None else None,
            payment=PaymentInfo.from_model(payment),
            balance=balance,
        )

    # ------------------------------------------------------------------
    # record_return
    # ------------------------------------------------------------------

    def _record_return(self, session: Session, draft: ReturnDraft) -> ReconciliationResult:
        normalized = normalize_return(draft, self._settings.decimal_places)
        ledger, balances = self._services(session)

        existing = ledger.find_return_by_key(draft.idempotency_key)
        if existing is not None:
            self._check_replay(
                existing.request_fingerprint,
                normalized.fingerprint,
                draft.idempotency_key,
                "return",
            )
            return self._already_applied(
                "record_return",
                balances,
                existing.customer_id,
                sales_return=ReturnInfo.from_model(existing),
            )

        owner = ledger.get_invoice(draft.invoice_id)
        if owner is not None and owner.customer_id is not None:
            balances.lock_account(owner.customer_id)
        invoice = ledger.require_open_invoice(draft.invoice_id)
        is_credit = normalized.refund_mode is RefundMode.CREDIT_ADJUSTMENT
        if is_credit and invoice.customer_id is None:
            raise ValidationError(
                "Credit adjustment is not possible on a walk-in sale",
                field="refund_mode",
            )

        self._check_return_ceiling(ledger, invoice, normalized.lines, normalized.return_value)

        due_reduction = ZERO
        credit_to_advance = ZERO
        if is_credit:
            due_reduction = min(normalized.return_value, invoice.due_amount)
            credit_to_advance = normalized.return_value - due_reduction

        sales_return = ledger.append_return(
            invoice,
            lines=normalized.lines,
            return_value=normalized.return_value,
            refund_mode=normalized.refund_mode.value,
            idempotency_key=draft.idempotency_key,
            fingerprint=normalized.fingerprint,
            due_reduction=due_reduction,
            credit_to_advance=credit_to_advance,
            reason=draft.reason,
            recorded_at=draft.recorded_at,
            actor_id=draft.actor_id,
        )

        balance = None
        if is_credit:
            ledger.reduce_due(invoice, due_reduction)
            balances.adjust_balance(
                invoice.customer_id,
                -normalized.return_value,
                event_id=balance_event_id("return", sales_return.id),
                advance_delta=credit_to_advance,
                actor_id=draft.actor_id,
            )
        if invoice.customer_id is not None:
            balance = balances.verify_customer(invoice.customer_id)

        logger.info(
            "return_recorded",
            extra={
                "return_id": str(sales_return.id),
                "return_value": str(normalized.return_value),
                "refund_mode": normalized.refund_mode.value,
                "due_reduction": str(due_reduction),
                "credit_to_advance": str(credit_to_advance),
            },
        )
        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            operation="record_return",
            invoice=InvoiceInfo.from_model(invoice),
            sales_return=ReturnInfo.from_model(sales_return),
            balance=balance,
        )

    @staticmethod
    def _check_return_ceiling(
        ledger: LedgerStore,
        invoice: Invoice,
        lines: Sequence[NormalizedReturnLine],
        return_value: Decimal,
    ) -> None:
        sold = ledger.sold_quantities(invoice)
        returned = ledger.returned_quantities(invoice.id)

        requested: dict[str, Decimal] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, ZERO) + line.quantity

        for product_id, quantity in requested.items():
            if product_id not in sold:
                raise ValidationError(
                    f"Product {product_id} is not on invoice {invoice.id}",
                    field="lines",
                )
            remaining_qty = sold[product_id] - returned.get(product_id, ZERO)
            if quantity > remaining_qty:
                raise ReturnCeilingExceededError(
                    str(invoice.id), quantity, remaining_qty, product_id=product_id
                )

        remaining_value = invoice.total - ledger.returned_value(invoice.id)
        if return_value > remaining_value:
            raise ReturnCeilingExceededError(str(invoice.id), return_value, remaining_value)

    # ------------------------------------------------------------------
    # void_invoice
    # ------------------------------------------------------------------

    def _void_invoice(self, session: Session, draft: VoidDraft) -> ReconciliationResult:
        key = require_key(draft.idempotency_key)
        if not draft.reason or not draft.reason.strip():
            raise ValidationError("A reason is required to void an invoice", field="reason")
        fingerprint = draft.fingerprint()
        ledger, balances = self._services(session)

        existing = ledger.find_void_by_key(key)
        if existing is not None:
            self._check_replay(existing.void_fingerprint, fingerprint, key, "void")
            return self._already_applied(
                "void_invoice",
                balances,
                existing.customer_id,
                invoice=InvoiceInfo.from_model(existing),
            )

        owner = ledger.get_invoice(draft.invoice_id)
        if owner is not None and owner.customer_id is not None:
            balances.lock_account(owner.customer_id)
        invoice = ledger.require_open_invoice(draft.invoice_id)
        if invoice.status == InvoiceStatus.PAID.value:
            raise ValidationError(
                f"Invoice {invoice.id} is fully paid and cannot be voided",
                field="invoice_id",
            )

        due = invoice.due_amount
        ledger.mark_void(
            invoice,
            reason=draft.reason.strip(),
            idempotency_key=key,
            fingerprint=fingerprint,
        )

        balance = None
        if invoice.customer_id is not None:
            balances.adjust_balance(
                invoice.customer_id,
                -due,
                event_id=balance_event_id("void", invoice.id),
                actor_id=draft.actor_id,
            )
            balance = balances.verify_customer(invoice.customer_id)

        return ReconciliationResult(
            status=ReconciliationStatus.APPLIED,
            operation="void_invoice",
            invoice=InvoiceInfo.from_model(invoice),
            balance=balance,
        )

    # ------------------------------------------------------------------

    def _already_applied(
        self,
        operation: str,
        balances: BalanceTracker,
        customer_id: str | None,
        **records,
    ) -> ReconciliationResult:
        logger.info(f"{operation}_replayed")
        account = balances.get_account(customer_id) if customer_id is not None else None
        return ReconciliationResult(
            status=ReconciliationStatus.ALREADY_APPLIED,
            operation=operation,
            balance=BalanceInfo.from_model(account) if account is not None else None,
            **records,
        )
