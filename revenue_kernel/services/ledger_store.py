"""
LedgerStore -- durable record of invoices, payments and returns.

Responsibility:
    Persists ledger records and enforces referential integrity: payments and
    returns must point at an existing, non-void invoice, and amounts must be
    positive.  Reduces invoice dues when told to, but never computes or
    touches customer balances (that is BalanceTracker's job).

Architecture position:
    Kernel > Services -- imperative shell.  Called only by the
    ReconciliationEngine, inside its transaction.

Invariants enforced:
    - Payment / return targets exist and are not void.
    - Invoice due stays within [0, total]; due never increases.
    - Records are append-only: no update or delete paths exist for
      payments, applications or returns.

Failure modes:
    - InvoiceNotFoundError for a missing or void target invoice.
    - ValidationError for non-positive amounts or a due reduction larger
      than the remaining due.
    - IntegrityError (from the database) on an idempotency-key race; the
      engine treats it as a conflict and retries.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from revenue_kernel.db.types import ZERO
from revenue_kernel.domain.clock import Clock
from revenue_kernel.domain.dtos import InvoiceInfo, PaymentInfo, ReturnInfo
from revenue_kernel.domain.modes import InvoiceStatus, PaymentMode, status_for_due
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.domain.pricing import NormalizedReturnLine, PricedInvoice
from revenue_kernel.exceptions import InvoiceNotFoundError, ValidationError
from revenue_kernel.logging_config import get_logger
from revenue_kernel.models.invoice import InitialPayment, Invoice, InvoiceLine
from revenue_kernel.models.payment import Payment, PaymentApplication
from revenue_kernel.models.sales_return import SalesReturn, SalesReturnLine
from revenue_kernel.selectors.ledger_selector import LedgerFilter, LedgerSelector
from revenue_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")

_OPEN_STATUSES = (InvoiceStatus.OPEN.value, InvoiceStatus.PARTIALLY_PAID.value)


class LedgerStore(BaseService[Invoice]):
    """
    Write side of the ledger.

    Contract:
        Flush-only.  Lookups used on the write path take row locks
        (``SELECT ... FOR UPDATE``) on backends that support them.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._selector = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        priced: PricedInvoice,
        created_at: datetime | None = None,
    ) -> Invoice:
        """Persist a validated sale with its lines and initial payments."""
        draft = priced.draft
        invoice = Invoice(
            customer_id=draft.customer_id,
            subtotal=priced.subtotal,
            tax=priced.tax,
            total=priced.total,
            initial_due=priced.initial_due,
            due_amount=priced.initial_due,
            status=status_for_due(priced.initial_due, priced.total).value,
            created_at=created_at or draft.created_at or self.clock.now(),
            idempotency_key=draft.idempotency_key,
            request_fingerprint=priced.fingerprint,
            reference=draft.reference,
            created_by=draft.actor_id,
        )
        invoice.lines = [
            InvoiceLine(
                line_no=line.line_no,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_rate=line.tax_rate,
                line_subtotal=line.line_subtotal,
                line_tax=line.line_tax,
            )
            for line in priced.lines
        ]
        invoice.initial_payments = [
            InitialPayment(sequence=n, mode=mode.value, amount=amount)
            for n, (mode, amount) in enumerate(priced.initial_payments)
        ]
        self.session.add(invoice)
        self.session.flush()

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "total": str(invoice.total),
                "initial_due": str(invoice.initial_due),
                "line_count": len(invoice.lines),
                "walk_in": invoice.customer_id is None,
            },
        )
        return invoice

    def get_invoice(self, invoice_id: UUID, for_update: bool = False) -> Invoice | None:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def require_open_invoice(self, invoice_id: UUID, for_update: bool = True) -> Invoice:
        """
        Load an invoice that may still receive payments or returns.

        Raises:
            InvoiceNotFoundError: If the invoice is missing or void.
        """
        invoice = self.get_invoice(invoice_id, for_update=for_update)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        if invoice.status == InvoiceStatus.VOID.value:
            raise InvoiceNotFoundError(str(invoice_id), is_void=True)
        return invoice

    def open_invoices_for_customer(
        self,
        customer_id: str,
        exclude: Sequence[UUID] = (),
    ) -> list[Invoice]:
        """Non-void invoices of a customer with due > 0, row-locked."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.customer_id == customer_id,
                Invoice.status.in_(_OPEN_STATUSES),
                Invoice.due_amount > 0,
            )
            .order_by(Invoice.created_at, Invoice.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if exclude:
            stmt = stmt.where(Invoice.id.not_in(list(exclude)))
        return list(self.session.scalars(stmt))

    def reduce_due(self, invoice: Invoice, amount: Decimal) -> Decimal:
        """
        Lower an invoice's due by ``amount`` and refresh its status.

        Returns the new due.

        Raises:
            ValidationError: If amount is negative or larger than the due.
        """
        if amount < 0:
            raise ValidationError(f"Due reduction must not be negative: {amount}")
        if amount > invoice.due_amount:
            raise ValidationError(
                f"Cannot reduce due {invoice.due_amount} of invoice {invoice.id} by {amount}"
            )
        invoice.due_amount = invoice.due_amount - amount
        invoice.status = status_for_due(invoice.due_amount, invoice.total).value
        return invoice.due_amount

    def mark_void(
        self,
        invoice: Invoice,
        *,
        reason: str,
        idempotency_key: str,
        fingerprint: str,
        voided_at: datetime | None = None,
    ) -> Invoice:
        """
        Void an open or partially paid invoice.  ``due_amount`` is kept as it
        was so the void's balance effect stays reconstructible.
        """
        invoice.status = InvoiceStatus.VOID.value
        invoice.voided_at = voided_at or self.clock.now()
        invoice.void_reason = reason
        invoice.void_idempotency_key = idempotency_key
        invoice.void_fingerprint = fingerprint
        self.session.flush()
        logger.info(
            "invoice_voided",
            extra={"invoice_id": str(invoice.id), "due_at_void": str(invoice.due_amount)},
        )
        return invoice

    def find_invoice_by_key(self, idempotency_key: str) -> Invoice | None:
        return self.session.execute(
            select(Invoice).where(Invoice.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def find_void_by_key(self, idempotency_key: str) -> Invoice | None:
        return self.session.execute(
            select(Invoice).where(Invoice.void_idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def append_payment(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        mode: PaymentMode,
        idempotency_key: str,
        fingerprint: str,
        invoice_id: UUID | None = None,
        applied_amount: Decimal = ZERO,
        advance_amount: Decimal = ZERO,
        description: str | None = None,
        recorded_at: datetime | None = None,
        actor_id: str = "system",
    ) -> Payment:
        """
        Append a payment record.

        Raises:
            ValidationError: If amount is not positive.
            InvoiceNotFoundError: If invoice_id names a missing or void invoice.
        """
        if amount <= 0:
            raise ValidationError(f"Payment amount must be positive, got {amount}", field="amount")
        if invoice_id is not None:
            self.require_open_invoice(invoice_id, for_update=False)

        payment = Payment(
            customer_id=customer_id,
            invoice_id=invoice_id,
            amount=amount,
            mode=mode.value,
            description=description,
            recorded_at=recorded_at or self.clock.now(),
            idempotency_key=idempotency_key,
            request_fingerprint=fingerprint,
            applied_amount=applied_amount,
            advance_amount=advance_amount,
            created_by=actor_id,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def record_application(
        self,
        payment: Payment,
        invoice_id: UUID,
        amount: Decimal,
        sequence: int,
    ) -> PaymentApplication:
        application = PaymentApplication(
            payment_id=payment.id,
            invoice_id=invoice_id,
            amount=amount,
            sequence=sequence,
            applied_at=payment.recorded_at,
        )
        payment.applications.append(application)
        self.session.flush()
        return application

    def find_payment_by_key(self, idempotency_key: str) -> Payment | None:
        return self.session.execute(
            select(Payment).where(Payment.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def append_return(
        self,
        invoice: Invoice,
        *,
        lines: Sequence[NormalizedReturnLine],
        return_value: Decimal,
        refund_mode: str,
        idempotency_key: str,
        fingerprint: str,
        due_reduction: Decimal = ZERO,
        credit_to_advance: Decimal = ZERO,
        reason: str | None = None,
        recorded_at: datetime | None = None,
        actor_id: str = "system",
    ) -> SalesReturn:
        """
        Append a return against ``invoice``.

        Raises:
            ValidationError: If return_value is not positive.
            InvoiceNotFoundError: If the invoice is void.
        """
        if return_value <= 0:
            raise ValidationError(
                f"Return value must be positive, got {return_value}",
                field="return_value",
            )
        if invoice.status == InvoiceStatus.VOID.value:
            raise InvoiceNotFoundError(str(invoice.id), is_void=True)

        sales_return = SalesReturn(
            invoice_id=invoice.id,
            customer_id=invoice.customer_id,
            return_value=return_value,
            refund_mode=refund_mode,
            recorded_at=recorded_at or self.clock.now(),
            idempotency_key=idempotency_key,
            request_fingerprint=fingerprint,
            due_reduction=due_reduction,
            credit_to_advance=credit_to_advance,
            reason=reason,
            created_by=actor_id,
        )
        sales_return.lines = [
            SalesReturnLine(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_value=line.unit_value,
                line_value=line.line_value,
            )
            for line in lines
        ]
        self.session.add(sales_return)
        self.session.flush()
        return sales_return

    def find_return_by_key(self, idempotency_key: str) -> SalesReturn | None:
        return self.session.execute(
            select(SalesReturn).where(SalesReturn.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def returned_value(self, invoice_id: UUID) -> Decimal:
        """Sum of all prior returns on an invoice, both refund modes."""
        values = self.session.scalars(
            select(SalesReturn.return_value).where(SalesReturn.invoice_id == invoice_id)
        ).all()
        return sum(values, ZERO)

    def returned_quantities(self, invoice_id: UUID) -> dict[str, Decimal]:
        rows = self.session.execute(
            select(SalesReturnLine.product_id, SalesReturnLine.quantity)
            .join(SalesReturn, SalesReturn.id == SalesReturnLine.return_id)
            .where(SalesReturn.invoice_id == invoice_id)
        ).all()
        result: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for product_id, quantity in rows:
            result[product_id] += quantity
        return dict(result)

    def sold_quantities(self, invoice: Invoice) -> dict[str, Decimal]:
        result: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for line in invoice.lines:
            result[line.product_id] += line.quantity
        return dict(result)

    # ------------------------------------------------------------------
    # Queries (delegated to the read side)
    # ------------------------------------------------------------------

    def query_invoices(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[InvoiceInfo]:
        return self._selector.query_invoices(period, filters)

    def query_payments(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[PaymentInfo]:
        return self._selector.query_payments(period, filters)

    def query_returns(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[ReturnInfo]:
        return self._selector.query_returns(period, filters)
