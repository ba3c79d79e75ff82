"""
Request drafts and immutable result DTOs.

Drafts are what the request layer hands to the engine; DTOs are what the
engine and selectors hand back.  Both are frozen dataclasses with no ORM
dependency, so callers never hold live session-bound objects.

All monetary fields are Decimal.  Drafts are normalized (modes parsed,
amounts coerced) by the engine before use, so they may carry raw strings.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from revenue_kernel.domain.modes import InvoiceStatus, PaymentMode, RefundMode
from revenue_kernel.utils.hashing import hash_payload


# =========================================================================
# Drafts (inbound)
# =========================================================================


@dataclass(frozen=True)
class InvoiceLineDraft:
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class InitialPaymentDraft:
    """Money taken at the till when the sale is rung up."""

    mode: PaymentMode | str
    amount: Decimal


@dataclass(frozen=True)
class InvoiceDraft:
    """
    A sale to record.

    ``subtotal`` is optional: when the terminal sends its own subtotal it is
    checked against the line sum within the rounding tolerance.
    """

    idempotency_key: str
    lines: tuple[InvoiceLineDraft, ...]
    customer_id: str | None = None
    initial_payments: tuple[InitialPaymentDraft, ...] = ()
    subtotal: Decimal | None = None
    created_at: datetime | None = None
    reference: str | None = None
    actor_id: str = "system"

    def fingerprint(self) -> str:
        return hash_payload(_request_fields(self))


@dataclass(frozen=True)
class PaymentDraft:
    """
    A payment to apply.  ``invoice_id=None`` is a general account payment,
    spread over the customer's open invoices in spillover order.
    """

    idempotency_key: str
    customer_id: str
    amount: Decimal
    mode: PaymentMode | str = PaymentMode.CASH
    invoice_id: UUID | None = None
    description: str | None = None
    recorded_at: datetime | None = None
    actor_id: str = "system"

    def fingerprint(self) -> str:
        return hash_payload(_request_fields(self))


@dataclass(frozen=True)
class ReturnLineDraft:
    product_id: str
    quantity: Decimal
    unit_value: Decimal


@dataclass(frozen=True)
class ReturnDraft:
    idempotency_key: str
    invoice_id: UUID
    lines: tuple[ReturnLineDraft, ...]
    refund_mode: RefundMode | str
    recorded_at: datetime | None = None
    reason: str | None = None
    actor_id: str = "system"

    def fingerprint(self) -> str:
        return hash_payload(_request_fields(self))


@dataclass(frozen=True)
class VoidDraft:
    idempotency_key: str
    invoice_id: UUID
    reason: str
    actor_id: str = "system"

    def fingerprint(self) -> str:
        return hash_payload(_request_fields(self))


def _request_fields(draft: Any) -> dict[str, Any]:
    """Payload used for fingerprinting: the request minus who sent it."""
    payload = asdict(draft)
    payload.pop("actor_id", None)
    return payload


# =========================================================================
# DTOs (outbound)
# =========================================================================


@dataclass(frozen=True)
class InvoiceLineInfo:
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    line_subtotal: Decimal
    line_tax: Decimal


@dataclass(frozen=True)
class InitialPaymentInfo:
    mode: PaymentMode
    amount: Decimal


@dataclass(frozen=True)
class InvoiceInfo:
    id: UUID
    customer_id: str | None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    initial_due: Decimal
    due_amount: Decimal
    status: InvoiceStatus
    created_at: datetime
    idempotency_key: str
    lines: tuple[InvoiceLineInfo, ...] = ()
    initial_payments: tuple[InitialPaymentInfo, ...] = ()
    reference: str | None = None

    @property
    def instant_collection(self) -> Decimal:
        return self.total - self.initial_due

    @property
    def is_walk_in(self) -> bool:
        return self.customer_id is None

    @classmethod
    def from_model(cls, invoice: Any) -> InvoiceInfo:
        return cls(
            id=invoice.id,
            customer_id=invoice.customer_id,
            subtotal=invoice.subtotal,
            tax=invoice.tax,
            total=invoice.total,
            initial_due=invoice.initial_due,
            due_amount=invoice.due_amount,
            status=InvoiceStatus(invoice.status),
            created_at=invoice.created_at,
            idempotency_key=invoice.idempotency_key,
            lines=tuple(
                InvoiceLineInfo(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    line_subtotal=line.line_subtotal,
                    line_tax=line.line_tax,
                )
                for line in invoice.lines
            ),
            initial_payments=tuple(
                InitialPaymentInfo(mode=PaymentMode(p.mode), amount=p.amount)
                for p in invoice.initial_payments
            ),
            reference=invoice.reference,
        )


@dataclass(frozen=True)
class ApplicationInfo:
    """How much of a payment landed on one invoice."""

    invoice_id: UUID
    amount: Decimal
    sequence: int


@dataclass(frozen=True)
class PaymentInfo:
    id: UUID
    customer_id: str
    invoice_id: UUID | None
    amount: Decimal
    mode: PaymentMode
    recorded_at: datetime
    applied_amount: Decimal
    advance_amount: Decimal
    idempotency_key: str
    description: str | None = None
    applications: tuple[ApplicationInfo, ...] = ()

    @classmethod
    def from_model(cls, payment: Any) -> PaymentInfo:
        return cls(
            id=payment.id,
            customer_id=payment.customer_id,
            invoice_id=payment.invoice_id,
            amount=payment.amount,
            mode=PaymentMode(payment.mode),
            recorded_at=payment.recorded_at,
            applied_amount=payment.applied_amount,
            advance_amount=payment.advance_amount,
            idempotency_key=payment.idempotency_key,
            description=payment.description,
            applications=tuple(
                ApplicationInfo(
                    invoice_id=app.invoice_id,
                    amount=app.amount,
                    sequence=app.sequence,
                )
                for app in sorted(payment.applications, key=lambda a: a.sequence)
            ),
        )


@dataclass(frozen=True)
class ReturnLineInfo:
    product_id: str
    quantity: Decimal
    unit_value: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class ReturnInfo:
    id: UUID
    invoice_id: UUID
    customer_id: str | None
    return_value: Decimal
    refund_mode: RefundMode
    recorded_at: datetime
    due_reduction: Decimal
    credit_to_advance: Decimal
    idempotency_key: str
    lines: tuple[ReturnLineInfo, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, sales_return: Any) -> ReturnInfo:
        return cls(
            id=sales_return.id,
            invoice_id=sales_return.invoice_id,
            customer_id=sales_return.customer_id,
            return_value=sales_return.return_value,
            refund_mode=RefundMode(sales_return.refund_mode),
            recorded_at=sales_return.recorded_at,
            due_reduction=sales_return.due_reduction,
            credit_to_advance=sales_return.credit_to_advance,
            idempotency_key=sales_return.idempotency_key,
            lines=tuple(
                ReturnLineInfo(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_value=line.unit_value,
                    line_value=line.line_value,
                )
                for line in sales_return.lines
            ),
        )


@dataclass(frozen=True)
class BalanceInfo:
    """
    Customer balance snapshot.

    ``amount_due`` is signed: negative means the customer is in credit.
    ``advance_credit`` is the unapplied part of that credit.
    """

    customer_id: str
    amount_due: Decimal
    advance_credit: Decimal
    version: int

    @property
    def is_in_credit(self) -> bool:
        return self.amount_due < 0

    @classmethod
    def from_model(cls, balance: Any) -> BalanceInfo:
        return cls(
            customer_id=balance.customer_id,
            amount_due=balance.amount_due,
            advance_credit=balance.advance_credit,
            version=balance.version,
        )


@dataclass(frozen=True)
class AdjustmentInfo:
    """One line of a customer statement."""

    event_id: str
    event_type: str
    customer_id: str
    sequence: int
    delta: Decimal
    advance_delta: Decimal
    balance_before: Decimal
    balance_after: Decimal
    recorded_at: datetime

    @classmethod
    def from_model(cls, adjustment: Any) -> AdjustmentInfo:
        return cls(
            event_id=adjustment.event_id,
            event_type=adjustment.event_type,
            customer_id=adjustment.customer_id,
            sequence=adjustment.sequence,
            delta=adjustment.delta,
            advance_delta=adjustment.advance_delta,
            balance_before=adjustment.balance_before,
            balance_after=adjustment.balance_after,
            recorded_at=adjustment.recorded_at,
        )
