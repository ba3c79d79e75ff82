"""
Module: revenue_kernel.domain.pricing
Responsibility:
    Validate and normalize inbound drafts before anything is written: parse
    modes, coerce amounts to Decimal, compute line and invoice totals, and
    derive the request fingerprint used for idempotent replay detection.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.  Called by the
    reconciliation engine at the top of every operation.

Invariants enforced:
    - Every amount is quantized to the currency minor unit with ROUND_HALF_UP.
    - Initial payments never exceed the invoice total.
    - Walk-in sales carry no due.

Failure modes:
    - ValidationError (or UnknownModeError) for any malformed draft.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from revenue_kernel.db.types import ZERO, money_from, round_money
from revenue_kernel.domain.dtos import (
    InitialPaymentDraft,
    InvoiceDraft,
    InvoiceLineDraft,
    PaymentDraft,
    ReturnDraft,
    ReturnLineDraft,
)
from revenue_kernel.domain.modes import (
    INSTANT_PAYMENT_MODES,
    PaymentMode,
    RefundMode,
    parse_payment_mode,
    parse_refund_mode,
)
from revenue_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class PricedLine:
    line_no: int
    product_id: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    line_subtotal: Decimal
    line_tax: Decimal


@dataclass(frozen=True)
class PricedInvoice:
    """A validated sale, ready for the ledger."""

    draft: InvoiceDraft
    lines: tuple[PricedLine, ...]
    initial_payments: tuple[tuple[PaymentMode, Decimal], ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    initial_due: Decimal
    fingerprint: str

    @property
    def customer_id(self) -> str | None:
        return self.draft.customer_id


@dataclass(frozen=True)
class NormalizedPayment:
    draft: PaymentDraft
    amount: Decimal
    mode: PaymentMode
    fingerprint: str


@dataclass(frozen=True)
class NormalizedReturnLine:
    product_id: str
    quantity: Decimal
    unit_value: Decimal
    line_value: Decimal


@dataclass(frozen=True)
class NormalizedReturn:
    draft: ReturnDraft
    lines: tuple[NormalizedReturnLine, ...]
    refund_mode: RefundMode
    return_value: Decimal
    fingerprint: str


def to_amount(value: Any, field: str) -> Decimal:
    """Coerce a request value to Decimal, reporting failures as ValidationError."""
    try:
        return money_from(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field}: {exc}", field=field) from None


def require_key(idempotency_key: str | None) -> str:
    if not idempotency_key or not str(idempotency_key).strip():
        raise ValidationError("idempotency_key is required", field="idempotency_key")
    return str(idempotency_key).strip()


def require_aware(value: datetime | None, field: str) -> None:
    """Reject naive timestamps; the ledger stores UTC instants only."""
    if value is not None and value.tzinfo is None:
        raise ValidationError(f"{field} must be timezone-aware, got {value}", field=field)


def price_invoice(
    draft: InvoiceDraft,
    decimal_places: int = 2,
    tolerance: Decimal = Decimal("0.01"),
) -> PricedInvoice:
    """
    Validate a sale and compute its totals.

    Line subtotal is ``quantity * unit_price`` and line tax is
    ``line_subtotal * tax_rate``, each rounded to the minor unit; the
    invoice figures are sums of the rounded line figures.
    """
    require_key(draft.idempotency_key)
    if not draft.lines:
        raise ValidationError("Invoice must have at least one line", field="lines")
    if draft.customer_id is not None and not str(draft.customer_id).strip():
        raise ValidationError("customer_id must not be blank", field="customer_id")
    require_aware(draft.created_at, "created_at")

    lines: list[PricedLine] = []
    raw_lines: list[InvoiceLineDraft] = []
    for n, line in enumerate(draft.lines):
        if not line.product_id:
            raise ValidationError(f"Line {n}: product_id is required", field="lines")
        quantity = to_amount(line.quantity, "quantity")
        unit_price = to_amount(line.unit_price, "unit_price")
        tax_rate = to_amount(line.tax_rate, "tax_rate")
        if quantity <= 0:
            raise ValidationError(f"Line {n}: quantity must be positive", field="quantity")
        if unit_price < 0:
            raise ValidationError(f"Line {n}: unit_price must not be negative", field="unit_price")
        if tax_rate < 0:
            raise ValidationError(f"Line {n}: tax_rate must not be negative", field="tax_rate")

        line_subtotal = round_money(quantity * unit_price, decimal_places)
        line_tax = round_money(line_subtotal * tax_rate, decimal_places)
        lines.append(
            PricedLine(
                line_no=n,
                product_id=str(line.product_id),
                quantity=quantity,
                unit_price=unit_price,
                tax_rate=tax_rate,
                line_subtotal=line_subtotal,
                line_tax=line_tax,
            )
        )
        raw_lines.append(InvoiceLineDraft(str(line.product_id), quantity, unit_price, tax_rate))

    subtotal = sum((line.line_subtotal for line in lines), ZERO)
    tax = sum((line.line_tax for line in lines), ZERO)
    total = subtotal + tax

    declared = None
    if draft.subtotal is not None:
        declared = to_amount(draft.subtotal, "subtotal")
        if abs(declared - subtotal) > tolerance:
            raise ValidationError(
                f"Declared subtotal {declared} does not match line sum {subtotal}",
                field="subtotal",
            )

    payments: list[tuple[PaymentMode, Decimal]] = []
    for p in draft.initial_payments:
        mode = parse_payment_mode(p.mode)
        if mode not in INSTANT_PAYMENT_MODES:
            raise ValidationError(
                f"{mode.value} cannot be used as an initial payment",
                field="initial_payments",
            )
        amount = round_money(to_amount(p.amount, "initial_payments"), decimal_places)
        if amount <= 0:
            raise ValidationError(
                "Initial payment amounts must be positive",
                field="initial_payments",
            )
        payments.append((mode, amount))

    paid = sum((amount for _, amount in payments), ZERO)
    if paid > total:
        raise ValidationError(
            f"Initial payments {paid} exceed invoice total {total}",
            field="initial_payments",
        )
    initial_due = total - paid

    if draft.customer_id is None and initial_due > 0:
        raise ValidationError(
            f"Walk-in sale must be fully paid; {initial_due} outstanding",
            field="customer_id",
        )

    normalized = replace(
        draft,
        lines=tuple(raw_lines),
        initial_payments=tuple(InitialPaymentDraft(m, a) for m, a in payments),
        subtotal=declared,
    )
    return PricedInvoice(
        draft=draft,
        lines=tuple(lines),
        initial_payments=tuple(payments),
        subtotal=subtotal,
        tax=tax,
        total=total,
        initial_due=initial_due,
        fingerprint=normalized.fingerprint(),
    )


def normalize_payment(draft: PaymentDraft, decimal_places: int = 2) -> NormalizedPayment:
    require_key(draft.idempotency_key)
    if not draft.customer_id:
        raise ValidationError("customer_id is required", field="customer_id")
    require_aware(draft.recorded_at, "recorded_at")
    mode = parse_payment_mode(draft.mode)
    amount = round_money(to_amount(draft.amount, "amount"), decimal_places)
    if amount <= 0:
        raise ValidationError(f"Payment amount must be positive, got {amount}", field="amount")
    normalized = replace(draft, amount=amount, mode=mode)
    return NormalizedPayment(
        draft=draft,
        amount=amount,
        mode=mode,
        fingerprint=normalized.fingerprint(),
    )


def normalize_return(draft: ReturnDraft, decimal_places: int = 2) -> NormalizedReturn:
    require_key(draft.idempotency_key)
    refund_mode = parse_refund_mode(draft.refund_mode)
    require_aware(draft.recorded_at, "recorded_at")
    if not draft.lines:
        raise ValidationError("Return must have at least one line", field="lines")

    lines: list[NormalizedReturnLine] = []
    for line in draft.lines:
        if not line.product_id:
            raise ValidationError("Return line product_id is required", field="lines")
        quantity = to_amount(line.quantity, "quantity")
        unit_value = to_amount(line.unit_value, "unit_value")
        if quantity <= 0:
            raise ValidationError("Return quantity must be positive", field="quantity")
        if unit_value < 0:
            raise ValidationError("Return unit_value must not be negative", field="unit_value")
        lines.append(
            NormalizedReturnLine(
                product_id=str(line.product_id),
                quantity=quantity,
                unit_value=unit_value,
                line_value=round_money(quantity * unit_value, decimal_places),
            )
        )

    return_value = sum((line.line_value for line in lines), ZERO)
    if return_value <= 0:
        raise ValidationError(
            f"Return value must be positive, got {return_value}",
            field="return_value",
        )

    normalized = replace(
        draft,
        refund_mode=refund_mode,
        lines=tuple(ReturnLineDraft(l.product_id, l.quantity, l.unit_value) for l in lines),
    )
    return NormalizedReturn(
        draft=draft,
        lines=tuple(lines),
        refund_mode=refund_mode,
        return_value=return_value,
        fingerprint=normalized.fingerprint(),
    )
