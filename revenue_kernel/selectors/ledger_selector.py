"""
Module: revenue_kernel.selectors.ledger_selector
Responsibility: Read-only queries over invoices, payments and returns,
    scoped by reporting period and LedgerFilter.
Architecture position: Kernel > Selectors.

Period semantics:
    Invoices are placed by ``created_at``, payments and returns by
    ``recorded_at``.  The window is the half-open UTC interval from
    ReportingPeriod.bounds().
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from revenue_kernel.domain.dtos import InvoiceInfo, PaymentInfo, ReturnInfo
from revenue_kernel.domain.modes import InvoiceStatus
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.models.payment import Payment
from revenue_kernel.models.sales_return import SalesReturn
from revenue_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerFilter:
    """
    Optional narrowing of ledger queries.

    ``modes`` matches payment modes for payments and refund modes for
    returns; it is ignored for invoices.
    """

    customer_id: str | None = None
    invoice_id: UUID | None = None
    modes: tuple[str, ...] = ()
    include_void: bool = False
    walk_in_only: bool = False


class LedgerSelector(BaseSelector[Invoice]):
    """Invoice, payment and return listings as DTOs."""

    def get_invoice(self, invoice_id: UUID) -> InvoiceInfo | None:
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(selectinload(Invoice.lines), selectinload(Invoice.initial_payments))
        ).scalar_one_or_none()
        return InvoiceInfo.from_model(invoice) if invoice else None

    def query_invoices(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[InvoiceInfo]:
        filters = filters or LedgerFilter()
        stmt = select(Invoice).options(
            selectinload(Invoice.lines),
            selectinload(Invoice.initial_payments),
        )
        if period is not None:
            start, end = period.bounds()
            stmt = stmt.where(Invoice.created_at >= start, Invoice.created_at < end)
        if not filters.include_void:
            stmt = stmt.where(Invoice.status != InvoiceStatus.VOID.value)
        if filters.walk_in_only:
            stmt = stmt.where(Invoice.customer_id.is_(None))
        elif filters.customer_id is not None:
            stmt = stmt.where(Invoice.customer_id == filters.customer_id)
        if filters.invoice_id is not None:
            stmt = stmt.where(Invoice.id == filters.invoice_id)
        stmt = stmt.order_by(Invoice.created_at, Invoice.id)

        return [InvoiceInfo.from_model(row) for row in self.session.scalars(stmt)]

    def query_payments(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[PaymentInfo]:
        filters = filters or LedgerFilter()
        stmt = select(Payment).options(selectinload(Payment.applications))
        if period is not None:
            start, end = period.bounds()
            stmt = stmt.where(Payment.recorded_at >= start, Payment.recorded_at < end)
        if filters.customer_id is not None:
            stmt = stmt.where(Payment.customer_id == filters.customer_id)
        if filters.invoice_id is not None:
            stmt = stmt.where(Payment.invoice_id == filters.invoice_id)
        if filters.modes:
            stmt = stmt.where(Payment.mode.in_(_mode_values(filters.modes)))
        stmt = stmt.order_by(Payment.recorded_at, Payment.id)

        return [PaymentInfo.from_model(row) for row in self.session.scalars(stmt)]

    def query_returns(
        self,
        period: ReportingPeriod | None = None,
        filters: LedgerFilter | None = None,
    ) -> list[ReturnInfo]:
        filters = filters or LedgerFilter()
        stmt = select(SalesReturn).options(selectinload(SalesReturn.lines))
        if period is not None:
            start, end = period.bounds()
            stmt = stmt.where(
                SalesReturn.recorded_at >= start,
                SalesReturn.recorded_at < end,
            )
        if filters.walk_in_only:
            stmt = stmt.where(SalesReturn.customer_id.is_(None))
        elif filters.customer_id is not None:
            stmt = stmt.where(SalesReturn.customer_id == filters.customer_id)
        if filters.invoice_id is not None:
            stmt = stmt.where(SalesReturn.invoice_id == filters.invoice_id)
        if filters.modes:
            stmt = stmt.where(SalesReturn.refund_mode.in_(_mode_values(filters.modes)))
        stmt = stmt.order_by(SalesReturn.recorded_at, SalesReturn.id)

        return [ReturnInfo.from_model(row) for row in self.session.scalars(stmt)]


def _mode_values(modes: Iterable[str]) -> list[str]:
    return [getattr(m, "value", m) for m in modes]
