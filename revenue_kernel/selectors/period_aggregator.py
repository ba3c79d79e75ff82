"""
Module: revenue_kernel.selectors.period_aggregator
Responsibility: Period-scoped revenue and dues reporting.  Separates when
    money was promised (credit sales, by invoice ``created_at``) from when it
    arrived (payments, by ``recorded_at``) so that any two adjacent windows
    add up.
Architecture position: Kernel > Selectors.  Read-only; never flushes.

Invariants enforced:
    - netRevenue == grossRevenue - returns, exactly (both rounded first).
    - stillOutstanding == creditSales - duesCollected, never clamped.
    - Void invoices are excluded from every sales figure.
    - Returns recorded against a void invoice are excluded from every
      returns figure, so voiding a sale never leaves negative net revenue.
    - Credit-clearance payments move no money and are excluded from
      collections.

Period semantics:
    Every figure reads one session snapshot.  Dates are inclusive calendar
    days in the period's timezone (see ReportingPeriod).
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from revenue_kernel.db.types import ZERO, round_money
from revenue_kernel.domain.clock import Clock, SystemClock
from revenue_kernel.domain.modes import InvoiceStatus, PaymentMode, RefundMode
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.logging_config import get_logger
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.models.payment import Payment, PaymentApplication
from revenue_kernel.models.sales_return import SalesReturn
from revenue_kernel.selectors.base import BaseSelector
from revenue_kernel.selectors.customer_selector import CustomerSelector
from revenue_kernel.selectors.report_models import (
    AllTimeDues,
    CollectionBreakdown,
    ComprehensiveBreakdown,
    DailyRevenue,
    DuesSummary,
    MetricChange,
    PeriodComparison,
    PeriodDues,
    ProductRevenue,
    ReportPeriodInfo,
    ReturnsBreakdown,
    RevenueReport,
    RevenueSummary,
    SalesBreakdown,
)

logger = get_logger("selectors.period_aggregator")

_HUNDRED = Decimal("100")
_CLEARANCE = PaymentMode.CREDIT_CLEARANCE.value


class PeriodAggregator(BaseSelector[Invoice]):
    """Builds RevenueReport and PeriodComparison objects."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        decimal_places: int = 2,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._dp = decimal_places

    def _money(self, value: Decimal) -> Decimal:
        return round_money(value, self._dp)

    def _rate(self, numerator: Decimal, denominator: Decimal) -> Decimal:
        if denominator == 0:
            return round_money(ZERO, 2)
        return round_money(numerator / denominator * _HUNDRED, 2)

    # ------------------------------------------------------------------

    def summarize(self, period: ReportingPeriod) -> RevenueReport:
        """Full revenue report for one window."""
        start, end = period.bounds()

        invoices = list(
            self.session.scalars(
                select(Invoice)
                .where(Invoice.created_at >= start, Invoice.created_at < end)
                .options(selectinload(Invoice.initial_payments), selectinload(Invoice.lines))
                .order_by(Invoice.created_at, Invoice.id)
            )
        )
        live = [inv for inv in invoices if inv.status != InvoiceStatus.VOID.value]
        voided = [inv for inv in invoices if inv.status == InvoiceStatus.VOID.value]

        payments = list(
            self.session.scalars(
                select(Payment)
                .where(Payment.recorded_at >= start, Payment.recorded_at < end)
                .order_by(Payment.recorded_at, Payment.id)
            )
        )
        money_payments = [p for p in payments if p.mode != _CLEARANCE]

        returns = list(
            self.session.scalars(
                select(SalesReturn)
                .join(Invoice, Invoice.id == SalesReturn.invoice_id)
                .where(
                    SalesReturn.recorded_at >= start,
                    SalesReturn.recorded_at < end,
                    Invoice.status != InvoiceStatus.VOID.value,
                )
                .options(selectinload(SalesReturn.lines))
                .order_by(SalesReturn.recorded_at, SalesReturn.id)
            )
        )

        # Applications of in-window money payments, with the age of the invoice
        applications = self.session.execute(
            select(PaymentApplication.amount, Invoice.created_at)
            .join(Payment, Payment.id == PaymentApplication.payment_id)
            .join(Invoice, Invoice.id == PaymentApplication.invoice_id)
            .where(
                Payment.recorded_at >= start,
                Payment.recorded_at < end,
                Payment.mode != _CLEARANCE,
            )
        ).all()

        # --- sales ---
        gross = self._money(sum((inv.total for inv in live), ZERO))
        total_tax = self._money(sum((inv.tax for inv in live), ZERO))
        total_subtotal = self._money(sum((inv.subtotal for inv in live), ZERO))
        invoice_count = len(live)
        average = self._money(gross / invoice_count) if invoice_count else self._money(ZERO)
        credit_sales = self._money(sum((inv.initial_due for inv in live), ZERO))
        invoices_with_due = sum(1 for inv in live if inv.initial_due > 0)
        walk_in_sales = self._money(
            sum((inv.total for inv in live if inv.customer_id is None), ZERO)
        )
        instant = self._money(sum((inv.instant_collection for inv in live), ZERO))

        # --- collections ---
        dues_collected = self._money(sum((p.amount for p in money_payments), ZERO))
        advances = self._money(sum((p.advance_amount for p in money_payments), ZERO))
        from_period = ZERO
        from_prior = ZERO
        for amount, invoice_created_at in applications:
            if start <= invoice_created_at < end:
                from_period += amount
            else:
                from_prior += amount
        credit_clearances = self._money(
            sum((p.amount for p in payments if p.mode == _CLEARANCE), ZERO)
        )
        total_collected = instant + dues_collected

        # --- returns ---
        returns_total = self._money(sum((r.return_value for r in returns), ZERO))
        cash_refunds = self._money(
            sum(
                (r.return_value for r in returns if r.refund_mode == RefundMode.CASH_REFUND.value),
                ZERO,
            )
        )
        credit_adjustments = returns_total - cash_refunds
        due_reductions = self._money(sum((r.due_reduction for r in returns), ZERO))
        credit_to_advance = self._money(sum((r.credit_to_advance for r in returns), ZERO))

        net_revenue = gross - returns_total
        still_outstanding = credit_sales - dues_collected

        summary = RevenueSummary(
            gross_revenue=gross,
            returns=returns_total,
            net_revenue=net_revenue,
            invoice_count=invoice_count,
            total_tax=total_tax,
            total_subtotal=total_subtotal,
            average_order_value=average,
            instant_collection=instant,
            dues_collected=dues_collected,
            total_collected=total_collected,
            collection_rate=self._rate(total_collected, gross),
            cash_refunds=cash_refunds,
            net_collected=total_collected - cash_refunds,
        )

        breakdown = ComprehensiveBreakdown(
            sales=SalesBreakdown(
                gross_revenue=gross,
                total_subtotal=total_subtotal,
                total_tax=total_tax,
                invoice_count=invoice_count,
                credit_sales=credit_sales,
                walk_in_sales=walk_in_sales,
                voided_invoices=len(voided),
                voided_value=self._money(sum((inv.total for inv in voided), ZERO)),
            ),
            collection=CollectionBreakdown(
                instant_collection=instant,
                dues_collected=dues_collected,
                from_period_sales=self._money(from_period),
                from_prior_sales=self._money(from_prior),
                advances=advances,
                credit_clearances=credit_clearances,
                total_collected=total_collected,
            ),
            returns=ReturnsBreakdown(
                total=returns_total,
                return_count=len(returns),
                cash_refunds=cash_refunds,
                credit_adjustments=credit_adjustments,
                due_reductions=due_reductions,
                credit_to_advance=credit_to_advance,
            ),
        )

        dues = DuesSummary(
            period_based=PeriodDues(
                credit_sales=credit_sales,
                dues_collected=dues_collected,
                still_outstanding=still_outstanding,
                is_advance=still_outstanding < 0,
                invoices_with_due=invoices_with_due,
                net_receivables=still_outstanding - due_reductions,
            ),
            all_time=self.all_time_dues(),
        )

        report = RevenueReport(
            period=_period_info(period),
            generated_at=self._clock.now(),
            summary=summary,
            comprehensive_breakdown=breakdown,
            dues_summary=dues,
            payments_by_mode=self._payments_by_mode(live, money_payments),
            refunds_by_mode=self._by_key(
                (r.refund_mode, r.return_value) for r in returns
            ),
            due_reductions_by_mode=self._due_reductions_by_mode(payments, returns),
            revenue_by_date=self._revenue_by_date(period, live, money_payments, returns),
            revenue_by_product=self._revenue_by_product(live, returns),
        )

        logger.info(
            "revenue_report_generated",
            extra={
                "period": str(period),
                "gross_revenue": str(gross),
                "net_revenue": str(net_revenue),
                "dues_collected": str(dues_collected),
                "still_outstanding": str(still_outstanding),
                "invoice_count": invoice_count,
            },
        )
        return report

    def compare(
        self,
        current: ReportingPeriod,
        previous: ReportingPeriod | None = None,
    ) -> PeriodComparison:
        """
        Period-over-period growth.  ``previous`` defaults to the equally long
        window immediately before ``current``.
        """
        previous = previous or current.previous()
        cur = self.summarize(current).summary
        prev = self.summarize(previous).summary

        return PeriodComparison(
            current_period=_period_info(current),
            previous_period=_period_info(previous),
            gross_revenue=_change(cur.gross_revenue, prev.gross_revenue),
            net_revenue=_change(cur.net_revenue, prev.net_revenue),
            total_collected=_change(cur.total_collected, prev.total_collected),
            collection_rate=_change(cur.collection_rate, prev.collection_rate),
            invoice_count=_change(Decimal(cur.invoice_count), Decimal(prev.invoice_count)),
        )

    def all_time_dues(self) -> AllTimeDues:
        return CustomerSelector(self.session).dues_overview(self._dp)

    # ------------------------------------------------------------------

    def _by_key(self, pairs) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for key, amount in pairs:
            totals[key] += amount
        return {key: self._money(totals[key]) for key in sorted(totals)}

    def _payments_by_mode(
        self,
        invoices: list[Invoice],
        payments: list[Payment],
    ) -> dict[str, Decimal]:
        """Money received per tender mode: till payments plus later payments."""
        pairs = [(p.mode, p.amount) for inv in invoices for p in inv.initial_payments]
        pairs.extend((p.mode, p.amount) for p in payments)
        return self._by_key(pairs)

    def _due_reductions_by_mode(
        self,
        payments: list[Payment],
        returns: list[SalesReturn],
    ) -> dict[str, Decimal]:
        """How invoice dues came down in the window, by payment or refund mode."""
        pairs = [(p.mode, p.applied_amount) for p in payments if p.applied_amount > 0]
        pairs.extend((r.refund_mode, r.due_reduction) for r in returns if r.due_reduction > 0)
        return self._by_key(pairs)

    def _revenue_by_product(
        self,
        invoices: list[Invoice],
        returns: list[SalesReturn],
    ) -> tuple[ProductRevenue, ...]:
        """Per-product sales and returns, highest gross revenue first."""
        sold: dict[str, Decimal] = defaultdict(lambda: ZERO)
        gross: dict[str, Decimal] = defaultdict(lambda: ZERO)
        returned_qty: dict[str, Decimal] = defaultdict(lambda: ZERO)
        returned: dict[str, Decimal] = defaultdict(lambda: ZERO)

        for inv in invoices:
            for line in inv.lines:
                sold[line.product_id] += line.quantity
                gross[line.product_id] += line.line_subtotal + line.line_tax
        for r in returns:
            for line in r.lines:
                returned_qty[line.product_id] += line.quantity
                returned[line.product_id] += line.line_value

        products = []
        for product_id in set(gross) | set(returned):
            product_gross = self._money(gross[product_id])
            product_returns = self._money(returned[product_id])
            products.append(
                ProductRevenue(
                    product_id=product_id,
                    quantity_sold=sold[product_id],
                    gross_revenue=product_gross,
                    quantity_returned=returned_qty[product_id],
                    returns=product_returns,
                    net_revenue=product_gross - product_returns,
                )
            )
        products.sort(key=lambda p: (-p.gross_revenue, p.product_id))
        return tuple(products)

    def _revenue_by_date(
        self,
        period: ReportingPeriod,
        invoices: list[Invoice],
        payments: list[Payment],
        returns: list[SalesReturn],
    ) -> tuple[DailyRevenue, ...]:
        gross: dict = defaultdict(lambda: ZERO)
        counts: dict = defaultdict(int)
        returned: dict = defaultdict(lambda: ZERO)
        collected: dict = defaultdict(lambda: ZERO)

        for inv in invoices:
            day = period.local_date(inv.created_at)
            gross[day] += inv.total
            counts[day] += 1
            collected[day] += inv.instant_collection
        for p in payments:
            collected[period.local_date(p.recorded_at)] += p.amount
        for r in returns:
            returned[period.local_date(r.recorded_at)] += r.return_value

        days = []
        for day in period.each_day():
            day_gross = self._money(gross[day])
            day_returns = self._money(returned[day])
            days.append(
                DailyRevenue(
                    date=day,
                    gross_revenue=day_gross,
                    returns=day_returns,
                    net_revenue=day_gross - day_returns,
                    invoice_count=counts[day],
                    collected=self._money(collected[day]),
                )
            )
        return tuple(days)


def _period_info(period: ReportingPeriod) -> ReportPeriodInfo:
    return ReportPeriodInfo(
        start_date=period.start_date,
        end_date=period.end_date,
        timezone=period.timezone_name,
        days=period.days,
    )


def _change(current: Decimal, previous: Decimal) -> MetricChange:
    growth = None
    if previous != 0:
        growth = round_money((current - previous) / abs(previous) * _HUNDRED, 2)
    return MetricChange(
        current=current,
        previous=previous,
        change=current - previous,
        growth_percent=growth,
    )
