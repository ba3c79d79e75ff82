"""
Revenue report value objects (``revenue_kernel.selectors.report_models``).

Responsibility
--------------
Frozen dataclasses for the period revenue report and the period-over-period
comparison, plus ``render_to_dict`` which turns any of them into the
camelCase JSON shape consumed by dashboards.

Architecture position
---------------------
**Selectors layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields are ``Decimal`` and serialize as strings so no
  precision is lost on the wire.
* ``summary.net_revenue == summary.gross_revenue - summary.returns``.
* ``revenue_by_product`` sums to the summary's gross revenue and returns.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

REPORT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class RevenueSummary:
    gross_revenue: Decimal
    returns: Decimal
    net_revenue: Decimal
    invoice_count: int
    total_tax: Decimal
    total_subtotal: Decimal
    average_order_value: Decimal
    instant_collection: Decimal
    dues_collected: Decimal
    total_collected: Decimal
    collection_rate: Decimal
    cash_refunds: Decimal
    net_collected: Decimal


@dataclass(frozen=True)
class SalesBreakdown:
    gross_revenue: Decimal
    total_subtotal: Decimal
    total_tax: Decimal
    invoice_count: int
    credit_sales: Decimal
    walk_in_sales: Decimal
    voided_invoices: int
    voided_value: Decimal


@dataclass(frozen=True)
class CollectionBreakdown:
    """
    Where the money received in the window came from.

    ``from_period_sales + from_prior_sales + advances == dues_collected``.
    ``credit_clearances`` moved advance credit onto invoices and is not
    money received, so it is reported beside the collections, not in them.
    """

    instant_collection: Decimal
    dues_collected: Decimal
    from_period_sales: Decimal
    from_prior_sales: Decimal
    advances: Decimal
    credit_clearances: Decimal
    total_collected: Decimal


@dataclass(frozen=True)
class ReturnsBreakdown:
    total: Decimal
    return_count: int
    cash_refunds: Decimal
    credit_adjustments: Decimal
    due_reductions: Decimal
    credit_to_advance: Decimal


@dataclass(frozen=True)
class ProductRevenue:
    """
    Sales and returns of one product in the window.

    ``gross_revenue`` counts line subtotal plus line tax of non-void invoices;
    ``returns`` is the value of returned lines.  Summed over every product
    these equal the summary's gross revenue and returns.
    """

    product_id: str
    quantity_sold: Decimal
    gross_revenue: Decimal
    quantity_returned: Decimal
    returns: Decimal
    net_revenue: Decimal


@dataclass(frozen=True)
class ComprehensiveBreakdown:
    sales: SalesBreakdown
    collection: CollectionBreakdown
    returns: ReturnsBreakdown


@dataclass(frozen=True)
class PeriodDues:
    """
    Dues as seen from inside the window.

    ``still_outstanding = credit_sales - dues_collected``.  Negative means
    the window collected more than it sold on credit (old debt or advances);
    ``is_advance`` flags that case.  Never clamped, so consecutive windows
    add up.
    """

    credit_sales: Decimal
    dues_collected: Decimal
    still_outstanding: Decimal
    is_advance: bool
    invoices_with_due: int
    net_receivables: Decimal


@dataclass(frozen=True)
class AllTimeDues:
    """Current position across all customer balances, independent of the window."""

    total_due: Decimal
    customers_with_due: int
    total_credit_balance: Decimal
    customers_with_credit: int
    net_receivables: Decimal


@dataclass(frozen=True)
class DuesSummary:
    period_based: PeriodDues
    all_time: AllTimeDues


@dataclass(frozen=True)
class DailyRevenue:
    date: date
    gross_revenue: Decimal
    returns: Decimal
    net_revenue: Decimal
    invoice_count: int
    collected: Decimal


@dataclass(frozen=True)
class ReportPeriodInfo:
    start_date: date
    end_date: date
    timezone: str
    days: int


@dataclass(frozen=True)
class RevenueReport:
    period: ReportPeriodInfo
    generated_at: datetime
    summary: RevenueSummary
    comprehensive_breakdown: ComprehensiveBreakdown
    dues_summary: DuesSummary
    payments_by_mode: dict[str, Decimal]
    refunds_by_mode: dict[str, Decimal]
    due_reductions_by_mode: dict[str, Decimal]
    revenue_by_date: tuple[DailyRevenue, ...]
    revenue_by_product: tuple[ProductRevenue, ...]
    schema_version: int = REPORT_SCHEMA_VERSION

    def to_dict(self) -> dict:
        return render_to_dict(self)


@dataclass(frozen=True)
class MetricChange:
    current: Decimal
    previous: Decimal
    change: Decimal
    growth_percent: Decimal | None  # None when previous is zero


@dataclass(frozen=True)
class PeriodComparison:
    current_period: ReportPeriodInfo
    previous_period: ReportPeriodInfo
    gross_revenue: MetricChange
    net_revenue: MetricChange
    total_collected: MetricChange
    collection_rate: MetricChange
    invoice_count: MetricChange
    schema_version: int = REPORT_SCHEMA_VERSION

    def to_dict(self) -> dict:
        return render_to_dict(self)


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def render_to_dict(obj: object) -> dict | list | str | int | float | bool | None:
    """
    Convert any report dataclass to a plain dict for JSON serialization.

    Handles:
    - Decimal -> str (preserving precision)
    - UUID -> str
    - date / datetime -> ISO format string
    - Enum -> .value
    - Nested frozen dataclasses -> nested dicts with camelCase keys
    - Tuples -> lists
    """
    if obj is None:
        return None
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [render_to_dict(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): render_to_dict(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            camel_case(f.name): render_to_dict(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)
