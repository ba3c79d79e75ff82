"""Selectors for the revenue kernel (read side)."""

from revenue_kernel.selectors.customer_selector import BalanceDrift, CustomerSelector
from revenue_kernel.selectors.ledger_selector import LedgerFilter, LedgerSelector
from revenue_kernel.selectors.period_aggregator import PeriodAggregator
from revenue_kernel.selectors.report_models import (
    PeriodComparison,
    RevenueReport,
    render_to_dict,
)

__all__ = [
    "BalanceDrift",
    "CustomerSelector",
    "LedgerFilter",
    "LedgerSelector",
    "PeriodAggregator",
    "PeriodComparison",
    "RevenueReport",
    "render_to_dict",
]
