"""
Module: revenue_kernel.selectors.customer_selector
Responsibility: Customer-facing reads: balance listings, statements built
    from the adjustment ledger, the all-time dues overview, and a full audit
    of the balance invariant.
Architecture position: Kernel > Selectors.  Read-only.

The audit recomputes each expected balance from invoice dues and advance
credit without going through BalanceTracker, so it can run from a
read-only connection.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from revenue_kernel.db.types import ZERO, round_money
from revenue_kernel.domain.dtos import AdjustmentInfo, BalanceInfo
from revenue_kernel.domain.modes import InvoiceStatus
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.models.customer_balance import BalanceAdjustment, CustomerBalance
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.selectors.base import BaseSelector
from revenue_kernel.selectors.report_models import AllTimeDues


@dataclass(frozen=True)
class BalanceDrift:
    """A customer whose recorded balance disagrees with the ledger."""

    customer_id: str
    recorded_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.recorded_balance - self.expected_balance


class CustomerSelector(BaseSelector[CustomerBalance]):
    def get_balance(self, customer_id: str) -> BalanceInfo | None:
        account = self.session.execute(
            select(CustomerBalance).where(CustomerBalance.customer_id == customer_id)
        ).scalar_one_or_none()
        return BalanceInfo.from_model(account) if account else None

    def list_balances(self, *, with_due_only: bool = False) -> list[BalanceInfo]:
        stmt = select(CustomerBalance).order_by(CustomerBalance.customer_id)
        if with_due_only:
            stmt = stmt.where(CustomerBalance.amount_due > 0)
        return [BalanceInfo.from_model(row) for row in self.session.scalars(stmt)]

    def dues_overview(self, decimal_places: int = 2) -> AllTimeDues:
        """Who owes and who is in credit right now, across all customers."""
        balances = self.session.scalars(select(CustomerBalance.amount_due)).all()
        owing = [b for b in balances if b > 0]
        in_credit = [-b for b in balances if b < 0]
        total_due = round_money(sum(owing, ZERO), decimal_places)
        total_credit = round_money(sum(in_credit, ZERO), decimal_places)
        return AllTimeDues(
            total_due=total_due,
            customers_with_due=len(owing),
            total_credit_balance=total_credit,
            customers_with_credit=len(in_credit),
            net_receivables=total_due - total_credit,
        )

    def statement(
        self,
        customer_id: str,
        period: ReportingPeriod | None = None,
    ) -> list[AdjustmentInfo]:
        """Balance movements for one customer in recording order."""
        stmt = select(BalanceAdjustment).where(BalanceAdjustment.customer_id == customer_id)
        if period is not None:
            start, end = period.bounds()
            stmt = stmt.where(
                BalanceAdjustment.recorded_at >= start,
                BalanceAdjustment.recorded_at < end,
            )
        stmt = stmt.order_by(BalanceAdjustment.sequence)
        return [AdjustmentInfo.from_model(row) for row in self.session.scalars(stmt)]

    def audit_balances(self) -> list[BalanceDrift]:
        """Every customer whose amount_due != open dues - advance credit."""
        dues: dict[str, Decimal] = defaultdict(lambda: ZERO)
        rows = self.session.execute(
            select(Invoice.customer_id, Invoice.due_amount).where(
                Invoice.customer_id.is_not(None),
                Invoice.status != InvoiceStatus.VOID.value,
            )
        )
        for customer_id, due in rows:
            dues[customer_id] += due

        drift = []
        for account in self.session.scalars(
            select(CustomerBalance).order_by(CustomerBalance.customer_id)
        ):
            expected = dues[account.customer_id] - account.advance_credit
            if account.amount_due != expected:
                drift.append(
                    BalanceDrift(
                        customer_id=account.customer_id,
                        recorded_balance=account.amount_due,
                        expected_balance=expected,
                    )
                )
        return drift
