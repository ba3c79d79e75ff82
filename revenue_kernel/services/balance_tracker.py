"""
BalanceTracker -- materialized per-customer outstanding balance.

Responsibility:
    Owns the CustomerBalance rows.  ``adjust_balance`` is the only code path
    that changes a balance; it is applied exactly once per ledger event and
    leaves a BalanceAdjustment row with before and after values.

Architecture position:
    Kernel > Services -- imperative shell.  Called only by the
    ReconciliationEngine, in the same transaction as the ledger write that
    caused the adjustment.

Invariants enforced:
    - Exactly once: a repeated event_id returns the existing adjustment and
      changes nothing.
    - advance_credit never goes negative.
    - amount_due == sum(due of non-void invoices) - advance_credit, checked by
      verify_customer() before the engine commits.

Failure modes:
    - CustomerNotFoundError when no account exists.
    - ConsistencyViolation when the materialized balance has drifted from the
      ledger, or an adjustment would drive advance credit negative.
    - StaleDataError (from the ORM) when another transaction updated the
      same balance row concurrently; the engine retries.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from revenue_kernel.db.types import ZERO
from revenue_kernel.domain.dtos import BalanceInfo
from revenue_kernel.domain.modes import InvoiceStatus
from revenue_kernel.exceptions import ConsistencyViolation, CustomerNotFoundError
from revenue_kernel.logging_config import get_logger
from revenue_kernel.models.customer_balance import BalanceAdjustment, CustomerBalance
from revenue_kernel.models.invoice import Invoice
from revenue_kernel.services.base import BaseService
from revenue_kernel.utils.idempotency import parse_balance_event_id

logger = get_logger("services.balance_tracker")


class BalanceTracker(BaseService[CustomerBalance]):
    """
    Per-customer balance ledger.

    Contract:
        Flush-only.  ``lock_account`` takes a row lock on backends that
        support ``SELECT ... FOR UPDATE``; the version counter on
        CustomerBalance catches lost updates everywhere else.
    """

    def get_account(self, customer_id: str) -> CustomerBalance | None:
        return self.session.execute(
            select(CustomerBalance).where(CustomerBalance.customer_id == customer_id)
        ).scalar_one_or_none()

    def lock_account(self, customer_id: str) -> CustomerBalance:
        """
        Load the account with a row lock and fresh values.

        Raises:
            CustomerNotFoundError: If the customer has no account.
        """
        account = self.session.execute(
            select(CustomerBalance)
            .where(CustomerBalance.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            raise CustomerNotFoundError(customer_id)
        return account

    def open_account(self, customer_id: str) -> CustomerBalance:
        """
        Return the customer's account, creating it with a zero balance on
        first use.  A concurrent creator is tolerated: the losing insert is
        rolled back to a savepoint and the winner's row is returned.
        """
        existing = self.get_account(customer_id)
        if existing is not None:
            return existing

        savepoint = self.session.begin_nested()
        try:
            account = CustomerBalance(
                customer_id=customer_id,
                amount_due=ZERO,
                advance_credit=ZERO,
                opened_at=self.clock.now(),
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
            logger.info("customer_account_opened", extra={"customer_id": customer_id})
            return account
        except IntegrityError:
            savepoint.rollback()
            logger.debug("customer_account_race", extra={"customer_id": customer_id})
            return self.lock_account(customer_id)

    def get_balance(self, customer_id: str) -> Decimal:
        """
        Current amount due (negative when in credit).

        Raises:
            CustomerNotFoundError: If the customer has no account.
        """
        account = self.get_account(customer_id)
        if account is None:
            raise CustomerNotFoundError(customer_id)
        return account.amount_due

    def get_balance_info(self, customer_id: str) -> BalanceInfo:
        account = self.get_account(customer_id)
        if account is None:
            raise CustomerNotFoundError(customer_id)
        return BalanceInfo.from_model(account)

    def adjust_balance(
        self,
        customer_id: str,
        delta: Decimal,
        *,
        event_id: str,
        advance_delta: Decimal = ZERO,
        actor_id: str = "system",
    ) -> BalanceAdjustment:
        """
        Apply ``delta`` to the customer's amount due, once per ``event_id``.

        ``advance_delta`` moves the advance-credit component in the same
        step (positive when money is left unapplied, negative when advance
        credit is consumed).

        Raises:
            CustomerNotFoundError: If the customer has no account.
            ConsistencyViolation: If advance credit would go negative.
        """
        event_type, _ = parse_balance_event_id(event_id)

        existing = self.session.execute(
            select(BalanceAdjustment).where(BalanceAdjustment.event_id == event_id)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info(
                "balance_adjustment_already_applied",
                extra={"event_id": event_id, "customer_id": customer_id},
            )
            return existing

        account = self.lock_account(customer_id)
        before = account.amount_due
        new_advance = account.advance_credit + advance_delta
        if new_advance < 0:
            raise ConsistencyViolation(
                customer_id,
                recorded_balance=before,
                expected_balance=before + delta,
                detail=f"advance credit would become {new_advance} on {event_id}",
            )

        account.amount_due = before + delta
        account.advance_credit = new_advance
        account.adjustment_count += 1

        adjustment = BalanceAdjustment(
            customer_id=customer_id,
            event_id=event_id,
            event_type=event_type,
            sequence=account.adjustment_count,
            delta=delta,
            advance_delta=advance_delta,
            balance_before=before,
            balance_after=account.amount_due,
            recorded_at=self.clock.now(),
            created_by=actor_id,
        )
        self.session.add(adjustment)
        self.session.flush()

        logger.info(
            "balance_adjusted",
            extra={
                "event_id": event_id,
                "delta": str(delta),
                "advance_delta": str(advance_delta),
                "balance_before": str(before),
                "balance_after": str(account.amount_due),
            },
        )
        return adjustment

    def expected_balance(self, customer_id: str) -> Decimal:
        """Balance implied by the ledger: open dues minus advance credit."""
        account = self.get_account(customer_id)
        if account is None:
            raise CustomerNotFoundError(customer_id)
        dues = self.session.scalars(
            select(Invoice.due_amount).where(
                Invoice.customer_id == customer_id,
                Invoice.status != InvoiceStatus.VOID.value,
            )
        ).all()
        return sum(dues, ZERO) - account.advance_credit

    def verify_customer(self, customer_id: str) -> BalanceInfo:
        """
        Check the balance invariant for one customer.

        Raises:
            ConsistencyViolation: If the recorded balance has drifted.
        """
        account = self.get_account(customer_id)
        if account is None:
            raise CustomerNotFoundError(customer_id)
        expected = self.expected_balance(customer_id)
        if account.amount_due != expected:
            raise ConsistencyViolation(
                customer_id,
                recorded_balance=account.amount_due,
                expected_balance=expected,
            )
        return BalanceInfo.from_model(account)
