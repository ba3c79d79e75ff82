"""
Module: revenue_kernel.models.customer_balance
Responsibility: ORM persistence for the materialized per-customer balance and
    the append-only ledger of adjustments applied to it.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/ or domain/.

Invariants enforced:
    - One CustomerBalance row per customer (uq_customer_balance_customer).
    - advance_credit >= 0 (CHECK).
    - adjustment_count advances on every adjustment, even a zero delta, so
      BalanceAdjustment.sequence is gapless per customer and every
      adjustment writes the row (and bumps version).
    - version is an optimistic concurrency counter: SQLAlchemy adds
      ``WHERE version = :old`` to every UPDATE and raises StaleDataError when
      another transaction got there first.
    - BalanceAdjustment.event_id is unique, so each ledger event moves the
      balance at most once.

Failure modes:
    - IntegrityError on a duplicate customer or duplicate event_id.
    - StaleDataError on a concurrent balance update.

Audit relevance:
    BalanceAdjustment rows record before and after values for every change,
    which is what a customer statement prints.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from revenue_kernel.db.base import TrackedBase


class CustomerBalance(TrackedBase):
    """
    Outstanding balance of one customer.

    Contract:
        ``amount_due`` equals the sum of due amounts of the customer's
        non-void invoices minus ``advance_credit``.  Negative means the
        customer is in credit.  Mutated only by BalanceTracker.
    """

    __tablename__ = "customer_balances"

    __table_args__ = (
        UniqueConstraint("customer_id", name="uq_customer_balance_customer"),
        CheckConstraint("advance_credit >= 0", name="ck_balance_advance_non_negative"),
    )

    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)

    amount_due: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Unapplied overpayment / return credit
    advance_credit: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Number of adjustments applied; the next adjustment takes count + 1
    adjustment_count: Mapped[int] = mapped_column(nullable=False, default=0)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    opened_at: Mapped[datetime] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<CustomerBalance {self.customer_id}: due={self.amount_due} "
            f"advance={self.advance_credit} v{self.version}>"
        )


class BalanceAdjustment(TrackedBase):
    """
    One applied change to a customer balance.

    Contract:
        Append-only.  ``balance_after == balance_before + delta``.
        ``event_id`` names the ledger record that caused the change
        (``sale:<id>``, ``payment:<id>``, ``return:<id>``, ``void:<id>``).
    """

    __tablename__ = "balance_adjustments"

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_balance_adjustment_event"),
        UniqueConstraint("customer_id", "sequence", name="uq_balance_adjustment_sequence"),
        Index("idx_balance_adjustment_customer", "customer_id", "recorded_at"),
    )

    customer_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("customer_balances.customer_id"),
        nullable=False,
    )

    event_id: Mapped[str] = mapped_column(String(100), nullable=False)

    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Position in the customer's adjustment history; orders a statement
    sequence: Mapped[int] = mapped_column(nullable=False)

    delta: Mapped[Decimal] = mapped_column(nullable=False)

    advance_delta: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    balance_before: Mapped[Decimal] = mapped_column(nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<BalanceAdjustment {self.event_id}: {self.delta:+}>"
