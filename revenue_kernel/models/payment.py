"""
Module: revenue_kernel.models.payment
Responsibility: ORM persistence for payments received after a sale and for
    the per-invoice applications that record how each payment was spread.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount > 0 (CHECK).
    - applied_amount + advance_amount <= amount; for money payments they are
      equal (enforced by the engine).
    - A payment is applied to a given invoice at most once
      (uq_payment_application_invoice).
    - Append-only: payments and applications are never updated or deleted.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_kernel.db.base import Base, TrackedBase


class Payment(TrackedBase):
    """
    Money (or advance credit, for credit-clearance) received from a customer.

    ``invoice_id`` is the invoice the cashier pointed at; null means a
    general account payment.  ``applications`` is the authoritative record
    of which invoices actually received the money.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payment_idempotency_key"),
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "applied_amount >= 0 AND advance_amount >= 0",
            name="ck_payment_split_non_negative",
        ),
        Index("idx_payment_recorded_at", "recorded_at"),
        Index("idx_payment_customer", "customer_id", "recorded_at"),
    )

    customer_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("customer_balances.customer_id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    mode: Mapped[str] = mapped_column(String(20), nullable=False)

    description: Mapped[str | None] = mapped_column(String(255), nullable=True)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    # Portion that reduced invoice dues
    applied_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Portion left as advance credit on the account
    advance_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    applications: Mapped[list["PaymentApplication"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentApplication.sequence",
    )

    def __repr__(self) -> str:
        return f"<Payment {self.id}: {self.amount} {self.mode}>"


class PaymentApplication(Base):
    """The part of one payment that landed on one invoice."""

    __tablename__ = "payment_applications"

    __table_args__ = (
        UniqueConstraint("payment_id", "invoice_id", name="uq_payment_application_invoice"),
        CheckConstraint("amount > 0", name="ck_payment_application_positive"),
        Index("idx_payment_application_invoice", "invoice_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        ForeignKey("payments.id"),
        nullable=False,
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # 0 = the targeted invoice (if any), then spillover order
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    applied_at: Mapped[datetime] = mapped_column(nullable=False)

    payment: Mapped["Payment"] = relationship(back_populates="applications")
