"""
Module: revenue_kernel.models.invoice
Responsibility: ORM persistence for sales invoices, their lines and the
    payments taken at the till when the invoice was created.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - 0 <= due_amount <= total (CHECK ck_invoice_due_range).
    - 0 <= initial_due <= total (CHECK ck_invoice_initial_due_range).
    - idempotency_key is unique; void_idempotency_key is unique when set.
    - Invoices are voided, never deleted.

Failure modes:
    - IntegrityError on a duplicate idempotency key or a CHECK violation.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_kernel.db.base import Base, TrackedBase


class Invoice(TrackedBase):
    """
    A sale.

    Contract:
        ``initial_due`` is fixed at creation (``total`` minus initial
        payments).  ``due_amount`` starts there and only ever falls, through
        payments and credit-adjustment returns.  A null ``customer_id`` is a
        walk-in sale.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_invoice_idempotency_key"),
        UniqueConstraint("void_idempotency_key", name="uq_invoice_void_idempotency_key"),
        CheckConstraint(
            "due_amount >= 0 AND due_amount <= total",
            name="ck_invoice_due_range",
        ),
        CheckConstraint(
            "initial_due >= 0 AND initial_due <= total",
            name="ck_invoice_initial_due_range",
        ),
        Index("idx_invoice_created_at", "created_at"),
        Index("idx_invoice_customer_status", "customer_id", "status"),
    )

    customer_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("customer_balances.customer_id"),
        nullable=True,
    )

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)

    initial_due: Mapped[Decimal] = mapped_column(nullable=False)
    due_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    # Terminal-side bill number, free text
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    void_idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    void_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.line_no",
    )

    initial_payments: Mapped[list["InitialPayment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InitialPayment.sequence",
    )

    @property
    def is_void(self) -> bool:
        return self.status == "void"

    @property
    def instant_collection(self) -> Decimal:
        return self.total - self.initial_due

    def __repr__(self) -> str:
        return f"<Invoice {self.id}: total={self.total} due={self.due_amount} {self.status}>"


class InvoiceLine(Base):
    """One product line of an invoice; immutable after creation."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_no", name="uq_invoice_line_no"),
        CheckConstraint("quantity > 0", name="ck_invoice_line_quantity_positive"),
        Index("idx_invoice_line_product", "invoice_id", "product_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False)

    line_subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    line_tax: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="lines")


class InitialPayment(Base):
    """Money tendered at the till when the invoice was rung up."""

    __tablename__ = "invoice_initial_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_initial_payment_positive"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    mode: Mapped[str] = mapped_column(String(20), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="initial_payments")
