"""
Module: revenue_kernel.models.sales_return
Responsibility: ORM persistence for goods returned against an invoice.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - return_value > 0 and equals the sum of line values.
    - due_reduction + credit_to_advance == return_value for credit
      adjustments; both are zero for cash refunds.
    - Append-only.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from revenue_kernel.db.base import Base, TrackedBase


class SalesReturn(TrackedBase):
    __tablename__ = "sales_returns"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_sales_return_idempotency_key"),
        CheckConstraint("return_value > 0", name="ck_sales_return_value_positive"),
        Index("idx_sales_return_recorded_at", "recorded_at"),
        Index("idx_sales_return_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoices.id"),
        nullable=False,
    )

    # Copied from the invoice; null for walk-in
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    return_value: Mapped[Decimal] = mapped_column(nullable=False)

    refund_mode: Mapped[str] = mapped_column(String(20), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)

    due_reduction: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credit_to_advance: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["SalesReturnLine"]] = relationship(
        back_populates="sales_return",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<SalesReturn {self.id}: {self.return_value} {self.refund_mode}>"


class SalesReturnLine(Base):
    __tablename__ = "sales_return_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sales_return_line_quantity_positive"),
    )

    return_id: Mapped[UUID] = mapped_column(
        ForeignKey("sales_returns.id"),
        nullable=False,
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    unit_value: Mapped[Decimal] = mapped_column(nullable=False)
    line_value: Mapped[Decimal] = mapped_column(nullable=False)

    sales_return: Mapped["SalesReturn"] = relationship(back_populates="lines")
