"""
Module: revenue_kernel.domain.spillover
Responsibility:
    Distribute a payment amount across a customer's open invoices in a
    configurable order, reporting what lands on each invoice and what is
    left over as advance credit.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.  The reconciliation
    engine feeds it snapshots of locked invoices and persists the result.

Invariants enforced:
    - Conservation: sum(line.applied) + unapplied == amount.
    - No line exceeds its invoice's due; due never goes negative.
    - Deterministic: ties in the sort key are broken by invoice id, so a
      replay allocates identically.

Failure modes:
    - ValueError on a negative amount or a negative due.
    - ValueError on an unknown policy string.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from revenue_kernel.logging_config import get_logger

logger = get_logger("domain.spillover")


class SpilloverPolicy(str, Enum):
    """Order in which excess payment is applied to open invoices."""

    OLDEST_FIRST = "oldest_first"  # By created_at ascending
    NEWEST_FIRST = "newest_first"  # By created_at descending
    LARGEST_DUE_FIRST = "largest_due_first"  # By due descending, then oldest

    @classmethod
    def parse(cls, value: SpilloverPolicy | str) -> SpilloverPolicy:
        if isinstance(value, SpilloverPolicy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Unknown spillover policy '{value}'; expected one of {allowed}"
            ) from None


@dataclass(frozen=True)
class OpenInvoice:
    """Snapshot of an invoice that can still receive money."""

    invoice_id: UUID
    created_at: datetime
    due: Decimal

    def __post_init__(self) -> None:
        if self.due < 0:
            raise ValueError(f"Invoice {self.invoice_id} has negative due {self.due}")


@dataclass(frozen=True)
class SpilloverLine:
    invoice_id: UUID
    applied: Decimal
    remaining_due: Decimal


@dataclass(frozen=True)
class SpilloverResult:
    """
    Outcome of one allocation run.

    Guarantees:
        - ``total_applied + unapplied == amount``.
        - ``lines`` holds only invoices that received money, in the order
          they received it.
    """

    amount: Decimal
    policy: SpilloverPolicy
    lines: tuple[SpilloverLine, ...]
    unapplied: Decimal

    @property
    def total_applied(self) -> Decimal:
        return sum((line.applied for line in self.lines), Decimal("0"))

    @property
    def is_fully_applied(self) -> bool:
        return self.unapplied == 0


def order_invoices(
    invoices: Sequence[OpenInvoice],
    policy: SpilloverPolicy,
) -> list[OpenInvoice]:
    """Sort open invoices into the order they receive spillover."""
    match policy:
        case SpilloverPolicy.OLDEST_FIRST:
            return sorted(invoices, key=lambda i: (i.created_at, str(i.invoice_id)))
        case SpilloverPolicy.NEWEST_FIRST:
            # Newest first, ties still broken by id ascending
            by_id = sorted(invoices, key=lambda i: str(i.invoice_id))
            return sorted(by_id, key=lambda i: i.created_at, reverse=True)
        case SpilloverPolicy.LARGEST_DUE_FIRST:
            return sorted(
                invoices,
                key=lambda i: (-i.due, i.created_at, str(i.invoice_id)),
            )
        case _:
            raise ValueError(f"Unknown spillover policy: {policy}")


def allocate_spillover(
    amount: Decimal,
    invoices: Sequence[OpenInvoice],
    policy: SpilloverPolicy = SpilloverPolicy.OLDEST_FIRST,
) -> SpilloverResult:
    """
    Apply ``amount`` to ``invoices`` greedily in policy order.

    Each invoice takes ``min(remaining, due)``; whatever is left after the
    last invoice is returned as ``unapplied``.  Invoices with zero due are
    skipped.

    Raises:
        ValueError: If amount is negative.
    """
    if amount < 0:
        raise ValueError(f"Spillover amount must not be negative: {amount}")

    remaining = amount
    lines: list[SpilloverLine] = []

    for invoice in order_invoices(invoices, policy):
        if remaining == 0:
            break
        if invoice.due == 0:
            continue
        applied = min(remaining, invoice.due)
        remaining -= applied
        lines.append(
            SpilloverLine(
                invoice_id=invoice.invoice_id,
                applied=applied,
                remaining_due=invoice.due - applied,
            )
        )

    result = SpilloverResult(
        amount=amount,
        policy=policy,
        lines=tuple(lines),
        unapplied=remaining,
    )

    logger.debug(
        "spillover_allocated",
        extra={
            "amount": str(amount),
            "policy": policy.value,
            "candidate_count": len(invoices),
            "invoices_touched": len(lines),
            "unapplied": str(remaining),
        },
    )
    return result
