"""
Ledger invariants contract.

These invariants are structural law for the revenue kernel. No configuration
value may switch them off. This module only declares them; enforcement is
distributed across ReconciliationEngine, BalanceTracker, LedgerStore and the
database CHECK constraints on the models.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable guarantees of the reconciliation engine."""

    BALANCE_EQUALS_DUES = "balance_equals_dues"
    """CustomerBalance.amount_due equals the sum of due amounts of the
    customer's non-void invoices minus the unapplied advance credit.
    Checked by BalanceTracker.verify_customer inside every write."""

    DUE_WITHIN_TOTAL = "due_within_total"
    """0 <= invoice.due_amount <= invoice.total. Enforced by the engine and
    by a CHECK constraint on invoices."""

    NET_REVENUE_IDENTITY = "net_revenue_identity"
    """netRevenue == grossRevenue - returns for every window. Enforced by
    PeriodAggregator computing both from the same queries."""

    REFERENTIAL_INTEGRITY = "referential_integrity"
    """Payments and returns reference an existing, non-void invoice or an
    existing customer account. Enforced by LedgerStore."""

    SINGLE_BALANCE_DELTA = "single_balance_delta"
    """Each causing event adjusts a balance exactly once, keyed by event id.
    Enforced by BalanceTracker and a unique constraint."""

    IDEMPOTENCY = "idempotency"
    """A request replayed with the same idempotency key is a no-op.
    Enforced by ReconciliationEngine and unique constraints."""


ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# Packages the kernel must never import; configuration and tools sit above it
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "revenue_config",
    "scripts",
)
