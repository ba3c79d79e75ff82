"""Services for the revenue kernel (write side)."""

from revenue_kernel.services.balance_tracker import BalanceTracker
from revenue_kernel.services.ledger_store import LedgerStore
from revenue_kernel.services.locking import CustomerLockRegistry
from revenue_kernel.services.reconciliation_engine import (
    ReconciliationEngine,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationStatus,
)

__all__ = [
    "BalanceTracker",
    "CustomerLockRegistry",
    "LedgerStore",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconciliationSettings",
    "ReconciliationStatus",
]
