"""
Revenue Kernel

Ledger and reconciliation core for a retail point-of-sale system:
- Invoices, payments and returns recorded append-only
- Per-customer balances kept strongly consistent with invoice dues
- Overpayment spillover across open invoices
- Idempotent, retry-safe mutations
- Period-scoped revenue and dues reporting
"""

__version__ = "0.1.0"
