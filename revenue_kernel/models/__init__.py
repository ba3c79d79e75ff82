"""ORM models for the revenue kernel."""

from revenue_kernel.models.customer_balance import BalanceAdjustment, CustomerBalance
from revenue_kernel.models.invoice import InitialPayment, Invoice, InvoiceLine
from revenue_kernel.models.payment import Payment, PaymentApplication
from revenue_kernel.models.sales_return import SalesReturn, SalesReturnLine

__all__ = [
    "BalanceAdjustment",
    "CustomerBalance",
    "InitialPayment",
    "Invoice",
    "InvoiceLine",
    "Payment",
    "PaymentApplication",
    "SalesReturn",
    "SalesReturnLine",
]
