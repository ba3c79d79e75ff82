"""
Closed enumerations for payment modes, refund modes and invoice status.

Mode strings arrive from terminals as free text; they are parsed here at the
boundary and anything outside the closed set is rejected with
UnknownModeError rather than passed through.
"""

from decimal import Decimal
from enum import Enum

from revenue_kernel.exceptions import UnknownModeError


class PaymentMode(str, Enum):
    """How a payment was tendered."""

    CASH = "cash"
    ONLINE = "online"
    CARD = "card"
    # Consumes the customer's advance credit; no money moves
    CREDIT_CLEARANCE = "credit-clearance"

    @property
    def moves_money(self) -> bool:
        return self is not PaymentMode.CREDIT_CLEARANCE


# Modes allowed for payments taken at the till when the invoice is created
INSTANT_PAYMENT_MODES: frozenset[PaymentMode] = frozenset(
    {PaymentMode.CASH, PaymentMode.ONLINE, PaymentMode.CARD}
)


class RefundMode(str, Enum):
    """How a return is settled."""

    CASH_REFUND = "cash_refund"
    CREDIT_ADJUSTMENT = "credit_adjustment"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle.

    Transitions: OPEN -> PARTIALLY_PAID -> PAID as the due falls, or
    OPEN / PARTIALLY_PAID -> VOID.  Due never increases.
    """

    OPEN = "open"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


def parse_payment_mode(value: "PaymentMode | str") -> PaymentMode:
    """Parse a payment mode, accepting ``credit_clearance`` as a spelling."""
    if isinstance(value, PaymentMode):
        return value
    normalized = str(value).strip().lower().replace("_", "-")
    try:
        return PaymentMode(normalized)
    except ValueError:
        raise UnknownModeError(
            "payment_mode", str(value), tuple(m.value for m in PaymentMode)
        ) from None


def parse_refund_mode(value: "RefundMode | str") -> RefundMode:
    if isinstance(value, RefundMode):
        return value
    normalized = str(value).strip().lower().replace("-", "_")
    try:
        return RefundMode(normalized)
    except ValueError:
        raise UnknownModeError(
            "refund_mode", str(value), tuple(m.value for m in RefundMode)
        ) from None


def status_for_due(due: Decimal, total: Decimal) -> InvoiceStatus:
    """
    Derive the status of a non-void invoice from how much of it is still due.

    Status tracks the due amount, not where the reduction came from: a
    credit-adjustment return that lowers the due of an unpaid invoice moves
    it to PARTIALLY_PAID (or PAID when nothing is left) just as a payment
    would.  Payment history is on the invoice's payment applications.
    """
    if due == 0:
        return InvoiceStatus.PAID
    if due == total:
        return InvoiceStatus.OPEN
    return InvoiceStatus.PARTIALLY_PAID
