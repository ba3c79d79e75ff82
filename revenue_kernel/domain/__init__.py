"""Pure domain values: modes, clock, reporting periods, drafts, DTOs, spillover."""

from revenue_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from revenue_kernel.domain.dtos import (
    AdjustmentInfo,
    ApplicationInfo,
    BalanceInfo,
    InitialPaymentDraft,
    InitialPaymentInfo,
    InvoiceDraft,
    InvoiceInfo,
    InvoiceLineDraft,
    InvoiceLineInfo,
    PaymentDraft,
    PaymentInfo,
    ReturnDraft,
    ReturnInfo,
    ReturnLineDraft,
    ReturnLineInfo,
    VoidDraft,
)
from revenue_kernel.domain.modes import (
    INSTANT_PAYMENT_MODES,
    InvoiceStatus,
    PaymentMode,
    RefundMode,
    parse_payment_mode,
    parse_refund_mode,
    status_for_due,
)
from revenue_kernel.domain.period import ReportingPeriod
from revenue_kernel.domain.spillover import (
    OpenInvoice,
    SpilloverLine,
    SpilloverPolicy,
    SpilloverResult,
    allocate_spillover,
)

__all__ = [
    "AdjustmentInfo",
    "ApplicationInfo",
    "BalanceInfo",
    "Clock",
    "DeterministicClock",
    "INSTANT_PAYMENT_MODES",
    "InitialPaymentDraft",
    "InitialPaymentInfo",
    "InvoiceDraft",
    "InvoiceInfo",
    "InvoiceLineDraft",
    "InvoiceLineInfo",
    "InvoiceStatus",
    "OpenInvoice",
    "PaymentDraft",
    "PaymentInfo",
    "PaymentMode",
    "RefundMode",
    "ReportingPeriod",
    "ReturnDraft",
    "ReturnInfo",
    "ReturnLineDraft",
    "ReturnLineInfo",
    "SpilloverLine",
    "SpilloverPolicy",
    "SpilloverResult",
    "SystemClock",
    "VoidDraft",
    "allocate_spillover",
    "parse_payment_mode",
    "parse_refund_mode",
    "status_for_due",
]
