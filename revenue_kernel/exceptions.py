"""
Typed exception hierarchy for the revenue kernel.

Every error carries a ``code`` class attribute (machine-readable, stable for
API mapping) and stores its context as attributes rather than only in the
message string.

    ReconciliationError (base)
    |
    +-- ValidationError
    |   +-- UnknownModeError
    |   +-- ReturnCeilingExceededError
    |   +-- IdempotencyKeyReusedError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- CustomerNotFoundError
    |
    +-- ConflictError
    |   +-- RetryExhaustedError
    |   +-- DuplicateRecordError
    |
    +-- ConsistencyViolation

Category      | Code                     | When raised
--------------|--------------------------|--------------------------------------
Validation    | VALIDATION_ERROR         | Malformed amounts, mismatched totals
              | UNKNOWN_MODE             | Payment/refund mode outside the enum
              | RETURN_CEILING_EXCEEDED  | Returning more than was sold
              | IDEMPOTENCY_KEY_REUSED   | Same key, different request payload
Not found     | INVOICE_NOT_FOUND        | Missing or void invoice
              | CUSTOMER_NOT_FOUND       | No balance account for customer
Conflict      | CONFLICT                 | Concurrent write on same customer
              | RETRY_EXHAUSTED          | Conflict persisted past retry limit
              | DUPLICATE_RECORD         | Unique constraint failed twice
Consistency   | CONSISTENCY_VIOLATION    | Balance drift detected (a bug)

Validation and not-found errors are raised before any write. Conflicts are
retried by the engine; a repeated unique-constraint failure is not, and
comes back as DUPLICATE_RECORD. A ConsistencyViolation aborts the transaction and is
never repaired silently.
"""

from decimal import Decimal

from revenue_kernel.invariants import LedgerInvariant


class ReconciliationError(Exception):
    """Base exception for all revenue kernel errors."""

    code: str = "RECONCILIATION_ERROR"


# Validation


class ValidationError(ReconciliationError):
    """Input rejected before any write; the caller can correct and resend."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class UnknownModeError(ValidationError):
    """A payment or refund mode string is not one of the closed set."""

    code: str = "UNKNOWN_MODE"

    def __init__(self, kind: str, value: str, allowed: tuple[str, ...]):
        self.kind = kind
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Unknown {kind} '{value}'; expected one of {', '.join(allowed)}",
            field=kind,
        )


class ReturnCeilingExceededError(ValidationError):
    """Return would exceed what remains returnable on the invoice."""

    code: str = "RETURN_CEILING_EXCEEDED"

    def __init__(
        self,
        invoice_id: str,
        requested: Decimal,
        remaining: Decimal,
        product_id: str | None = None,
    ):
        self.invoice_id = invoice_id
        self.requested = requested
        self.remaining = remaining
        self.product_id = product_id
        what = f"product {product_id} quantity" if product_id else "value"
        super().__init__(
            f"Return {what} {requested} exceeds remaining {remaining} "
            f"on invoice {invoice_id}",
            field="lines" if product_id else "return_value",
        )


class IdempotencyKeyReusedError(ValidationError):
    """Idempotency key was already used for a different request."""

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, idempotency_key: str, operation: str):
        self.idempotency_key = idempotency_key
        self.operation = operation
        super().__init__(
            f"Idempotency key {idempotency_key} already used for a "
            f"different {operation} request",
            field="idempotency_key",
        )


# Not found


class NotFoundError(ReconciliationError):
    """Referenced record does not exist (or is void)."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice is missing, or void and therefore not a valid target."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str, is_void: bool = False):
        self.invoice_id = invoice_id
        self.is_void = is_void
        state = "is void" if is_void else "not found"
        super().__init__(f"Invoice {invoice_id} {state}")


class CustomerNotFoundError(NotFoundError):
    """Customer has no balance account."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer account not found: {customer_id}")


# Concurrency


class ConflictError(ReconciliationError):
    """Concurrent transaction conflict on the same customer."""

    code: str = "CONFLICT"

    def __init__(self, customer_id: str | None, reason: str):
        self.customer_id = customer_id
        self.reason = reason
        super().__init__(f"Conflict for customer {customer_id}: {reason}")


class RetryExhaustedError(ConflictError):
    """Conflict persisted after the bounded number of retries."""

    code: str = "RETRY_EXHAUSTED"

    def __init__(self, customer_id: str | None, attempts: int, reason: str):
        self.attempts = attempts
        super().__init__(customer_id, f"gave up after {attempts} attempts: {reason}")


class DuplicateRecordError(ConflictError):
    """A unique constraint failed again on retry, so no concurrent writer explains it."""

    code: str = "DUPLICATE_RECORD"


# Consistency


class ConsistencyViolation(ReconciliationError):
    """
    A ledger invariant would be broken by the requested write.

    Never expected in normal operation: its presence means a bug in the
    reconciliation logic. The transaction is aborted and the error propagates.
    """

    code: str = "CONSISTENCY_VIOLATION"

    def __init__(
        self,
        customer_id: str,
        recorded_balance: Decimal,
        expected_balance: Decimal,
        detail: str | None = None,
    ):
        self.invariant = LedgerInvariant.BALANCE_EQUALS_DUES.value
        self.customer_id = customer_id
        self.recorded_balance = recorded_balance
        self.expected_balance = expected_balance
        self.detail = detail
        msg = (
            f"Balance drift for customer {customer_id}: recorded "
            f"{recorded_balance}, expected {expected_balance}"
        )
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)
