"""
Event-id helpers for balance adjustments.

Each balance delta is keyed by the record that caused it so that
BalanceTracker can apply it exactly once.

Format: kind:record_id
"""

from uuid import UUID

EVENT_KINDS = ("sale", "payment", "return", "void")


def balance_event_id(kind: str, record_id: UUID | str) -> str:
    """
    Build the event id for a balance adjustment.

    Example:
        >>> balance_event_id("payment", uuid)
        "payment:550e8400-e29b-41d4-a716-446655440000"
    """
    if kind not in EVENT_KINDS:
        raise ValueError(f"Unknown balance event kind: {kind}")
    return f"{kind}:{record_id}"


def parse_balance_event_id(event_id: str) -> tuple[str, str]:
    """
    Split an event id into (kind, record_id).

    Raises:
        ValueError: If the format is invalid.
    """
    parts = event_id.split(":", 1)
    if len(parts) != 2 or parts[0] not in EVENT_KINDS:
        raise ValueError(f"Invalid balance event id: {event_id}")
    return parts[0], parts[1]
