"""Utility modules for the revenue kernel."""

from revenue_kernel.utils.hashing import canonicalize_json, hash_payload
from revenue_kernel.utils.idempotency import balance_event_id, parse_balance_event_id

__all__ = [
    "balance_event_id",
    "canonicalize_json",
    "hash_payload",
    "parse_balance_event_id",
]
