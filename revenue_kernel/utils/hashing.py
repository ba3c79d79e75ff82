"""
Deterministic request fingerprints.

A retried request must hash to the same value regardless of how its amounts
were spelled ("100" vs "100.00") or in which order dict keys arrived, so the
engine can tell a retransmission from a reused idempotency key.
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """JSON fallback for Decimal, datetime, date, UUID and Enum values."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        # 100 and 100.00 must hash identically
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, consistent handling of special types."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: Any) -> str:
    """SHA-256 hex digest of a dict or dataclass payload."""
    if is_dataclass(payload) and not isinstance(payload, type):
        payload = asdict(payload)
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
