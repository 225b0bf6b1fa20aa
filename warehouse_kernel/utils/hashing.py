"""
Canonical JSON and the audit hash chain.

An audit record's ``payload_hash`` covers its actor, before/after state and
the product/location/document it touches.  Its ``hash`` links that payload
hash to the record's identity and to the previous record's ``hash``; the
first record links to the literal ``GENESIS``.  Editing, inserting or
deleting any stored record therefore changes every hash after it.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(map(str, value))
    raise TypeError(f"{type(value).__name__} cannot be stored in an audit payload")


def canonicalize_json(data: Any) -> str:
    """Compact JSON with sorted keys; the input to every audit hash."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: Any) -> Any:
    """Convert ``data`` to plain JSON types so it survives a JSON column unchanged."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_record(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chained hash of one audit record."""
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS))
    )
