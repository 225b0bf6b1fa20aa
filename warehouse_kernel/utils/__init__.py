"""Utility modules for the warehouse kernel."""

from warehouse_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_record,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_record",
    "hash_payload",
    "to_json_safe",
]
