"""
Deterministic hashing and JSON normalization utilities.

Audit payload hashes and workflow checksums must be reproducible across
processes, so every payload goes through one canonical JSON form.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 100 and 100.00 hash identically
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, and Decimal/datetime/UUID/Enum values
    are rendered as strings.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def _column_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    return _json_serializer(obj)


def json_safe(data: Any) -> Any:
    """
    Return a JSON-column-safe copy of ``data``.

    Request metadata arrives with Decimal amounts and datetimes; JSON
    columns only accept native JSON types.  Decimals become strings as
    written, so no precision is lost.
    """
    return json.loads(json.dumps(data, default=_column_serializer))


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_definition(definition: dict) -> str:
    """Checksum of a workflow definition's serialized form.

    ``created_at`` and ``workflow_id`` are excluded so that re-importing an
    unchanged YAML file produces the same checksum.
    """
    cleaned = {
        k: v for k, v in definition.items()
        if k not in ("created_at", "workflow_id", "version")
    }
    return hash_payload(cleaned)


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute hash for an audit event.

    The hash includes all key fields plus the previous event's hash,
    creating a tamper-evident chain.

    Args:
        entity_type: Type of entity being audited.
        entity_id: ID of the entity.
        action: Action being recorded.
        payload_hash: Hash of the event payload.
        prev_hash: Hash of the previous audit event (None for genesis).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
