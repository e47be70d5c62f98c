"""Signal fingerprinting.

Dedup key format: ``<source_type>:<actor>:<signal_type>:<metadata_hash>``,
where ``actor`` is the raw actor identifier or ``anonymous`` and
``metadata_hash`` is the first 8 hex chars of SHA-256 over the canonical
metadata serialization. Key order in metadata never changes the key.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

ANONYMOUS_ACTOR = "anonymous"
METADATA_HASH_LENGTH = 8


def canonicalize(value: Any) -> str:
    """Serialize ``value`` deterministically.

    Objects sort keys lexicographically and render as ``{"k":v,...}``,
    arrays keep their order as ``[a,b]``, scalars render as JSON and
    ``None`` renders as the empty string.
    """
    if value is None:
        return ""
    if isinstance(value, dict):
        parts = [
            json.dumps(str(key), ensure_ascii=False) + ":" + canonicalize(value[key])
            for key in sorted(value, key=str)
        ]
        return "{" + ",".join(parts) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonicalize(item) for item in value) + "]"
    return json.dumps(value, ensure_ascii=False, default=str)


def metadata_hash(metadata: dict[str, Any] | None) -> str:
    digest = hashlib.sha256(canonicalize(metadata).encode("utf-8")).hexdigest()
    return digest[:METADATA_HASH_LENGTH]


def generate_dedup_key(
    source_type: str,
    actor_id: str | None,
    signal_type: str,
    metadata: dict[str, Any] | None,
) -> str:
    """Return the fingerprint for a signal. Pure and deterministic."""
    actor = actor_id or ANONYMOUS_ACTOR
    return f"{source_type}:{actor}:{signal_type}:{metadata_hash(metadata)}"
