"""Deterministic request fingerprints for cache keys.

A fingerprint is the SHA256 hex digest of canonical JSON (sorted keys, compact
separators) over the request inputs, prefixed with a caller namespace so keys
from unrelated subsystems cannot collide.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def compute_fingerprint(namespace: str, parts: Mapping[str, Any]) -> str:
    """Compute a namespaced, deterministic cache key.

    Args:
        namespace: Key namespace (e.g. "fetch").
        parts: Request inputs; ordering of mapping keys is irrelevant.

    Returns:
        "<namespace>:<sha256 hex>".
    """
    digest = hashlib.sha256(_canonical_json(dict(parts)).encode("utf-8")).hexdigest()
    return f"{namespace}:{digest}"


def fetch_fingerprint(
    *,
    data_source_id: str,
    method: str,
    endpoint: str,
    params: Mapping[str, Any] | None = None,
    body: Any = None,
    headers: Mapping[str, str] | None = None,
) -> str:
    """Fingerprint a connector fetch.

    Header names are case-insensitive, so they are lower-cased before hashing.
    """
    return compute_fingerprint(
        "fetch",
        {
            "body": body,
            "data_source_id": data_source_id,
            "endpoint": endpoint,
            "headers": {name.lower(): value for name, value in (headers or {}).items()},
            "method": method.upper(),
            "params": {k: v for k, v in (params or {}).items() if v is not None},
        },
    )


def data_source_tag(data_source_id: str) -> str:
    """Cache tag shared by every entry derived from one data source."""
    return f"data_source:{data_source_id}"
