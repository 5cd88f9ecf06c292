"""
Secure Mint Hashing

All digests use SHA-256 with lowercase hexadecimal output, prefixed
with the algorithm name.
"""

import hashlib
import json
from typing import Any, Union


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in prefixed form.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(data).hexdigest().lower()
    return f"sha256:{digest}"


def report_id(payload: bytes) -> str:
    """Identifier of a report: SHA-256 of its canonical payload."""
    return sha256_hash(payload)


def canonical_json(obj: Any) -> bytes:
    """Compact, key-sorted UTF-8 JSON used for digesting structured data."""
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def content_hash(obj: Any) -> str:
    """Digest of a JSON-serializable object in canonical form."""
    return sha256_hash(canonical_json(obj))
