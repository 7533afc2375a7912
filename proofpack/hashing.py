"""
Proof Pack Hashing

All hashes use SHA-256 rendered as 64 lowercase hexadecimal characters.
"""

import hashlib
import hmac
import re
from typing import Any, Optional, Union

from .canonicalization import canonicalize

SHA256_HEX_PATTERN = re.compile(r'^[0-9a-f]{64}$')


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 over raw bytes and return lowercase hex."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def canonical_hash(value: Any) -> str:
    """
    Compute the canonical hash of a JSON-like value.

    canonical_hash = SHA-256(canonicalize(value))
    """
    return sha256_hex(canonicalize(value))


def is_sha256_hex(value: Optional[str]) -> bool:
    """Check that a string is a well-formed lowercase SHA-256 hex digest."""
    return isinstance(value, str) and bool(SHA256_HEX_PATTERN.match(value))


def verify_hash(declared_hash: str, data: Union[bytes, str]) -> bool:
    """
    Verify that data matches a declared hash.

    Verifiers must recompute hashes from the bytes they hold, never trust
    a cached value.
    """
    if not is_sha256_hex(declared_hash):
        return False
    return hmac.compare_digest(sha256_hex(data), declared_hash)


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """
    Compute the hash chain entry hash.

    Creates a hash that links to the previous entry, forming
    an append-only chain.

    Args:
        prev_entry_hash: Hash of the previous entry (or None for first)
        payload_hash: Hash of the current payload

    Returns:
        SHA-256 hash of the concatenated hashes
    """
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)
