"""
Utility functions for the Riskmate proof pack service.

Provides encoding, identifier and time utilities.
"""

import base64
import secrets
from datetime import datetime, timezone

from proofpack.context import format_ts


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Base64 decode string to bytes."""
    return base64.b64decode(s.encode('ascii'))


def utc_now() -> datetime:
    """Current instant, UTC, truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_rfc3339(dt: datetime) -> str:
    """Convert a datetime to RFC3339 UTC string."""
    return format_ts(dt)


def generate_id(length: int = 16) -> str:
    """Generate a cryptographically secure random ID (2*length hex chars)."""
    return secrets.token_hex(length)

