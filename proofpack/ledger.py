"""
Ledger entry hashing and offline chain verification.

Each entry body is hashed canonically (payload_hash), linked to its
predecessor (entry_hash = SHA-256(prev_entry_hash || payload_hash)) and
signed with the service's Ed25519 key over the canonical body.
"""

import base64
from typing import Any, Dict, List, Mapping, Optional, Sequence

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .canonicalization import canonicalize
from .hashing import chain_entry_hash, sha256_hex

PAYLOAD_FIELDS = (
    "organization_id",
    "event_name",
    "target_type",
    "target_id",
    "actor_id",
    "metadata",
    "created_at",
)


def ledger_payload(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """The signed, hashed portion of a ledger entry."""
    return {k: entry.get(k) for k in PAYLOAD_FIELDS}


def payload_bytes(entry: Mapping[str, Any]) -> bytes:
    return canonicalize(ledger_payload(entry))


def payload_hash(entry: Mapping[str, Any]) -> str:
    return sha256_hex(payload_bytes(entry))


def verify_signature(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = VerifyKey(base64.b64decode(public_key_b64))
        vk.verify(payload, base64.b64decode(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def verify_entry(
    entry: Mapping[str, Any],
    prev_entry_hash: Optional[str],
    public_keys: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """
    Check one entry against its predecessor.

    Returns:
        Problems found (empty when the entry is intact)
    """
    problems = []
    seq = entry.get("seq")
    recomputed_payload = payload_hash(entry)
    if entry.get("payload_hash") != recomputed_payload:
        problems.append(f"seq {seq}: payload hash mismatch")
    if (entry.get("prev_entry_hash") or None) != (prev_entry_hash or None):
        problems.append(f"seq {seq}: prev_entry_hash does not link to previous entry")
    if entry.get("entry_hash") != chain_entry_hash(prev_entry_hash, recomputed_payload):
        problems.append(f"seq {seq}: chain mismatch")
    if public_keys is not None:
        kid = entry.get("kid")
        pub = public_keys.get(kid) if kid else None
        if not pub:
            problems.append(f"seq {seq}: unknown signing key {kid}")
        elif not verify_signature(entry.get("sig_b64") or "", payload_bytes(entry), pub):
            problems.append(f"seq {seq}: invalid signature")
    return problems


def verify_ledger_chain(
    entries: Sequence[Mapping[str, Any]],
    public_keys: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """
    Walk an exported ledger in seq order.

    Args:
        entries: Ledger export (as returned by GET /api/audit/ledger)
        public_keys: kid -> base64 public key; signatures are skipped if None

    Returns:
        {"ok", "entries", "head", "problems"}
    """
    problems: List[str] = []
    prev = None
    for entry in sorted(entries, key=lambda e: e["seq"]):
        problems.extend(verify_entry(entry, prev, public_keys))
        prev = entry.get("entry_hash")
    return {
        "ok": not problems,
        "entries": len(entries),
        "head": prev,
        "problems": problems,
    }
