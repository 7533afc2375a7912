"""
Compliance ledger backends.

Every ledger write goes to the local hash chain. The S3 backend additionally
mirrors each entry as an immutable object in a bucket with Object Lock.
Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from proofpack.hashing import chain_entry_hash
from proofpack.ledger import payload_bytes, payload_hash

from . import config
from .db import append_ledger_entry
from .keys import KeyProvider
from .util import utc_now, utc_rfc3339

logger = logging.getLogger("riskmate.ledger")


Prepare = Callable[[Optional[str]], Dict[str, Any]]


class LedgerBackend:
    def write_entry(self, org_id: str, prepare: Prepare) -> Dict[str, Any]:
        raise NotImplementedError


class SqliteHashChainLedger(LedgerBackend):
    def write_entry(self, org_id: str, prepare: Prepare) -> Dict[str, Any]:
        return append_ledger_entry(org_id, prepare)


class S3ObjectLockLedger(SqliteHashChainLedger):
    """Appends to the local chain, then mirrors the entry as a COMPLIANCE-locked S3 object."""

    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            import boto3
            self._client = boto3.client("s3")
        return self._client

    def object_key(self, entry: Dict[str, Any]) -> str:
        return f"{self.prefix}{entry['seq']:012d}-{entry['entry_hash']}.json"

    def write_entry(self, org_id: str, prepare: Prepare) -> Dict[str, Any]:
        entry = super().write_entry(org_id, prepare)
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._get_client().put_object(
            Bucket=self.bucket,
            Key=self.object_key(entry),
            Body=json.dumps(entry, sort_keys=True, ensure_ascii=False).encode("utf-8"),
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold
        )
        return entry


def get_ledger_backend() -> LedgerBackend:
    if config.LEDGER_BACKEND == "s3_object_lock":
        if not config.S3_BUCKET:
            raise ValueError("S3_BUCKET required for s3_object_lock ledger backend")
        return S3ObjectLockLedger(
            bucket=config.S3_BUCKET,
            prefix=config.S3_PREFIX,
            retention_days=config.S3_RETENTION_DAYS,
            legal_hold=config.S3_LEGAL_HOLD
        )
    return SqliteHashChainLedger()


def record_event(
    keys: KeyProvider,
    organization_id: str,
    event_name: str,
    target_type: str,
    target_id: str,
    actor_id: str,
    metadata: Optional[Dict[str, Any]] = None,
    backend: Optional[LedgerBackend] = None
) -> Dict[str, Any]:
    """
    Append a signed, hash-chained entry to the compliance ledger.

    Returns:
        The stored entry (seq, payload fields, payload_hash,
        prev_entry_hash, entry_hash, kid, sig_b64)
    """
    body = {
        "organization_id": organization_id,
        "event_name": event_name,
        "target_type": target_type,
        "target_id": target_id,
        "actor_id": actor_id,
        "metadata": metadata or {},
        "created_at": utc_rfc3339(utc_now()),
    }

    def prepare(prev_entry_hash: Optional[str]) -> Dict[str, Any]:
        p_hash = payload_hash(body)
        kid, sig_b64 = keys.sign_ledger_entry(payload_bytes(body))
        return {
            **body,
            "payload_hash": p_hash,
            "prev_entry_hash": prev_entry_hash,
            "entry_hash": chain_entry_hash(prev_entry_hash, p_hash),
            "kid": kid,
            "sig_b64": sig_b64,
        }

    entry = (backend or get_ledger_backend()).write_entry(organization_id, prepare)
    logger.info("ledger entry %s appended: %s %s", entry["seq"], event_name, target_id)
    return entry
