"""
Pack manifest construction.

The manifest enumerates every payload artifact in a pack with its type,
record count and SHA-256 over the exact bytes placed in the archive. It is
bundled as manifest_<pack_id>.json but is never listed in its own contents
and never hashes itself; the manifest hash is computed by the caller over
the serialized bytes and stored outside the manifest (in the ledger).
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .context import PackRequest, format_ts
from .documents import ATTESTATIONS, CONTROLS, EVIDENCE_INDEX, LEDGER_EVENTS, SUMMARY_KINDS, GeneratedDocument
from .hashing import is_sha256_hex, sha256_hex

FILENAME_PATTERNS = {
    CONTROLS: "controls_{pack_id}.csv",
    ATTESTATIONS: "attestations_{pack_id}.csv",
    LEDGER_EVENTS: "ledger_export_{pack_id}.pdf",
    EVIDENCE_INDEX: "evidence_index_{pack_id}.pdf",
}
MANIFEST_PATTERN = "manifest_{pack_id}.json"

CONTENT_TYPES = ("pdf", "csv", "json")


class ManifestError(ValueError):
    """Raised when artifacts cannot be described consistently."""


def artifact_filename(kind: str, pack_id: str) -> str:
    try:
        return FILENAME_PATTERNS[kind].format(pack_id=pack_id)
    except KeyError:
        raise ManifestError(f"unknown artifact kind: {kind}")


def manifest_filename(pack_id: str) -> str:
    return MANIFEST_PATTERN.format(pack_id=pack_id)


def kind_for_filename(filename: str, pack_id: str) -> Optional[str]:
    for kind in FILENAME_PATTERNS:
        if artifact_filename(kind, pack_id) == filename:
            return kind
    return None


@dataclass(frozen=True)
class ArtifactDescriptor:
    """One bundled document. Immutable once its hash is computed."""
    filename: str
    type: str
    kind: str
    record_count: int
    data: bytes = field(repr=False)
    sha256_hash: Optional[str] = None

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @classmethod
    def from_document(cls, document: GeneratedDocument, pack_id: str) -> 'ArtifactDescriptor':
        return cls(
            filename=artifact_filename(document.kind, pack_id),
            type=document.type,
            kind=document.kind,
            record_count=document.record_count,
            data=document.data,
        )

    def hashed(self) -> 'ArtifactDescriptor':
        """
        Return a descriptor whose hash covers exactly self.data.

        Raises:
            ManifestError: if a previously recorded hash no longer matches
                the bytes (the artifact changed after it was hashed)
        """
        digest = sha256_hex(self.data)
        if self.sha256_hash is not None and self.sha256_hash != digest:
            raise ManifestError(f"{self.filename}: recorded hash does not match bytes")
        return self if self.sha256_hash == digest else replace(self, sha256_hash=digest)

    def content_entry(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "type": self.type,
            "record_count": self.record_count,
            "hash_sha256": self.sha256_hash,
        }


@dataclass(frozen=True)
class PackManifest:
    pack_id: str
    generated_at: str
    generated_by: str
    generated_by_role: str
    generated_by_user_id: str
    organization: str
    organization_id: str
    time_range: Dict[str, str]
    filters: Dict[str, Any]
    contents: List[Dict[str, Any]]
    summary: Dict[str, int]

    @property
    def filename(self) -> str:
        return manifest_filename(self.pack_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pack_id": self.pack_id,
            "generated_at": self.generated_at,
            "generated_by": self.generated_by,
            "generated_by_role": self.generated_by_role,
            "generated_by_user_id": self.generated_by_user_id,
            "organization": self.organization,
            "organization_id": self.organization_id,
            "time_range": dict(self.time_range),
            "filters": dict(self.filters),
            "contents": [dict(c) for c in self.contents],
            "summary": dict(self.summary),
        }

    def to_bytes(self) -> bytes:
        """Exact bytes written to the archive."""
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)
        return (text + "\n").encode("utf-8")

    def manifest_hash(self) -> str:
        return sha256_hex(self.to_bytes())

    def content_for(self, filename: str) -> Optional[Dict[str, Any]]:
        for entry in self.contents:
            if entry.get("filename") == filename:
                return entry
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PackManifest':
        try:
            return cls(
                pack_id=data["pack_id"],
                generated_at=data["generated_at"],
                generated_by=data["generated_by"],
                generated_by_role=data["generated_by_role"],
                generated_by_user_id=data["generated_by_user_id"],
                organization=data["organization"],
                organization_id=data["organization_id"],
                time_range=dict(data["time_range"]),
                filters=dict(data.get("filters") or {}),
                contents=[dict(c) for c in data["contents"]],
                summary=dict(data["summary"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestError(f"malformed manifest: {e}") from e


def build_manifest(
    artifacts: Sequence[ArtifactDescriptor],
    request: PackRequest,
    pack_id: str,
    generated_at: datetime,
) -> PackManifest:
    """
    Build the manifest for a set of finished artifacts.

    Args:
        artifacts: Payload artifacts, every one fully rendered
        request: The originating pack request
        pack_id: Shared pack identifier embedded in every filename
        generated_at: Generation instant (recorded, never rendered into artifacts)

    Returns:
        PackManifest with contents in archive order and summary totals taken
        from each generator's own record_count

    Raises:
        ManifestError: duplicate or foreign filenames, bad types, stale hashes
    """
    hashed = [a.hashed() for a in artifacts]

    seen = set()
    for a in hashed:
        if a.filename in seen:
            raise ManifestError(f"duplicate artifact filename: {a.filename}")
        seen.add(a.filename)
        if a.filename != artifact_filename(a.kind, pack_id):
            raise ManifestError(f"{a.filename} does not belong to pack {pack_id}")
        if a.type not in CONTENT_TYPES:
            raise ManifestError(f"{a.filename}: unsupported type {a.type}")
        if a.record_count < 0:
            raise ManifestError(f"{a.filename}: negative record count")
        if not is_sha256_hex(a.sha256_hash):
            raise ManifestError(f"{a.filename}: malformed hash")

    summary = {}
    for a in hashed:
        if a.kind in SUMMARY_KINDS:
            summary[f"total_{a.kind}"] = a.record_count

    requester = request.requested_by
    return PackManifest(
        pack_id=pack_id,
        generated_at=format_ts(generated_at),
        generated_by=requester.name,
        generated_by_role=requester.role,
        generated_by_user_id=requester.user_id,
        organization=request.organization_name,
        organization_id=request.organization_id,
        time_range=request.time_range.to_dict(),
        filters=request.filters.to_dict(),
        contents=[a.content_entry() for a in sorted(hashed, key=lambda a: a.filename)],
        summary=summary,
    )


def check_summary_counts(manifest: PackManifest) -> List[str]:
    """
    Compare summary totals against the contents entries, exactly.

    Returns:
        List of problems (empty when consistent)
    """
    problems = []
    by_kind = {}
    for entry in manifest.contents:
        kind = kind_for_filename(entry.get("filename", ""), manifest.pack_id)
        if kind is not None:
            by_kind[kind] = entry
    for kind in SUMMARY_KINDS:
        key = f"total_{kind}"
        entry = by_kind.get(kind)
        if entry is None and key not in manifest.summary:
            continue
        if entry is None:
            problems.append(f"{key} has no matching artifact")
        elif key not in manifest.summary:
            problems.append(f"{key} missing from summary")
        elif manifest.summary[key] != entry.get("record_count"):
            problems.append(f"{key}={manifest.summary[key]} but {entry['filename']} has {entry.get('record_count')} records")
    return problems
