"""
Proof Pack Verification

Two ways to check a pack after the fact:

- verify_pack_archive(): offline, over a downloaded ZIP. Every bundled
  artifact is re-hashed and compared to its manifest entry.
- compare_regenerated(): online, after the service regenerates the pack
  from the recorded window and filters. The stored manifest hash is
  compared to the hash of the regenerated manifest.

Verification never modifies anything; running it twice gives the same
answer.
"""

import io
import json
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .context import PackFilters, PackRequest, Requester, TimeRange
from .hashing import is_sha256_hex, sha256_hex
from .manifest import ManifestError, PackManifest, check_summary_counts, manifest_filename
from .pipeline import PackResult


@dataclass
class VerificationResult:
    """Result of verifying a pack or report run."""
    ok: bool
    recomputed_hash: Optional[str]
    stored_hash: Optional[str]
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "ok": self.ok,
            "recomputed_hash": self.recomputed_hash,
            "stored_hash": self.stored_hash,
        }
        if self.reason:
            out["reason"] = self.reason
        out.update(self.details)
        return out

    @classmethod
    def failed(cls, reason: str, stored_hash: Optional[str] = None, **details) -> 'VerificationResult':
        return cls(ok=False, recomputed_hash=None, stored_hash=stored_hash, reason=reason, details=details)


def request_from_manifest(manifest: PackManifest) -> PackRequest:
    """Rebuild the pack request recorded in a manifest."""
    return PackRequest(
        organization_id=manifest.organization_id,
        organization_name=manifest.organization,
        requested_by=Requester(
            user_id=manifest.generated_by_user_id,
            name=manifest.generated_by,
            role=manifest.generated_by_role,
        ),
        time_range=TimeRange.from_dict(manifest.time_range),
        filters=PackFilters(**manifest.filters),
    )


def compare_regenerated(
    stored_manifest: PackManifest,
    stored_manifest_hash: str,
    regenerated: PackResult,
) -> VerificationResult:
    """
    Compare a regenerated pack against what was recorded at issuance.

    Checks, in order: the stored manifest still hashes to the recorded
    manifest hash; every artifact hash matches its regenerated counterpart;
    the regenerated manifest hash equals the recorded one.
    """
    recomputed = regenerated.manifest_hash
    mismatched: List[Dict[str, Any]] = []

    stored_bytes_hash = sha256_hex(stored_manifest.to_bytes())
    manifest_intact = stored_bytes_hash == stored_manifest_hash

    for entry in stored_manifest.contents:
        current = regenerated.manifest.content_for(entry["filename"])
        if current is None or current["hash_sha256"] != entry["hash_sha256"]:
            mismatched.append({
                "filename": entry["filename"],
                "stored_hash": entry["hash_sha256"],
                "recomputed_hash": current["hash_sha256"] if current else None,
                "stored_record_count": entry.get("record_count"),
                "recomputed_record_count": current.get("record_count") if current else None,
            })

    ok = manifest_intact and not mismatched and recomputed == stored_manifest_hash
    reason = None
    if not manifest_intact:
        reason = "STORED_MANIFEST_ALTERED"
    elif mismatched:
        reason = "ARTIFACT_HASH_MISMATCH"
    elif not ok:
        reason = "MANIFEST_HASH_MISMATCH"

    return VerificationResult(
        ok=ok,
        recomputed_hash=recomputed,
        stored_hash=stored_manifest_hash,
        reason=reason,
        details={"mismatched_artifacts": mismatched},
    )


def verify_pack_archive(data: bytes, expected_manifest_hash: Optional[str] = None) -> VerificationResult:
    """
    Verify a downloaded pack archive without contacting the service.

    Args:
        data: ZIP bytes as delivered
        expected_manifest_hash: Manifest hash from the ledger or the
            X-Manifest-SHA256 response header, if known

    Returns:
        VerificationResult; recomputed_hash is the hash of the bundled
        manifest bytes
    """
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as z:
            files = {name: z.read(name) for name in z.namelist()}
    except (zipfile.BadZipFile, OSError) as e:
        return VerificationResult.failed("NOT_A_ZIP", error=str(e))

    manifests = [n for n in files if n.startswith("manifest_") and n.endswith(".json")]
    if len(manifests) != 1:
        return VerificationResult.failed("MANIFEST_MISSING", stored_hash=expected_manifest_hash, found=sorted(manifests))

    raw = files[manifests[0]]
    recomputed = sha256_hex(raw)
    try:
        manifest = PackManifest.from_dict(json.loads(raw.decode("utf-8")))
    except (ValueError, ManifestError) as e:
        return VerificationResult.failed("MANIFEST_MALFORMED", stored_hash=expected_manifest_hash, error=str(e))

    problems: List[str] = []
    if manifests[0] != manifest_filename(manifest.pack_id):
        problems.append(f"{manifests[0]} does not match pack_id {manifest.pack_id}")

    listed = set()
    for entry in manifest.contents:
        name = entry.get("filename")
        listed.add(name)
        if manifest.pack_id not in (name or ""):
            problems.append(f"{name} does not embed pack_id")
        if not is_sha256_hex(entry.get("hash_sha256")):
            problems.append(f"{name} has a malformed hash")
            continue
        if name not in files:
            problems.append(f"{name} is listed but missing from the archive")
            continue
        if sha256_hex(files[name]) != entry["hash_sha256"]:
            problems.append(f"{name} hash mismatch")

    for name in files:
        if name not in listed and name != manifests[0]:
            problems.append(f"{name} is not listed in the manifest")

    problems.extend(check_summary_counts(manifest))

    if expected_manifest_hash is not None and expected_manifest_hash != recomputed:
        problems.append("manifest hash does not match the expected value")

    return VerificationResult(
        ok=not problems,
        recomputed_hash=recomputed,
        stored_hash=expected_manifest_hash,
        reason=problems[0] if problems else None,
        details={"pack_id": manifest.pack_id, "problems": problems},
    )
