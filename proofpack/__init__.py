"""
Riskmate Proof Pack

Compliance proof-pack assembly and integrity verification.

A proof pack is a ZIP archive of compliance documents for one organization,
time range and filter set:

    controls_<pack_id>.csv
    attestations_<pack_id>.csv
    ledger_export_<pack_id>.pdf
    evidence_index_<pack_id>.pdf
    manifest_<pack_id>.json

The manifest lists every other entry with its record count and the SHA-256
of its exact bytes. Generators are pure: the same rows and context always
give the same bytes, so a pack can be regenerated later and compared.

Usage:
    from datetime import datetime, timezone
    from proofpack import (
        PackRequest, Requester, TimeRange, PackSources, build_pack,
        verify_pack_archive,
    )

    now = datetime.now(timezone.utc)
    request = PackRequest(
        organization_id="org_1",
        organization_name="Acme Roofing",
        requested_by=Requester(user_id="u_1", name="Dana Ortiz", role="admin"),
        time_range=TimeRange.resolve("30d", now),
    )
    result = build_pack(request, PackSources(controls=rows), pack_id="3f2a9c1d", generated_at=now)

    assert verify_pack_archive(result.archive).ok
"""

__version__ = "1.0.0"

from .canonicalization import (
    CanonicalizationError,
    CyclicStructureError,
    canonicalize,
    canonicalize_str,
)
from .hashing import (
    canonical_hash,
    chain_entry_hash,
    is_sha256_hex,
    sha256_hex,
    verify_hash,
)
from .sanitize import (
    ForbiddenCharactersError,
    assert_no_bad_chars,
    safe_text,
    sanitize_text,
)
from .rows import (
    AttestationRow,
    ControlRow,
    LedgerEventRow,
    RowValidationError,
    coerce_rows,
)
from .context import (
    GenerationContext,
    PackFilters,
    PackRequest,
    RenderConfig,
    Requester,
    TimeRange,
    TimeRangeError,
)
from .documents import GeneratedDocument, GenerationError
from .csv_export import generate_attestations_csv, generate_controls_csv
from .pdf_export import generate_evidence_index_pdf, generate_ledger_export_pdf
from .manifest import (
    ArtifactDescriptor,
    ManifestError,
    PackManifest,
    build_manifest,
    check_summary_counts,
)
from .assembler import assemble, content_disposition
from .pipeline import (
    Deadline,
    PackResult,
    PackSources,
    PackTimeoutError,
    build_pack,
)
from .verifier import (
    VerificationResult,
    compare_regenerated,
    request_from_manifest,
    verify_pack_archive,
)
from .runs import (
    InvalidTransitionError,
    RunImmutableError,
    RunStateError,
    RunStatus,
)

__all__ = [
    "__version__",
    # Canonicalization
    "CanonicalizationError",
    "CyclicStructureError",
    "canonicalize",
    "canonicalize_str",
    # Hashing
    "canonical_hash",
    "chain_entry_hash",
    "is_sha256_hex",
    "sha256_hex",
    "verify_hash",
    # Sanitization
    "ForbiddenCharactersError",
    "assert_no_bad_chars",
    "safe_text",
    "sanitize_text",
    # Rows
    "AttestationRow",
    "ControlRow",
    "LedgerEventRow",
    "RowValidationError",
    "coerce_rows",
    # Context
    "GenerationContext",
    "PackFilters",
    "PackRequest",
    "RenderConfig",
    "Requester",
    "TimeRange",
    "TimeRangeError",
    # Generators
    "GeneratedDocument",
    "GenerationError",
    "generate_attestations_csv",
    "generate_controls_csv",
    "generate_evidence_index_pdf",
    "generate_ledger_export_pdf",
    # Manifest and assembly
    "ArtifactDescriptor",
    "ManifestError",
    "PackManifest",
    "build_manifest",
    "check_summary_counts",
    "assemble",
    "content_disposition",
    # Pipeline
    "Deadline",
    "PackResult",
    "PackSources",
    "PackTimeoutError",
    "build_pack",
    # Verification
    "VerificationResult",
    "compare_regenerated",
    "request_from_manifest",
    "verify_pack_archive",
    # Report runs
    "InvalidTransitionError",
    "RunImmutableError",
    "RunStateError",
    "RunStatus",
]
