"""
Pack assembly: manifest + artifacts into a single deterministic ZIP.

Entries are written in name order with a fixed timestamp and fixed
permissions, so identical inputs give an identical archive.
"""

import io
import zipfile
from typing import Dict, Sequence

from .manifest import ArtifactDescriptor, ManifestError, PackManifest

ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
ZIP_CONTENT_TYPE = "application/zip"


def _entry(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(filename=name, date_time=ZIP_TIMESTAMP)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = 3
    info.external_attr = 0o644 << 16
    return info


def assemble(manifest: PackManifest, artifacts: Sequence[ArtifactDescriptor]) -> bytes:
    """
    Bundle the manifest and its artifacts into ZIP bytes.

    Every artifact must be listed in the manifest with the hash of its
    bytes, and every manifest entry must have an artifact. The manifest
    entry is always written, even when all record counts are zero.

    Raises:
        ManifestError: on any disagreement between manifest and artifacts
    """
    files: Dict[str, bytes] = {}
    for a in artifacts:
        entry = manifest.content_for(a.filename)
        if entry is None:
            raise ManifestError(f"{a.filename} is not listed in the manifest")
        if entry["hash_sha256"] != a.hashed().sha256_hash:
            raise ManifestError(f"{a.filename} does not match its manifest hash")
        files[a.filename] = a.data

    for entry in manifest.contents:
        if entry["filename"] not in files:
            raise ManifestError(f"manifest lists {entry['filename']} but it was not supplied")

    if manifest.filename in files:
        raise ManifestError("the manifest cannot describe itself")
    files[manifest.filename] = manifest.to_bytes()

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as z:
        for name in sorted(files):
            z.writestr(_entry(name), files[name])
    return buf.getvalue()


def archive_filename(pack_id: str) -> str:
    return f"audit-pack-{pack_id}.zip"


def content_disposition(pack_id: str) -> str:
    return f'attachment; filename="{archive_filename(pack_id)}"'


def read_archive(data: bytes) -> Dict[str, bytes]:
    """Extract every entry of a pack archive into memory."""
    with zipfile.ZipFile(io.BytesIO(data)) as z:
        return {name: z.read(name) for name in z.namelist()}
