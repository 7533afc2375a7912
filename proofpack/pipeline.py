"""
Pack generation pipeline.

    rows -> generators (parallel) -> join -> evidence index
         -> manifest -> archive

A pack is all-or-nothing: any generator failure or a missed deadline
discards everything produced so far. Nothing here touches the ledger; the
caller records the pack only after build_pack() returns.
"""

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from .assembler import assemble
from .context import GenerationContext, PackRequest, RenderConfig
from .csv_export import generate_attestations_csv, generate_controls_csv
from .documents import ATTESTATIONS, CONTROLS, LEDGER_EVENTS, GeneratedDocument, GenerationError
from .manifest import ArtifactDescriptor, PackManifest, build_manifest
from .pdf_export import generate_evidence_index_pdf, generate_ledger_export_pdf

logger = logging.getLogger(__name__)

GENERATORS: Dict[str, Callable[[Sequence[Any], GenerationContext], GeneratedDocument]] = {
    CONTROLS: generate_controls_csv,
    ATTESTATIONS: generate_attestations_csv,
    LEDGER_EVENTS: generate_ledger_export_pdf,
}


class PackTimeoutError(Exception):
    """Raised when pack generation exceeds its deadline."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"pack generation exceeded {timeout}s during {stage}")


class Deadline:
    """Wall-clock budget for one pack, started when the request begins."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._start = time.monotonic()

    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return max(0.0, self.seconds - (time.monotonic() - self._start))

    def check(self, stage: str) -> None:
        if self.seconds is not None and self.remaining() <= 0:
            raise PackTimeoutError(stage, self.seconds)


@dataclass
class PackSources:
    """Rows fetched from the query layer, one list per document kind."""
    controls: Sequence[Any] = field(default_factory=list)
    attestations: Sequence[Any] = field(default_factory=list)
    ledger_events: Sequence[Any] = field(default_factory=list)

    def rows_for(self, kind: str) -> Sequence[Any]:
        return getattr(self, kind)


@dataclass(frozen=True)
class PackResult:
    pack_id: str
    manifest: PackManifest
    artifacts: List[ArtifactDescriptor]
    archive: bytes

    @property
    def manifest_bytes(self) -> bytes:
        return self.manifest.to_bytes()

    @property
    def manifest_hash(self) -> str:
        return self.manifest.manifest_hash()


def _run_generator(kind: str, rows: Sequence[Any], ctx: GenerationContext) -> GeneratedDocument:
    try:
        return GENERATORS[kind](rows, ctx)
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError(kind, f"{type(e).__name__}: {e}", e) from e


def generate_documents(
    sources: PackSources,
    ctx: GenerationContext,
    max_workers: int = 3,
    deadline: Optional[Deadline] = None,
) -> List[GeneratedDocument]:
    """
    Run every payload generator and wait for all of them.

    Returns:
        Documents in generator registry order

    Raises:
        GenerationError: the first generator failure
        PackTimeoutError: if the deadline passes before all finish
    """
    deadline = deadline or Deadline(None)
    pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="proofpack")
    try:
        futures = {
            kind: pool.submit(_run_generator, kind, sources.rows_for(kind), ctx)
            for kind in GENERATORS
        }
        done, not_done = wait(futures.values(), timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)
        for f in done:
            if f.exception() is not None:
                raise f.exception()
        if not_done:
            raise PackTimeoutError("document generation", deadline.seconds)
        return [futures[kind].result() for kind in GENERATORS]
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


def build_pack(
    request: PackRequest,
    sources: PackSources,
    pack_id: str,
    generated_at: datetime,
    config: Optional[RenderConfig] = None,
    max_workers: int = 3,
    deadline: Optional[Deadline] = None,
) -> PackResult:
    """
    Produce a complete pack archive.

    Args:
        request: Who asked, for which organization, window and filters
        sources: Rows already fetched for the resolved window
        pack_id: Identifier embedded in every entry name
        generated_at: Generation instant; also the as_of for time rules
        config: Rendering options
        max_workers: Generator fan-out bound
        deadline: Budget shared with the caller's fetch step

    Returns:
        PackResult holding the manifest, hashed artifacts and ZIP bytes
    """
    deadline = deadline or Deadline(None)
    generated_at = generated_at.replace(microsecond=0)
    ctx = GenerationContext.for_request(request, as_of=generated_at, config=config)

    documents = generate_documents(sources, ctx, max_workers=max_workers, deadline=deadline)
    deadline.check("document generation")

    try:
        index = generate_evidence_index_pdf(documents, ctx)
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError("evidence_index", f"{type(e).__name__}: {e}", e) from e
    deadline.check("evidence index")

    artifacts = [ArtifactDescriptor.from_document(d, pack_id).hashed() for d in documents + [index]]
    manifest = build_manifest(artifacts, request, pack_id, generated_at)
    archive = assemble(manifest, artifacts)
    deadline.check("assembly")

    logger.debug("Assembled pack %s (%d artifacts, %d bytes)", pack_id, len(artifacts), len(archive))
    return PackResult(pack_id=pack_id, manifest=manifest, artifacts=artifacts, archive=archive)
