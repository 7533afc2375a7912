"""
Riskmate proof pack service.

HTTP surface for audit pack export and verification, the compliance ledger
and the report-run signing workflow.
"""

import logging
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from proofpack.assembler import ZIP_CONTENT_TYPE, content_disposition
from proofpack.canonicalization import CanonicalizationError
from proofpack.context import PackRequest, Requester, TimeRange, TimeRangeError, format_ts
from proofpack.documents import GenerationError
from proofpack.ledger import verify_entry
from proofpack.manifest import ManifestError, PackManifest, check_summary_counts
from proofpack.pipeline import Deadline, PackResult, PackSources, PackTimeoutError, build_pack
from proofpack.rows import parse_timestamp
from proofpack.runs import (
    RunStateError,
    RunStatus,
    build_report_payload,
    check_accepts_artifacts,
    check_accepts_signatures,
    check_finalizable,
    check_transition,
    missing_roles,
    report_data_hash,
    signature_hash,
    verify_signatures,
)
from proofpack.verifier import VerificationResult, compare_regenerated, request_from_manifest

from . import config, db
from .errors import ERROR_CODES, ApiError, error_body
from .keys import KeyProvider, get_key_provider
from .ledger import record_event
from .logging_config import audit_log, configure_logging, get_request_id, set_request_id
from .models import (
    AttachArtifactRequest,
    CreateRunRequest,
    ManifestVerifyRequest,
    PackExportRequest,
    SignatureRequest,
)
from .rate_limit import RateLimiter, RateLimitResult
from .security import (
    EXPORT_ROLES,
    RUN_WRITE_ROLES,
    Identity,
    extract_identity,
    require_role,
    sanitize_for_logging,
    validate_pack_id,
    validate_run_id,
)
from .util import generate_id, utc_now, utc_rfc3339

logger = logging.getLogger("riskmate.api")

app = FastAPI(title="Riskmate Proof Pack Service")

PACK_COMPLETED_EVENT = "export.audit_pack.completed"

export_limiter = RateLimiter(config.EXPORT_RPM)
verify_limiter = RateLimiter(config.VERIFY_RPM)
KEYS: Optional[KeyProvider] = None


@app.on_event("startup")
def _startup():
    global KEYS
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)
    db.init_db()
    KEYS = get_key_provider(config.SIGNING_KEY_PATH, config.TRUST_STORE_PATH)


# ============================================================
# Request context and error envelope
# ============================================================

def _error_response(
    request: Request,
    code: str,
    message: str,
    status: Optional[int] = None,
    error_id: Optional[str] = None,
    retry_after_seconds: Optional[int] = None,
    internal_message: Optional[str] = None,
    exc_info: bool = False,
    headers: Optional[Dict[str, str]] = None,
    **extra: Any
) -> JSONResponse:
    error_id = error_id or str(uuid.uuid4())
    status = status or ERROR_CODES.get(code, ERROR_CODES["INTERNAL_ERROR"]).status
    body = error_body(
        code, message, get_request_id(),
        error_id=error_id,
        status=status,
        retry_after_seconds=retry_after_seconds,
        internal_message=internal_message,
        **extra
    )
    audit_log.api_error(code, status, error_id, request.url.path, detail=internal_message or message, exc_info=exc_info)
    response_headers = dict(headers or {})
    response_headers.update({"X-Error-ID": error_id, "X-Request-ID": get_request_id()})
    if retry_after_seconds is not None:
        response_headers["Retry-After"] = str(retry_after_seconds)
    return JSONResponse(status_code=status, content=body, headers=response_headers)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id") or None)
    traceparent = request.headers.get("traceparent")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception("Unhandled error on %s", request.url.path)
        response = _error_response(
            request, "INTERNAL_ERROR", "An unexpected error occurred",
            internal_message=f"{type(e).__name__}: {e}"
        )
    response.headers["X-Request-ID"] = request_id
    if traceparent:
        response.headers["traceparent"] = traceparent
        response.headers["X-Traceparent"] = traceparent
    return response


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError):
    return _error_response(
        request, exc.code, exc.message,
        error_id=exc.error_id,
        retry_after_seconds=exc.retry_after_seconds,
        internal_message=exc.internal_message,
        exc_info=exc.status_code >= 500,
        headers=exc.headers,
        **exc.extra
    )


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return _error_response(request, "VALIDATION_ERROR", "Request validation failed", errors=errors)


_HTTP_STATUS_CODES = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 429: "RATE_LIMIT_EXCEEDED"}


@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _HTTP_STATUS_CODES.get(exc.status_code)
    if code is None:
        code = "INTERNAL_ERROR" if exc.status_code >= 500 else "VALIDATION_ERROR"
    return _error_response(request, code, str(exc.detail), status=exc.status_code)


# ============================================================
# Helpers
# ============================================================

def current_identity(request: Request) -> Identity:
    return extract_identity(request.headers)


def _check_rate(limiter: RateLimiter, identity: Identity, endpoint: str) -> RateLimitResult:
    result = limiter.check(identity.organization_id)
    if not result.allowed:
        audit_log.rate_limit_exceeded(identity.organization_id, endpoint)
        raise ApiError(
            "RATE_LIMIT_EXCEEDED",
            "Too many requests; retry later",
            retry_after_seconds=result.retry_after_seconds,
            headers=result.headers()
        )
    return result


def _organization_name(identity: Identity) -> str:
    org = db.get_organization(identity.organization_id)
    if org is None:
        raise ApiError("NOT_FOUND", "Organization not found")
    return org["name"]


def _fetch_sources(request: PackRequest) -> PackSources:
    """Rows for the recorded window and filters; the window is [start, end)."""
    start, end = format_ts(request.time_range.start), format_ts(request.time_range.end)
    f = request.filters
    org_id = request.organization_id
    return PackSources(
        controls=db.fetch_controls(org_id, start, end, assigned_to=f.assigned_to, job_type=f.job_type, job_id=f.job_id),
        attestations=db.fetch_attestations(org_id, start, end, job_type=f.job_type, job_id=f.job_id),
        ledger_events=db.fetch_ledger_events(org_id, start, end),
    )


def _generate(request: PackRequest, pack_id: str, generated_at, deadline: Deadline) -> PackResult:
    """Fetch and build a pack, mapping failures to API errors. Nothing is persisted."""
    org_id = request.organization_id
    try:
        sources = _fetch_sources(request)
        deadline.check("query")
        return build_pack(
            request, sources, pack_id, generated_at,
            config=config.render_config(),
            max_workers=config.PACK_MAX_WORKERS,
            deadline=deadline
        )
    except sqlite3.Error as e:
        code, message, cause = "QUERY_ERROR", "Failed to load records for the pack", e
    except PackTimeoutError as e:
        code, message, cause = "EXPORT_TIMEOUT", "Pack generation timed out", e
    except (GenerationError, ManifestError, CanonicalizationError) as e:
        code, message, cause = "EXPORT_ERROR", "Pack generation failed", e
    error_id = str(uuid.uuid4())
    audit_log.pack_failed(org_id, code, str(cause), error_id)
    raise ApiError(code, message, internal_message=f"{type(cause).__name__}: {cause}", error_id=error_id) from cause


def _ledger_keys() -> Dict[str, str]:
    return KEYS.ledger_keys()


def _check_ledger_entry(entry: Dict[str, Any]) -> List[str]:
    prev = db.get_previous_entry_hash(entry["organization_id"], entry["seq"])
    return verify_entry(entry, prev, _ledger_keys())


# ============================================================
# Audit packs
# ============================================================

@app.post("/api/audit/export/pack")
def export_pack(req: PackExportRequest, identity: Identity = Depends(current_identity)):
    require_role(identity, EXPORT_ROLES, "exporting audit packs")
    quota = _check_rate(export_limiter, identity, "export_pack")
    started = time.monotonic()
    deadline = Deadline(config.PACK_TIMEOUT_SECONDS)

    now = utc_now()
    try:
        time_range = TimeRange.resolve(req.time_range, now, req.start_date, req.end_date)
    except TimeRangeError as e:
        raise ApiError("VALIDATION_ERROR", str(e), field="time_range")

    request = PackRequest(
        organization_id=identity.organization_id,
        organization_name=_organization_name(identity),
        requested_by=Requester(user_id=identity.user_id, name=identity.name, role=identity.role),
        time_range=time_range,
        filters=req.filters,
    )
    audit_log.pack_requested(identity.organization_id, identity.user_id, time_range.label)

    pack_id = generate_id(8)
    result = _generate(request, pack_id, now, deadline)

    manifest_hash = result.manifest_hash
    try:
        record_event(
            KEYS,
            organization_id=identity.organization_id,
            event_name=PACK_COMPLETED_EVENT,
            target_type="audit_pack",
            target_id=pack_id,
            actor_id=identity.user_id,
            metadata={
                "manifest": result.manifest.to_dict(),
                "manifest_hash": manifest_hash,
                "byte_length": len(result.archive),
            },
        )
    except sqlite3.Error as e:
        code = "LEDGER_BUSY" if db.is_locked_error(e) else "QUERY_ERROR"
        error_id = str(uuid.uuid4())
        audit_log.pack_failed(identity.organization_id, code, str(e), error_id)
        raise ApiError(code, "Failed to record the pack", internal_message=str(e), error_id=error_id)

    audit_log.pack_completed(
        pack_id,
        identity.organization_id,
        manifest_hash,
        result.manifest.summary,
        len(result.archive),
        int((time.monotonic() - started) * 1000),
    )
    return Response(
        content=result.archive,
        media_type=ZIP_CONTENT_TYPE,
        headers={
            "Content-Disposition": content_disposition(pack_id),
            "X-Pack-ID": pack_id,
            "X-Manifest-SHA256": manifest_hash,
            **quota.headers(),
        },
    )


@app.get("/api/audit/packs/{pack_id}/verify")
def verify_pack(pack_id: str, identity: Identity = Depends(current_identity)):
    """
    Regenerate a pack from its recorded window and filters and compare
    hashes with the ledger. Read-only.
    """
    validate_pack_id(pack_id)
    _check_rate(verify_limiter, identity, "verify_pack")

    entry = db.get_ledger_entry(identity.organization_id, PACK_COMPLETED_EVENT, pack_id)
    if entry is None:
        raise ApiError("NOT_FOUND", "Pack not found")

    metadata = entry["metadata"]
    stored_hash = metadata.get("manifest_hash")
    try:
        stored_manifest = PackManifest.from_dict(metadata["manifest"])
        request = request_from_manifest(stored_manifest)
        generated_at = parse_timestamp(stored_manifest.generated_at)
    except (KeyError, TypeError, ManifestError, TimeRangeError, ValidationError) as e:
        result = VerificationResult.failed("STORED_MANIFEST_MALFORMED", stored_hash=stored_hash, error=str(e))
    else:
        if generated_at is None:
            result = VerificationResult.failed("STORED_MANIFEST_MALFORMED", stored_hash=stored_hash,
                                               error="generated_at is not a timestamp")
        else:
            regenerated = _generate(request, stored_manifest.pack_id, generated_at,
                                    Deadline(config.PACK_TIMEOUT_SECONDS))
            result = compare_regenerated(stored_manifest, stored_hash, regenerated)

    ledger_problems = _check_ledger_entry(entry)
    body = result.to_dict()
    body["pack_id"] = pack_id
    body["ledger"] = {
        "seq": entry["seq"],
        "entry_hash": entry["entry_hash"],
        "ok": not ledger_problems,
        "problems": ledger_problems,
    }
    if ledger_problems:
        body["ok"] = False
        body.setdefault("reason", "LEDGER_ENTRY_INVALID")

    audit_log.verification_result("audit_pack", pack_id, body["ok"], body.get("reason"))
    return body


@app.post("/api/verify/manifest")
def verify_manifest(req: ManifestVerifyRequest, identity: Identity = Depends(current_identity)):
    """Check a manifest someone holds against the hash recorded in the ledger."""
    _check_rate(verify_limiter, identity, "verify_manifest")
    try:
        manifest = PackManifest.from_dict(req.manifest)
    except ManifestError as e:
        raise ApiError("VALIDATION_ERROR", "manifest is malformed", internal_message=str(e), field="manifest")
    validate_pack_id(manifest.pack_id)

    entry = db.get_ledger_entry(identity.organization_id, PACK_COMPLETED_EVENT, manifest.pack_id)
    if entry is None:
        raise ApiError("NOT_FOUND", "Pack not found")

    stored_hash = entry["metadata"].get("manifest_hash")
    recomputed = manifest.manifest_hash()
    problems = check_summary_counts(manifest)
    if req.manifest_hash is not None and req.manifest_hash != recomputed:
        problems.append("supplied manifest_hash does not match the manifest")

    reason = None
    if recomputed != stored_hash:
        reason = "MANIFEST_HASH_MISMATCH"
    elif problems:
        reason = "MANIFEST_INCONSISTENT"
    result = VerificationResult(
        ok=reason is None,
        recomputed_hash=recomputed,
        stored_hash=stored_hash,
        reason=reason,
        details={"pack_id": manifest.pack_id, "problems": problems},
    )
    audit_log.verification_result("manifest", manifest.pack_id, result.ok, reason)
    return result.to_dict()


@app.get("/api/audit/ledger")
def audit_ledger(identity: Identity = Depends(current_identity)):
    return db.export_ledger(identity.organization_id)


# ============================================================
# Report runs
# ============================================================

def _load_run(identity: Identity, run_id: str) -> Dict[str, Any]:
    validate_run_id(run_id)
    run = db.get_run(identity.organization_id, run_id)
    if run is None:
        raise ApiError("NOT_FOUND", "Report run not found")
    return run


def _rejected(run_id: str, e: RunStateError) -> ApiError:
    audit_log.write_rejected(run_id, e.code, str(e))
    return ApiError(e.code, str(e), run_status=e.status.value)


def _record_run_event(identity: Identity, run_id: str, event_name: str, metadata: Dict[str, Any]) -> None:
    record_event(
        KEYS,
        organization_id=identity.organization_id,
        event_name=event_name,
        target_type="report_run",
        target_id=run_id,
        actor_id=identity.user_id,
        metadata=metadata,
    )


def _transition(identity: Identity, run: Dict[str, Any], target: RunStatus) -> Dict[str, Any]:
    """Compare-and-set a run status change; a lost race is re-checked against the fresh status."""
    run_id = run["id"]
    now = utc_rfc3339(utc_now())
    finalized_by = identity.user_id if target is RunStatus.FINAL else None
    if not db.update_run_status(run_id, run["status"], target.value, now, finalized_by=finalized_by):
        fresh = db.get_run(identity.organization_id, run_id)
        try:
            check_transition(run_id, fresh["status"], target)
        except RunStateError as e:
            raise _rejected(run_id, e)
        raise ApiError("INVALID_STATE_TRANSITION", "Run changed concurrently; retry")
    audit_log.run_transition(run_id, run["status"], target.value, identity.user_id)
    return db.get_run(identity.organization_id, run_id)


@app.post("/api/reports/runs", status_code=201)
def create_run(req: CreateRunRequest, identity: Identity = Depends(current_identity)):
    require_role(identity, RUN_WRITE_ROLES, "creating report runs")
    job = db.get_job(identity.organization_id, req.job_id)
    if job is None:
        raise ApiError("NOT_FOUND", "Job not found")

    payload = build_report_payload(job, db.fetch_job_controls(job["id"]), db.fetch_job_attestations(job["id"]))
    now = utc_rfc3339(utc_now())
    run = {
        "id": generate_id(16),
        "organization_id": identity.organization_id,
        "job_id": job["id"],
        "status": RunStatus.DRAFT.value,
        "data_hash": report_data_hash(payload),
        "created_by": identity.user_id,
        "created_at": now,
        "updated_at": now,
    }
    db.insert_run(run)
    _record_run_event(identity, run["id"], "report_run.created", {"job_id": job["id"], "data_hash": run["data_hash"]})
    return db.get_run(identity.organization_id, run["id"])


@app.post("/api/reports/runs/{run_id}/artifacts", status_code=201)
def attach_artifact(run_id: str, req: AttachArtifactRequest, identity: Identity = Depends(current_identity)):
    require_role(identity, RUN_WRITE_ROLES, "attaching report artifacts")
    run = _load_run(identity, run_id)
    try:
        check_accepts_artifacts(run_id, run["status"])
    except RunStateError as e:
        raise _rejected(run_id, e)

    artifact = {
        "id": generate_id(16),
        "filename": req.filename,
        "type": req.type,
        "hash_sha256": req.sha256,
        "byte_length": req.byte_length,
        "created_at": utc_rfc3339(utc_now()),
    }
    allowed = [RunStatus.DRAFT.value, RunStatus.READY_FOR_SIGNATURES.value]
    if not db.insert_run_artifact(run_id, artifact, allowed):
        fresh = db.get_run(identity.organization_id, run_id)
        try:
            check_accepts_artifacts(run_id, fresh["status"])
        except RunStateError as e:
            raise _rejected(run_id, e)
        raise ApiError("INVALID_STATE_TRANSITION", "Run changed concurrently; retry")
    return artifact


@app.post("/api/reports/runs/{run_id}/ready")
def mark_ready(run_id: str, identity: Identity = Depends(current_identity)):
    require_role(identity, RUN_WRITE_ROLES, "changing report runs")
    run = _load_run(identity, run_id)
    try:
        check_transition(run_id, run["status"], RunStatus.READY_FOR_SIGNATURES)
    except RunStateError as e:
        raise _rejected(run_id, e)
    updated = _transition(identity, run, RunStatus.READY_FOR_SIGNATURES)
    _record_run_event(identity, run_id, "report_run.ready", {"data_hash": run["data_hash"]})
    return updated


@app.post("/api/reports/runs/{run_id}/signatures", status_code=201)
def add_signature(run_id: str, req: SignatureRequest, identity: Identity = Depends(current_identity)):
    require_role(identity, RUN_WRITE_ROLES, "signing report runs")
    run = _load_run(identity, run_id)
    try:
        check_accepts_signatures(run_id, run["status"])
    except RunStateError as e:
        raise _rejected(run_id, e)

    logger.debug("signature request for run %s: %s", run_id, sanitize_for_logging(req.model_dump()))
    signature = {
        "id": generate_id(16),
        "signature_role": req.signature_role,
        "signer_name": req.signer_name,
        "signer_title": req.signer_title,
        "signature_svg": req.signature_svg,
        "signature_hash": signature_hash(req.signature_svg, req.signer_name, req.signer_title, req.signature_role),
        "signed_by": identity.user_id,
        "signed_at": utc_rfc3339(utc_now()),
    }
    if not db.insert_run_signature(run_id, signature, RunStatus.READY_FOR_SIGNATURES.value):
        fresh = db.get_run(identity.organization_id, run_id)
        try:
            check_accepts_signatures(run_id, fresh["status"])
        except RunStateError as e:
            raise _rejected(run_id, e)
        raise ApiError("INVALID_STATE_TRANSITION", "Run changed concurrently; retry")

    _record_run_event(identity, run_id, "report_run.signed", {
        "signature_id": signature["id"],
        "signature_role": signature["signature_role"],
        "signature_hash": signature["signature_hash"],
    })
    return {k: v for k, v in signature.items() if k != "signature_svg"}


@app.post("/api/reports/runs/{run_id}/finalize")
def finalize_run(run_id: str, identity: Identity = Depends(current_identity)):
    require_role(identity, RUN_WRITE_ROLES, "finalizing report runs")
    run = _load_run(identity, run_id)
    signatures = db.list_run_signatures(run_id)
    try:
        check_finalizable(run_id, run["status"], signatures)
    except RunStateError as e:
        raise _rejected(run_id, e)
    updated = _transition(identity, run, RunStatus.FINAL)
    _record_run_event(identity, run_id, "report_run.finalized", {
        "data_hash": run["data_hash"],
        "signature_hashes": sorted(s["signature_hash"] for s in signatures if not s.get("revoked_at")),
    })
    return updated


@app.get("/api/reports/runs/{run_id}/verify")
def verify_run(run_id: str, identity: Identity = Depends(current_identity)):
    """Recompute the job report hash and every signature hash. Read-only."""
    run = _load_run(identity, run_id)
    _check_rate(verify_limiter, identity, "verify_run")

    job = db.get_job(identity.organization_id, run["job_id"])
    if job is None:
        result = VerificationResult.failed("JOB_MISSING", stored_hash=run["data_hash"])
    else:
        payload = build_report_payload(job, db.fetch_job_controls(job["id"]), db.fetch_job_attestations(job["id"]))
        recomputed = report_data_hash(payload)
        signatures = db.list_run_signatures(run_id)
        checks = verify_signatures(signatures)
        missing = missing_roles(signatures)

        reason = None
        if recomputed != run["data_hash"]:
            reason = "DATA_HASH_MISMATCH"
        elif not all(c["valid"] for c in checks):
            reason = "SIGNATURE_HASH_MISMATCH"
        elif run["status"] == RunStatus.FINAL.value and missing:
            reason = "MISSING_REQUIRED_SIGNATURES"
        result = VerificationResult(
            ok=reason is None,
            recomputed_hash=recomputed,
            stored_hash=run["data_hash"],
            reason=reason,
            details={"signatures": checks, "missing_roles": missing},
        )

    body = result.to_dict()
    body["run_id"] = run_id
    body["status"] = run["status"]
    audit_log.verification_result("report_run", run_id, result.ok, result.reason)
    return body


# ============================================================
# Health
# ============================================================

@app.get("/health")
def health():
    return {
        "status": "ok",
        "env": config.ENV,
        "db": db.get_db_stats(),
        "config": config.validate_config(),
    }
