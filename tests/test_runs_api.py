
import pytest
from fastapi.testclient import TestClient

from app import db, main
from app.main import app
from proofpack.ledger import verify_ledger_chain

client = TestClient(app)

SVG = '<svg xmlns="http://www.w3.org/2000/svg"><path d="M0 0 L10 10"/></svg>'
ARTIFACT = {
    "filename": "job_report.pdf",
    "type": "pdf",
    "sha256": "ab" * 32,
    "byte_length": 2048,
}


def create_run(headers, job_id="job_1"):
    return client.post("/api/reports/runs", json={"job_id": job_id}, headers=headers)


def sign(run_id, headers, role, name="Dana Ortiz", title="Safety Lead"):
    return client.post(f"/api/reports/runs/{run_id}/signatures", json={
        "signature_role": role,
        "signer_name": name,
        "signer_title": title,
        "signature_svg": SVG,
    }, headers=headers)


def finalize(run_id, headers):
    return client.post(f"/api/reports/runs/{run_id}/finalize", headers=headers)


@pytest.fixture
def job(seed):
    seed.job("job_1")
    seed.control("c1", status="open", severity="high", due_days=4, job_id="job_1")
    seed.control("c2", status="completed", severity="low", due_days=-2, job_id="job_1")
    seed.attestation("a1", status="signed", job_id="job_1", attested_days_ago=1)
    return "job_1"


@pytest.fixture
def final_run(job, headers):
    run_id = create_run(headers).json()["id"]
    client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    for role in ("prepared_by", "reviewed_by", "approved_by"):
        assert sign(run_id, headers, role).status_code == 201
    assert finalize(run_id, headers).status_code == 200
    return run_id


# TV-60: Create run -> draft with a data hash over the job's records
def test_tv60_create_run(job, headers):
    r = create_run(headers)
    assert r.status_code == 201
    run = r.json()
    assert run["status"] == "draft"
    assert len(run["id"]) == 32
    assert len(run["data_hash"]) == 64
    assert run["job_id"] == "job_1"
    assert run["created_by"] == "u_dana"
    assert run["finalized_at"] is None


# TV-61: Unknown job -> 404; member role -> 403
def test_tv61_create_run_rejections(seed, headers, make_headers):
    assert create_run(headers, "job_missing").status_code == 404
    r = create_run(make_headers(role="member"))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"


# TV-62: Executives may export but not sign off runs
def test_tv62_executive_cannot_write_runs(job, make_headers):
    assert create_run(make_headers(role="executive")).status_code == 403


# TV-63: Artifacts attach in draft and ready
def test_tv63_attach_artifacts(job, headers):
    run_id = create_run(headers).json()["id"]
    r = client.post(f"/api/reports/runs/{run_id}/artifacts", json=ARTIFACT, headers=headers)
    assert r.status_code == 201
    assert r.json()["hash_sha256"] == ARTIFACT["sha256"]
    client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    r = client.post(f"/api/reports/runs/{run_id}/artifacts", json=dict(ARTIFACT, filename="photos.json", type="json"),
                    headers=headers)
    assert r.status_code == 201
    assert sorted(a["filename"] for a in db.list_run_artifacts(run_id)) == ["job_report.pdf", "photos.json"]


# TV-64: Malformed artifact hash -> 400
def test_tv64_artifact_validation(job, headers):
    run_id = create_run(headers).json()["id"]
    r = client.post(f"/api/reports/runs/{run_id}/artifacts", json=dict(ARTIFACT, sha256="XYZ"), headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


# TV-65: Signatures are refused while draft
def test_tv65_sign_in_draft(job, headers):
    run_id = create_run(headers).json()["id"]
    r = sign(run_id, headers, "prepared_by")
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "INVALID_STATE_TRANSITION"
    assert body["run_status"] == "draft"
    assert body["retry_strategy"] == "none"


# TV-66: draft cannot jump to final; ready cannot be repeated
def test_tv66_transition_order(job, headers):
    run_id = create_run(headers).json()["id"]
    assert finalize(run_id, headers).status_code == 409
    r = client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "ready_for_signatures"
    r = client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE_TRANSITION"


# TV-67: Finalize requires every required role
def test_tv67_finalize_missing_roles(job, headers):
    run_id = create_run(headers).json()["id"]
    client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    r = sign(run_id, headers, "prepared_by")
    assert r.status_code == 201
    assert "signature_svg" not in r.json()
    assert len(r.json()["signature_hash"]) == 64
    sign(run_id, headers, "other")
    r = finalize(run_id, headers)
    assert r.status_code == 409
    assert "reviewed_by" in r.json()["message"]
    assert "approved_by" in r.json()["message"]


# TV-68: Full lifecycle -> final
def test_tv68_finalize(final_run, headers):
    run = db.get_run("org_acme", final_run)
    assert run["status"] == "final"
    assert run["finalized_by"] == "u_dana"
    assert run["finalized_at"] is not None


# TV-69: Every write against a final run -> 409 RUN_IMMUTABLE
def test_tv69_final_is_immutable(final_run, headers):
    attempts = [
        client.post(f"/api/reports/runs/{final_run}/artifacts", json=ARTIFACT, headers=headers),
        sign(final_run, headers, "other"),
        client.post(f"/api/reports/runs/{final_run}/ready", headers=headers),
        finalize(final_run, headers),
    ]
    for r in attempts:
        assert r.status_code == 409
        assert r.json()["code"] == "RUN_IMMUTABLE"
        assert r.json()["run_status"] == "final"
    assert db.list_run_artifacts(final_run) == []
    assert len(db.list_run_signatures(final_run)) == 3


# TV-70: Run verification passes on unchanged data
def test_tv70_verify_run(final_run, headers):
    body = client.get(f"/api/reports/runs/{final_run}/verify", headers=headers).json()
    assert body["ok"] is True
    assert body["status"] == "final"
    assert body["run_id"] == final_run
    assert body["recomputed_hash"] == body["stored_hash"]
    assert body["missing_roles"] == []
    assert len(body["signatures"]) == 3
    assert all(s["valid"] for s in body["signatures"])


# TV-71: A job record changed after finalization -> DATA_HASH_MISMATCH
def test_tv71_verify_run_data_changed(final_run, headers):
    db.update_control_status("c1", "completed", "2026-01-01T00:00:00Z")
    body = client.get(f"/api/reports/runs/{final_run}/verify", headers=headers).json()
    assert body["ok"] is False
    assert body["reason"] == "DATA_HASH_MISMATCH"
    assert body["recomputed_hash"] != body["stored_hash"]


# TV-72: Draft runs verify without requiring signatures
def test_tv72_verify_draft(job, headers):
    run_id = create_run(headers).json()["id"]
    body = client.get(f"/api/reports/runs/{run_id}/verify", headers=headers).json()
    assert body["ok"] is True
    assert body["missing_roles"] == ["prepared_by", "reviewed_by", "approved_by"]


# TV-73: Run ids are validated and scoped to the organization
def test_tv73_run_lookup(final_run, headers, make_headers):
    r = client.get("/api/reports/runs/xyz/verify", headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_FORMAT"
    r = client.get(f"/api/reports/runs/{'0' * 32}/verify", headers=headers)
    assert r.status_code == 404
    r = client.get(f"/api/reports/runs/{final_run}/verify", headers=make_headers(org_id="org_other"))
    assert r.status_code == 404


# TV-74: Lifecycle events are written to the signed ledger
def test_tv74_run_ledger_events(final_run, headers):
    entries = client.get("/api/audit/ledger", headers=headers).json()
    names = [e["event_name"] for e in entries]
    assert names == [
        "report_run.created",
        "report_run.ready",
        "report_run.signed",
        "report_run.signed",
        "report_run.signed",
        "report_run.finalized",
    ]
    assert all(e["target_id"] == final_run for e in entries)
    final = entries[-1]["metadata"]
    assert len(final["signature_hashes"]) == 3
    assert verify_ledger_chain(entries, main.KEYS.ledger_keys())["ok"]


# TV-75: Unknown signature role -> 400
def test_tv75_bad_signature_role(job, headers):
    run_id = create_run(headers).json()["id"]
    client.post(f"/api/reports/runs/{run_id}/ready", headers=headers)
    r = sign(run_id, headers, "witnessed_by")
    assert r.status_code == 400
