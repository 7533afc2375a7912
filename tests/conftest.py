import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Ensure the app module is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Isolated database and keys; must be set before app.config is imported
_TMP = tempfile.mkdtemp(prefix="riskmate-tests-")
os.environ["DB_PATH"] = os.path.join(_TMP, "riskmate.db")
os.environ["SIGNING_KEY_PATH"] = os.path.join(_TMP, "secrets", "ledger_signing_key.json")
os.environ["TRUST_STORE_PATH"] = os.path.join(_TMP, "trust", "trust_store.json")
os.environ["LEDGER_BACKEND"] = "sqlite_hash_chain"

from app.keys import generate_signing_key

generate_signing_key(os.environ["SIGNING_KEY_PATH"], os.environ["TRUST_STORE_PATH"])

# Initialize app at module load time
from app import db
from app.main import _startup, export_limiter, verify_limiter

db.init_db()
_startup()

ORG_ID = "org_acme"
ORG_NAME = "Acme Roofing"


def iso(dt):
    return dt.strftime('%Y-%m-%dT%H:%M:%SZ')


def days_from_now(days):
    return iso(datetime.now(timezone.utc) + timedelta(days=days))


def auth_headers(role="admin", user_id="u_dana", org_id=ORG_ID, name="Dana Ortiz"):
    return {
        "X-User-ID": user_id,
        "X-User-Name": name,
        "X-User-Role": role,
        "X-Organization-ID": org_id,
    }


class Seeder:
    """Inserts records for one organization, created in the recent past."""

    def __init__(self, org_id):
        self.org_id = org_id

    def job(self, job_id="job_1", job_type="roofing", title="Warehouse re-roof"):
        db.insert_job({
            "id": job_id, "organization_id": self.org_id, "title": title,
            "job_type": job_type, "status": "active", "created_at": days_from_now(-20),
        })
        return job_id

    def control(self, cid, status="open", severity="medium", due_days=None, job_id=None,
                owner="crew@acme.test", title=None, created_days_ago=1):
        db.insert_control({
            "id": cid, "organization_id": self.org_id, "job_id": job_id,
            "title": title or f"Control {cid}", "status": status, "severity": severity,
            "owner": owner,
            "due_date": days_from_now(due_days) if due_days is not None else None,
            "created_at": days_from_now(-created_days_ago),
            "updated_at": days_from_now(-created_days_ago),
        })
        return cid

    def attestation(self, aid, status="pending", job_id=None, attested_days_ago=None, created_days_ago=1):
        db.insert_attestation({
            "id": aid, "organization_id": self.org_id, "job_id": job_id,
            "title": f"Attestation {aid}", "status": status,
            "attested_by": "Sam Lee" if attested_days_ago is not None else None,
            "attested_at": days_from_now(-attested_days_ago) if attested_days_ago is not None else None,
            "created_at": days_from_now(-created_days_ago),
        })
        return aid


# Reset database before each test for isolation
@pytest.fixture(autouse=True)
def _reset_db():
    db.reset_db()
    export_limiter.reset()
    verify_limiter.reset()
    yield


@pytest.fixture
def seed():
    db.insert_organization(ORG_ID, ORG_NAME, days_from_now(-400))
    return Seeder(ORG_ID)


@pytest.fixture
def headers():
    return auth_headers()


@pytest.fixture
def make_headers():
    return auth_headers
