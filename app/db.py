"""
Database module for the Riskmate proof pack service.

Provides SQLite-based storage for the records the pack pipeline reads
(organizations, jobs, controls, attestations), the hash-chained compliance
ledger, and report runs with their artifacts and signatures.
Uses thread-local connections and proper indexing for performance.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import config

# Thread-local storage for connection pooling
_local = threading.local()

TABLES = [
    "organizations",
    "jobs",
    "controls",
    "attestations",
    "ledger",
    "report_runs",
    "run_artifacts",
    "run_signatures",
]


def _db_path() -> Path:
    return Path(config.DB_PATH)


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread for performance.
    """
    if not hasattr(_local, 'conn') or _local.conn is None:
        path = _db_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return _local.conn


@contextmanager
def _transaction(immediate: bool = False):
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on failure.
    """
    conn = _get_connection()
    if immediate:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema with proper indexes.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS organizations (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL REFERENCES organizations(id),
            title TEXT,
            job_type TEXT,
            status TEXT,
            created_at TEXT NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS controls (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL REFERENCES organizations(id),
            job_id TEXT REFERENCES jobs(id),
            title TEXT,
            status TEXT,
            severity TEXT,
            owner TEXT,
            due_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_controls_org_created
        ON controls(organization_id, created_at);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS attestations (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL REFERENCES organizations(id),
            job_id TEXT REFERENCES jobs(id),
            title TEXT,
            status TEXT,
            attested_by TEXT,
            attested_at TEXT,
            created_at TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_attestations_org_created
        ON attestations(organization_id, created_at);""")

        # Append-only, hash-chained compliance ledger
        conn.execute("""
        CREATE TABLE IF NOT EXISTS ledger (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id TEXT NOT NULL,
            event_name TEXT NOT NULL,
            target_type TEXT,
            target_id TEXT,
            actor_id TEXT,
            metadata_json TEXT NOT NULL,
            created_at TEXT NOT NULL,
            payload_hash TEXT NOT NULL,
            prev_entry_hash TEXT,
            entry_hash TEXT NOT NULL,
            kid TEXT,
            sig_b64 TEXT
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_org_created
        ON ledger(organization_id, created_at);""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_target
        ON ledger(target_id, event_name);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS report_runs (
            id TEXT PRIMARY KEY,
            organization_id TEXT NOT NULL,
            job_id TEXT NOT NULL,
            status TEXT NOT NULL,
            data_hash TEXT NOT NULL,
            created_by TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            finalized_at TEXT,
            finalized_by TEXT
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS run_artifacts (
            id TEXT PRIMARY KEY,
            run_id TEXT NOT NULL REFERENCES report_runs(id),
            filename TEXT NOT NULL,
            type TEXT NOT NULL,
            hash_sha256 TEXT NOT NULL,
            byte_length INTEGER NOT NULL,
            created_at TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_run_artifacts_run
        ON run_artifacts(run_id);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS run_signatures (
            id TEXT PRIMARY KEY,
            run_id TEXT NOT NULL REFERENCES report_runs(id),
            signature_role TEXT NOT NULL,
            signer_name TEXT NOT NULL,
            signer_title TEXT NOT NULL,
            signature_svg TEXT NOT NULL,
            signature_hash TEXT NOT NULL,
            signed_by TEXT NOT NULL,
            signed_at TEXT NOT NULL,
            revoked_at TEXT
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_run_signatures_run
        ON run_signatures(run_id);""")


# ============================================================
# Business records (query layer)
# ============================================================

def insert_organization(org_id: str, name: str, created_at: str) -> None:
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO organizations(id, name, created_at) VALUES(?,?,?)",
            (org_id, name, created_at)
        )


def get_organization(org_id: str) -> Optional[Dict[str, Any]]:
    conn = _get_connection()
    row = conn.execute("SELECT id, name, created_at FROM organizations WHERE id=?", (org_id,)).fetchone()
    return dict(row) if row else None


def insert_job(job: Dict[str, Any]) -> None:
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO jobs(id, organization_id, title, job_type, status, created_at) VALUES(?,?,?,?,?,?)",
            (job["id"], job["organization_id"], job.get("title"), job.get("job_type"),
             job.get("status"), job["created_at"])
        )


def get_job(org_id: str, job_id: str) -> Optional[Dict[str, Any]]:
    conn = _get_connection()
    row = conn.execute(
        "SELECT id, organization_id, title, job_type, status, created_at FROM jobs "
        "WHERE id=? AND organization_id=?",
        (job_id, org_id)
    ).fetchone()
    return dict(row) if row else None


def insert_control(control: Dict[str, Any]) -> None:
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO controls(id, organization_id, job_id, title, status, severity, owner, "
            "due_date, created_at, updated_at) VALUES(?,?,?,?,?,?,?,?,?,?)",
            (control["id"], control["organization_id"], control.get("job_id"), control.get("title"),
             control.get("status"), control.get("severity"), control.get("owner"),
             control.get("due_date"), control["created_at"], control.get("updated_at"))
        )


def update_control_status(control_id: str, status: str, updated_at: str) -> bool:
    with _transaction() as conn:
        cur = conn.execute(
            "UPDATE controls SET status=?, updated_at=? WHERE id=?",
            (status, updated_at, control_id)
        )
        return cur.rowcount == 1


def insert_attestation(attestation: Dict[str, Any]) -> None:
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO attestations(id, organization_id, job_id, title, status, attested_by, "
            "attested_at, created_at) VALUES(?,?,?,?,?,?,?,?)",
            (attestation["id"], attestation["organization_id"], attestation.get("job_id"),
             attestation.get("title"), attestation.get("status"), attestation.get("attested_by"),
             attestation.get("attested_at"), attestation["created_at"])
        )


def _scope(alias: str, org_id: str, start: str, end: str, job_type: Optional[str], job_id: Optional[str]):
    """WHERE clause shared by pack queries. The window is half-open [start, end)."""
    clauses = [f"{alias}.organization_id = ?", f"{alias}.created_at >= ?", f"{alias}.created_at < ?"]
    params: List[Any] = [org_id, start, end]
    if job_id:
        clauses.append(f"{alias}.job_id = ?")
        params.append(job_id)
    if job_type:
        clauses.append("j.job_type = ?")
        params.append(job_type)
    return " AND ".join(clauses), params


def fetch_controls(
    org_id: str,
    start: str,
    end: str,
    assigned_to: Optional[str] = None,
    job_type: Optional[str] = None,
    job_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Controls created inside the window, ordered by id."""
    where, params = _scope("c", org_id, start, end, job_type, job_id)
    if assigned_to:
        where += " AND c.owner = ?"
        params.append(assigned_to)
    conn = _get_connection()
    cur = conn.execute(
        "SELECT c.id, c.job_id, c.title, c.status, c.severity, c.owner, c.due_date, "
        "c.created_at, c.updated_at FROM controls c LEFT JOIN jobs j ON j.id = c.job_id "
        f"WHERE {where} ORDER BY c.id ASC",
        params
    )
    return [dict(row) for row in cur.fetchall()]


def fetch_attestations(
    org_id: str,
    start: str,
    end: str,
    job_type: Optional[str] = None,
    job_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Attestations created inside the window, ordered by id."""
    where, params = _scope("a", org_id, start, end, job_type, job_id)
    conn = _get_connection()
    cur = conn.execute(
        "SELECT a.id, a.job_id, a.title, a.status, a.attested_by, a.attested_at, a.created_at "
        "FROM attestations a LEFT JOIN jobs j ON j.id = a.job_id "
        f"WHERE {where} ORDER BY a.id ASC",
        params
    )
    return [dict(row) for row in cur.fetchall()]


def fetch_job_controls(job_id: str) -> List[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute(
        "SELECT id, title, status, severity, owner, due_date, updated_at FROM controls "
        "WHERE job_id=? ORDER BY id ASC",
        (job_id,)
    )
    return [dict(row) for row in cur.fetchall()]


def fetch_job_attestations(job_id: str) -> List[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute(
        "SELECT id, title, status, attested_by, attested_at FROM attestations "
        "WHERE job_id=? ORDER BY id ASC",
        (job_id,)
    )
    return [dict(row) for row in cur.fetchall()]


# ============================================================
# Compliance Ledger
# ============================================================

LEDGER_COLUMNS = (
    "seq, organization_id, event_name, target_type, target_id, actor_id, metadata_json, "
    "created_at, payload_hash, prev_entry_hash, entry_hash, kid, sig_b64"
)


def _ledger_row(row: sqlite3.Row) -> Dict[str, Any]:
    entry = dict(row)
    entry["metadata"] = json.loads(entry.pop("metadata_json"))
    return entry


def is_locked_error(e: Exception) -> bool:
    """True when SQLite gave up waiting for another writer."""
    return isinstance(e, sqlite3.OperationalError) and "locked" in str(e).lower()


def append_ledger_entry(org_id: str, prepare: Callable[[Optional[str]], Dict[str, Any]]) -> Dict[str, Any]:
    """
    Append one entry to an organization's ledger chain.

    The chain head is read and the new entry written under a single
    write lock, so concurrent appends cannot fork the chain.

    Args:
        org_id: Chain owner
        prepare: Called with the current head hash; returns the complete
            entry (payload fields, hashes, signature)

    Returns:
        The stored entry including its seq
    """
    with _transaction(immediate=True) as conn:
        row = conn.execute(
            "SELECT entry_hash FROM ledger WHERE organization_id=? ORDER BY seq DESC LIMIT 1",
            (org_id,)
        ).fetchone()
        prev = row['entry_hash'] if row else None
        entry = prepare(prev)
        cur = conn.execute(
            "INSERT INTO ledger(organization_id, event_name, target_type, target_id, actor_id, "
            "metadata_json, created_at, payload_hash, prev_entry_hash, entry_hash, kid, sig_b64) "
            "VALUES(?,?,?,?,?,?,?,?,?,?,?,?)",
            (entry["organization_id"], entry["event_name"], entry.get("target_type"),
             entry.get("target_id"), entry.get("actor_id"),
             json.dumps(entry["metadata"], sort_keys=True, ensure_ascii=False),
             entry["created_at"], entry["payload_hash"], entry.get("prev_entry_hash"),
             entry["entry_hash"], entry.get("kid"), entry.get("sig_b64"))
        )
        stored = dict(entry)
        stored["seq"] = cur.lastrowid
        return stored


def fetch_ledger_events(org_id: str, start: str, end: str) -> List[Dict[str, Any]]:
    """Ledger events inside the window, for the ledger export document."""
    conn = _get_connection()
    cur = conn.execute(
        "SELECT seq, event_name, target_type, target_id, actor_id, created_at, entry_hash "
        "FROM ledger WHERE organization_id=? AND created_at >= ? AND created_at < ? ORDER BY seq ASC",
        (org_id, start, end)
    )
    return [dict(row) for row in cur.fetchall()]


def get_ledger_entry(org_id: str, event_name: str, target_id: str) -> Optional[Dict[str, Any]]:
    """Most recent ledger entry for a target."""
    conn = _get_connection()
    row = conn.execute(
        f"SELECT {LEDGER_COLUMNS} FROM ledger "
        "WHERE organization_id=? AND event_name=? AND target_id=? ORDER BY seq DESC LIMIT 1",
        (org_id, event_name, target_id)
    ).fetchone()
    return _ledger_row(row) if row else None


def get_previous_entry_hash(org_id: str, seq: int) -> Optional[str]:
    """Hash of the organization's entry immediately before seq."""
    conn = _get_connection()
    row = conn.execute(
        "SELECT entry_hash FROM ledger WHERE organization_id=? AND seq < ? ORDER BY seq DESC LIMIT 1",
        (org_id, seq)
    ).fetchone()
    return row['entry_hash'] if row else None


def export_ledger(org_id: str) -> List[Dict[str, Any]]:
    """Export an organization's complete ledger chain in seq order."""
    conn = _get_connection()
    cur = conn.execute(
        f"SELECT {LEDGER_COLUMNS} FROM ledger WHERE organization_id=? ORDER BY seq ASC",
        (org_id,)
    )
    return [_ledger_row(row) for row in cur.fetchall()]


# ============================================================
# Report Runs
# ============================================================

RUN_COLUMNS = (
    "id, organization_id, job_id, status, data_hash, created_by, created_at, "
    "updated_at, finalized_at, finalized_by"
)


def insert_run(run: Dict[str, Any]) -> None:
    with _transaction() as conn:
        conn.execute(
            f"INSERT INTO report_runs({RUN_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?,?)",
            (run["id"], run["organization_id"], run["job_id"], run["status"], run["data_hash"],
             run["created_by"], run["created_at"], run["updated_at"], None, None)
        )


def get_run(org_id: str, run_id: str) -> Optional[Dict[str, Any]]:
    conn = _get_connection()
    row = conn.execute(
        f"SELECT {RUN_COLUMNS} FROM report_runs WHERE id=? AND organization_id=?",
        (run_id, org_id)
    ).fetchone()
    return dict(row) if row else None


def update_run_status(
    run_id: str,
    expected_status: str,
    new_status: str,
    updated_at: str,
    finalized_by: Optional[str] = None
) -> bool:
    """
    Compare-and-set the run status.
    Returns False if the run was no longer in expected_status.
    """
    with _transaction() as conn:
        if finalized_by is not None:
            cur = conn.execute(
                "UPDATE report_runs SET status=?, updated_at=?, finalized_at=?, finalized_by=? "
                "WHERE id=? AND status=?",
                (new_status, updated_at, updated_at, finalized_by, run_id, expected_status)
            )
        else:
            cur = conn.execute(
                "UPDATE report_runs SET status=?, updated_at=? WHERE id=? AND status=?",
                (new_status, updated_at, run_id, expected_status)
            )
        return cur.rowcount == 1


def insert_run_artifact(run_id: str, artifact: Dict[str, Any], allowed_statuses: List[str]) -> bool:
    """
    Attach an artifact only while the run is in one of allowed_statuses.
    The status check and the insert happen in one transaction.
    """
    with _transaction(immediate=True) as conn:
        row = conn.execute("SELECT status FROM report_runs WHERE id=?", (run_id,)).fetchone()
        if row is None or row["status"] not in allowed_statuses:
            return False
        conn.execute(
            "INSERT INTO run_artifacts(id, run_id, filename, type, hash_sha256, byte_length, created_at) "
            "VALUES(?,?,?,?,?,?,?)",
            (artifact["id"], run_id, artifact["filename"], artifact["type"],
             artifact["hash_sha256"], artifact["byte_length"], artifact["created_at"])
        )
        return True


def list_run_artifacts(run_id: str) -> List[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute(
        "SELECT id, filename, type, hash_sha256, byte_length, created_at FROM run_artifacts "
        "WHERE run_id=? ORDER BY created_at ASC, id ASC",
        (run_id,)
    )
    return [dict(row) for row in cur.fetchall()]


def insert_run_signature(run_id: str, signature: Dict[str, Any], allowed_status: str) -> bool:
    """Record a signature only while the run is in allowed_status."""
    with _transaction(immediate=True) as conn:
        row = conn.execute("SELECT status FROM report_runs WHERE id=?", (run_id,)).fetchone()
        if row is None or row["status"] != allowed_status:
            return False
        conn.execute(
            "INSERT INTO run_signatures(id, run_id, signature_role, signer_name, signer_title, "
            "signature_svg, signature_hash, signed_by, signed_at) VALUES(?,?,?,?,?,?,?,?,?)",
            (signature["id"], run_id, signature["signature_role"], signature["signer_name"],
             signature["signer_title"], signature["signature_svg"], signature["signature_hash"],
             signature["signed_by"], signature["signed_at"])
        )
        return True


def list_run_signatures(run_id: str) -> List[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute(
        "SELECT id, signature_role, signer_name, signer_title, signature_svg, signature_hash, "
        "signed_by, signed_at, revoked_at FROM run_signatures WHERE run_id=? ORDER BY signed_at ASC, id ASC",
        (run_id,)
    )
    return [dict(row) for row in cur.fetchall()]


# ============================================================
# Metrics and Health
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get database statistics for monitoring."""
    conn = _get_connection()
    stats = {}
    for table in TABLES:
        cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support: Database Reset
# ============================================================

def reset_db() -> None:
    """
    Reset the database for test isolation.
    Clears all tables but preserves schema.
    """
    with _transaction() as conn:
        for table in reversed(TABLES):
            conn.execute(f"DELETE FROM {table}")
        conn.execute("DELETE FROM sqlite_sequence WHERE name='ledger'")
