"""Report run lifecycle rules and report hashing."""

import unittest

from proofpack import InvalidTransitionError, RunImmutableError, RunStatus
from proofpack.runs import (
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

JOB = {"id": "job_1", "organization_id": "org_acme", "title": "Re-roof", "job_type": "roofing",
       "status": "active", "created_at": "2026-03-01T00:00:00Z", "internal_notes": "not hashed"}


def signed(role, svg="<svg/>", name="Dana Ortiz", title="Safety Lead", revoked_at=None):
    return {
        "id": f"sig_{role}",
        "signature_role": role,
        "signature_svg": svg,
        "signer_name": name,
        "signer_title": title,
        "signature_hash": signature_hash(svg, name, title, role),
        "revoked_at": revoked_at,
    }


class TestTransitions(unittest.TestCase):

    def test_forward_moves(self):
        self.assertIs(check_transition("r1", "draft", "ready_for_signatures"), RunStatus.READY_FOR_SIGNATURES)
        self.assertIs(check_transition("r1", RunStatus.READY_FOR_SIGNATURES, RunStatus.FINAL), RunStatus.FINAL)

    def test_skipping_ready_is_rejected(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            check_transition("r1", "draft", "final")
        self.assertEqual(ctx.exception.code, "INVALID_STATE_TRANSITION")
        self.assertIs(ctx.exception.status, RunStatus.DRAFT)

    def test_backwards_is_rejected(self):
        with self.assertRaises(InvalidTransitionError):
            check_transition("r1", "ready_for_signatures", "draft")

    def test_final_is_immutable(self):
        for target in RunStatus:
            with self.assertRaises(RunImmutableError) as ctx:
                check_transition("r1", "final", target)
            self.assertEqual(ctx.exception.code, "RUN_IMMUTABLE")

    def test_unknown_status(self):
        with self.assertRaises(ValueError):
            check_transition("r1", "archived", "final")


class TestWriteGuards(unittest.TestCase):

    def test_artifacts_allowed_until_final(self):
        check_accepts_artifacts("r1", "draft")
        check_accepts_artifacts("r1", "ready_for_signatures")
        with self.assertRaises(RunImmutableError):
            check_accepts_artifacts("r1", "final")

    def test_signatures_only_when_ready(self):
        check_accepts_signatures("r1", "ready_for_signatures")
        with self.assertRaises(InvalidTransitionError):
            check_accepts_signatures("r1", "draft")
        with self.assertRaises(RunImmutableError):
            check_accepts_signatures("r1", "final")


class TestSignatures(unittest.TestCase):

    def test_signature_hash_binds_role(self):
        a = signature_hash("<svg/>", "Dana", "Lead", "prepared_by")
        b = signature_hash("<svg/>", "Dana", "Lead", "approved_by")
        self.assertNotEqual(a, b)
        self.assertEqual(len(a), 64)

    def test_missing_roles(self):
        self.assertEqual(missing_roles([]), ["prepared_by", "reviewed_by", "approved_by"])
        sigs = [signed("prepared_by"), signed("other"), signed("approved_by", revoked_at="2026-03-02T00:00:00Z")]
        self.assertEqual(missing_roles(sigs), ["reviewed_by", "approved_by"])

    def test_finalize_requires_all_roles(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            check_finalizable("r1", "ready_for_signatures", [signed("prepared_by")])
        self.assertIn("reviewed_by", str(ctx.exception))
        check_finalizable("r1", "ready_for_signatures",
                          [signed("prepared_by"), signed("reviewed_by"), signed("approved_by")])

    def test_finalize_from_draft(self):
        with self.assertRaises(InvalidTransitionError):
            check_finalizable("r1", "draft", [signed(r) for r in ("prepared_by", "reviewed_by", "approved_by")])

    def test_verify_signatures(self):
        good = signed("prepared_by")
        bad = dict(signed("reviewed_by"), signer_name="Mallory")
        revoked = signed("approved_by", revoked_at="2026-03-02T00:00:00Z")
        results = verify_signatures([good, bad, revoked])
        self.assertEqual(results, [
            {"signature_id": "sig_prepared_by", "role": "prepared_by", "valid": True},
            {"signature_id": "sig_reviewed_by", "role": "reviewed_by", "valid": False},
        ])


class TestReportPayload(unittest.TestCase):

    def test_rows_sorted_and_projected(self):
        controls = [{"id": "c2", "title": "B", "extra": 1}, {"id": "c1", "title": "A"}]
        attestations = [{"id": "a1", "status": "signed"}]
        payload = build_report_payload(JOB, controls, attestations)
        self.assertNotIn("internal_notes", payload["job"])
        self.assertEqual([c["id"] for c in payload["controls"]], ["c1", "c2"])
        self.assertNotIn("extra", payload["controls"][1])
        self.assertIsNone(payload["controls"][0]["severity"])
        self.assertEqual(payload["attestations"][0]["status"], "signed")

    def test_hash_ignores_query_order(self):
        controls = [{"id": "c1", "status": "open"}, {"id": "c2", "status": "done"}]
        a = report_data_hash(build_report_payload(JOB, controls, []))
        b = report_data_hash(build_report_payload(JOB, list(reversed(controls)), []))
        self.assertEqual(a, b)

    def test_hash_tracks_content(self):
        a = report_data_hash(build_report_payload(JOB, [{"id": "c1", "status": "open"}], []))
        b = report_data_hash(build_report_payload(JOB, [{"id": "c1", "status": "completed"}], []))
        self.assertNotEqual(a, b)


if __name__ == "__main__":
    unittest.main()
