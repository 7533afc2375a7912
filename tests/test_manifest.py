"""Manifest construction and the exact-count summary contract."""

import json
import unittest
from dataclasses import replace

from factories import AS_OF, ledger_event, make_context, make_request, scenario_a_attestations, scenario_a_controls
from proofpack import (
    ArtifactDescriptor,
    ManifestError,
    PackFilters,
    PackManifest,
    build_manifest,
    check_summary_counts,
    generate_attestations_csv,
    generate_controls_csv,
    generate_evidence_index_pdf,
    generate_ledger_export_pdf,
    sha256_hex,
)
from proofpack.manifest import artifact_filename, kind_for_filename, manifest_filename

PACK_ID = "3f2a9c1d"


def scenario_a_artifacts(pack_id=PACK_ID, ctx=None):
    ctx = ctx or make_context()
    docs = [
        generate_controls_csv(scenario_a_controls(), ctx),
        generate_attestations_csv(scenario_a_attestations(), ctx),
        generate_ledger_export_pdf([ledger_event(1)], ctx),
    ]
    docs.append(generate_evidence_index_pdf(docs, ctx))
    return [ArtifactDescriptor.from_document(d, pack_id).hashed() for d in docs]


class TestFilenames(unittest.TestCase):

    def test_patterns(self):
        self.assertEqual(artifact_filename("controls", PACK_ID), "controls_3f2a9c1d.csv")
        self.assertEqual(artifact_filename("attestations", PACK_ID), "attestations_3f2a9c1d.csv")
        self.assertEqual(artifact_filename("ledger_events", PACK_ID), "ledger_export_3f2a9c1d.pdf")
        self.assertEqual(artifact_filename("evidence_index", PACK_ID), "evidence_index_3f2a9c1d.pdf")
        self.assertEqual(manifest_filename(PACK_ID), "manifest_3f2a9c1d.json")

    def test_unknown_kind(self):
        with self.assertRaises(ManifestError):
            artifact_filename("photos", PACK_ID)

    def test_kind_for_filename(self):
        self.assertEqual(kind_for_filename("ledger_export_3f2a9c1d.pdf", PACK_ID), "ledger_events")
        self.assertIsNone(kind_for_filename("ledger_export_00000000.pdf", PACK_ID))


class TestBuildManifest(unittest.TestCase):
    """Manifest fields, contents ordering and summary totals."""

    def setUp(self):
        self.artifacts = scenario_a_artifacts()
        self.manifest = build_manifest(self.artifacts, make_request(), PACK_ID, AS_OF)

    def test_header_fields(self):
        m = self.manifest.to_dict()
        self.assertEqual(m["pack_id"], PACK_ID)
        self.assertEqual(m["generated_at"], "2026-03-15T12:00:00Z")
        self.assertEqual(m["generated_by"], "Dana Ortiz")
        self.assertEqual(m["generated_by_role"], "admin")
        self.assertEqual(m["organization"], "Acme Roofing")
        self.assertEqual(m["organization_id"], "org_acme")
        self.assertEqual(m["time_range"]["preset"], "30d")
        self.assertEqual(m["filters"], {})

    def test_contents_sorted_with_exact_hashes(self):
        names = [c["filename"] for c in self.manifest.contents]
        self.assertEqual(names, sorted(names))
        self.assertEqual(len(names), 4)
        by_name = {a.filename: a for a in self.artifacts}
        for entry in self.manifest.contents:
            self.assertEqual(set(entry), {"filename", "type", "record_count", "hash_sha256"})
            self.assertEqual(entry["hash_sha256"], sha256_hex(by_name[entry["filename"]].data))

    def test_manifest_never_lists_itself(self):
        for entry in self.manifest.contents:
            self.assertFalse(entry["filename"].startswith("manifest_"))

    def test_summary_from_record_counts(self):
        self.assertEqual(self.manifest.summary, {
            "total_controls": 3,
            "total_attestations": 2,
            "total_ledger_events": 1,
        })
        self.assertEqual(check_summary_counts(self.manifest), [])

    def test_to_bytes(self):
        raw = self.manifest.to_bytes()
        self.assertTrue(raw.endswith(b"}\n"))
        self.assertEqual(json.loads(raw), self.manifest.to_dict())
        self.assertEqual(self.manifest.manifest_hash(), sha256_hex(raw))

    def test_from_dict_round_trip(self):
        again = PackManifest.from_dict(json.loads(self.manifest.to_bytes()))
        self.assertEqual(again.to_bytes(), self.manifest.to_bytes())

    def test_from_dict_malformed(self):
        with self.assertRaises(ManifestError):
            PackManifest.from_dict({"pack_id": PACK_ID})

    def test_filters_recorded(self):
        request = make_request(filters=PackFilters(status="pending", job_type="roofing"))
        manifest = build_manifest(self.artifacts, request, PACK_ID, AS_OF)
        self.assertEqual(manifest.filters, {"status": "pending", "job_type": "roofing"})


class TestManifestRejections(unittest.TestCase):

    def test_artifact_changed_after_hashing(self):
        """An artifact whose bytes no longer match its hash is rejected."""
        artifacts = scenario_a_artifacts()
        artifacts[0] = replace(artifacts[0], data=artifacts[0].data + b"x")
        with self.assertRaises(ManifestError):
            build_manifest(artifacts, make_request(), PACK_ID, AS_OF)

    def test_foreign_pack_id(self):
        artifacts = scenario_a_artifacts(pack_id="00000000")
        with self.assertRaises(ManifestError):
            build_manifest(artifacts, make_request(), PACK_ID, AS_OF)

    def test_duplicate_filename(self):
        artifacts = scenario_a_artifacts()
        with self.assertRaises(ManifestError):
            build_manifest(artifacts + [artifacts[0]], make_request(), PACK_ID, AS_OF)

    def test_unsupported_type(self):
        artifacts = scenario_a_artifacts()
        artifacts[0] = replace(artifacts[0], type="xlsx")
        with self.assertRaises(ManifestError):
            build_manifest(artifacts, make_request(), PACK_ID, AS_OF)


class TestSummaryCounts(unittest.TestCase):
    """Totals must equal the per-artifact record counts exactly."""

    def setUp(self):
        self.manifest = build_manifest(scenario_a_artifacts(), make_request(), PACK_ID, AS_OF)

    def test_off_by_one_detected(self):
        summary = dict(self.manifest.summary, total_controls=4)
        problems = check_summary_counts(replace(self.manifest, summary=summary))
        self.assertEqual(len(problems), 1)
        self.assertIn("total_controls=4", problems[0])

    def test_missing_total_detected(self):
        summary = dict(self.manifest.summary)
        del summary["total_attestations"]
        problems = check_summary_counts(replace(self.manifest, summary=summary))
        self.assertEqual(problems, ["total_attestations missing from summary"])

    def test_total_without_artifact_detected(self):
        contents = [c for c in self.manifest.contents if not c["filename"].startswith("ledger_export_")]
        problems = check_summary_counts(replace(self.manifest, contents=contents))
        self.assertEqual(problems, ["total_ledger_events has no matching artifact"])


if __name__ == "__main__":
    unittest.main()
