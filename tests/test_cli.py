"""Command line verification tools."""

import contextlib
import io
import json
import os
import tempfile
import unittest

from nacl.signing import SigningKey

from factories import AS_OF, make_request, scenario_a_controls
from proofpack import PackSources, build_pack, canonical_hash, sha256_hex
from proofpack.cli import main
from test_ledger import KID, b64, make_chain


def run(argv):
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = main(argv)
    return code, out.getvalue()


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name, data):
        path = os.path.join(self.tmp.name, name)
        mode = "wb" if isinstance(data, bytes) else "w"
        with open(path, mode) as f:
            f.write(data)
        return path

    def test_verify_valid_pack(self):
        result = build_pack(make_request(), PackSources(controls=scenario_a_controls()), "3f2a9c1d", AS_OF)
        path = self.write("pack.zip", result.archive)
        code, out = run(["verify", "-p", path, "-m", result.manifest_hash])
        self.assertEqual(code, 0)
        self.assertIn("VALID pack 3f2a9c1d", out)
        self.assertIn(result.manifest_hash, out)

    def test_verify_wrong_manifest_hash(self):
        result = build_pack(make_request(), PackSources(), "3f2a9c1d", AS_OF)
        path = self.write("pack.zip", result.archive)
        code, out = run(["verify", "--pack", path, "--manifest-hash", "0" * 64])
        self.assertEqual(code, 1)
        self.assertIn("INVALID", out)

    def test_hash_canonical_and_raw(self):
        path = self.write("payload.json", '{"b": 1, "a": [1, 2]}')
        code, out = run(["hash", "-f", path])
        self.assertEqual(code, 0)
        self.assertIn(canonical_hash({"a": [1, 2], "b": 1}), out)
        code, out = run(["hash", "-f", path, "--raw"])
        self.assertIn(sha256_hex(b'{"b": 1, "a": [1, 2]}'), out)

    def test_chain(self):
        sk = SigningKey.generate()
        entries = make_chain(sk)
        ledger = self.write("ledger.json", json.dumps(entries))
        store = self.write("trust.json", json.dumps({"ledger_keys": {KID: b64(bytes(sk.verify_key))}}))
        code, out = run(["chain", "-l", ledger, "-t", store])
        self.assertEqual(code, 0)
        self.assertIn("PASS", out)

        entries[0]["target_id"] = "run_x"
        ledger = self.write("ledger.json", json.dumps(entries))
        code, out = run(["chain", "-l", ledger, "-t", store])
        self.assertEqual(code, 1)
        self.assertIn("seq 1: payload hash mismatch", out)

    def test_no_command(self):
        code, _ = run([])
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
