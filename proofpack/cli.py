#!/usr/bin/env python3
"""
Proof Pack Command Line Interface

Usage:
    proofpack verify --pack <audit-pack.zip> [--manifest-hash <hex>]
    proofpack hash --file <file> [--raw]
    proofpack chain --ledger <ledger.json> [--trust-store <trust_store.json>]
"""

import argparse
import json
import sys


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def cmd_verify(args):
    """Verify a downloaded audit pack."""
    from proofpack.verifier import verify_pack_archive

    with open(args.pack, 'rb') as f:
        data = f.read()

    result = verify_pack_archive(data, expected_manifest_hash=args.manifest_hash)

    if result.ok:
        print(f"VALID pack {result.details.get('pack_id')}")
        print(f"manifest_sha256: {result.recomputed_hash}")
        return 0
    print(f"INVALID: {result.reason}")
    for problem in result.details.get("problems", []):
        print(f"  - {problem}")
    return 1


def cmd_hash(args):
    """Compute a canonical (JSON) or raw (bytes) SHA-256."""
    from proofpack.hashing import canonical_hash, sha256_hex

    if args.raw:
        with open(args.file, 'rb') as f:
            print(f"sha256: {sha256_hex(f.read())}")
    else:
        print(f"canonical_sha256: {canonical_hash(load_json(args.file))}")
    return 0


def cmd_chain(args):
    """Verify the hash chain (and signatures) of an exported ledger."""
    from proofpack.ledger import verify_ledger_chain

    entries = load_json(args.ledger)
    keys = None
    if args.trust_store:
        keys = load_json(args.trust_store).get("ledger_keys", {})

    report = verify_ledger_chain(entries, keys)
    if report["ok"]:
        print(f"PASS: ledger chain valid ({report['entries']} entries, head {report['head']})")
        return 0
    print("FAIL: ledger chain broken")
    for problem in report["problems"]:
        print(f"  - {problem}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proofpack",
        description="Riskmate proof pack tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  proofpack verify -p audit-pack-3f2a.zip
  proofpack verify -p audit-pack-3f2a.zip -m 9b1c...
  proofpack hash -f payload.json
  proofpack chain -l ledger.json -t trust/trust_store.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    verify_parser = subparsers.add_parser("verify", help="Verify an audit pack archive")
    verify_parser.add_argument("-p", "--pack", required=True, help="Audit pack ZIP file")
    verify_parser.add_argument("-m", "--manifest-hash", help="Expected manifest SHA-256")

    hash_parser = subparsers.add_parser("hash", help="Compute SHA-256 of a file")
    hash_parser.add_argument("-f", "--file", required=True, help="File to hash")
    hash_parser.add_argument("--raw", action="store_true", help="Hash raw bytes instead of canonical JSON")

    chain_parser = subparsers.add_parser("chain", help="Verify an exported ledger chain")
    chain_parser.add_argument("-l", "--ledger", required=True, help="Ledger export JSON file")
    chain_parser.add_argument("-t", "--trust-store", help="Trust store JSON file (checks signatures)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "verify":
        return cmd_verify(args)
    elif args.command == "hash":
        return cmd_hash(args)
    elif args.command == "chain":
        return cmd_chain(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
