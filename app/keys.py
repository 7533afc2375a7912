"""
Key management module for the Riskmate proof pack service.

Provides the Ed25519 key provider used to sign compliance ledger entries,
and the trust store that verifiers read public keys from.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from nacl.signing import SigningKey

from .util import b64d, b64e


class KeyProvider(ABC):
    """Abstract interface for ledger signing and trust store retrieval."""

    @abstractmethod
    def sign_ledger_entry(self, payload: bytes) -> Tuple[str, str]:
        """
        Sign a payload and return (kid, signature_b64).

        Args:
            payload: The canonical JSON bytes to sign

        Returns:
            Tuple of (key_id, base64_encoded_signature)
        """
        pass

    @abstractmethod
    def get_trust_store(self) -> Dict[str, Any]:
        """
        Get the trust store containing public keys.

        Returns:
            Dict containing ledger_keys (kid -> public key b64)
        """
        pass

    @abstractmethod
    def get_kid(self) -> str:
        """Get the key ID used for signing."""
        pass

    def ledger_keys(self) -> Dict[str, str]:
        return dict(self.get_trust_store().get("ledger_keys", {}))


class FileKeyProvider(KeyProvider):
    """
    File-based key provider using Ed25519 keys stored in JSON files.

    Thread-safe with cached trust store loading.
    """

    def __init__(self, signing_key_path: str, trust_store_path: str):
        self._signing_key_path = signing_key_path
        self._trust_store_path = trust_store_path
        self._lock = threading.RLock()
        self._trust_store_cache: Optional[Dict[str, Any]] = None
        self._trust_store_mtime: float = 0

        # Load signing key once at initialization
        with open(self._signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        self._kid = raw["kid"]
        self._sk = SigningKey(b64d(raw["private_key_b64"]))

    def sign_ledger_entry(self, payload: bytes) -> Tuple[str, str]:
        """Sign payload with Ed25519 key."""
        sig = self._sk.sign(payload).signature
        return self._kid, b64e(sig)

    def get_trust_store(self) -> Dict[str, Any]:
        """
        Get trust store with file modification time caching.
        Reloads if file has been modified.
        """
        with self._lock:
            try:
                mtime = os.path.getmtime(self._trust_store_path)
                if self._trust_store_cache is None or mtime > self._trust_store_mtime:
                    with open(self._trust_store_path, "r", encoding="utf-8") as f:
                        self._trust_store_cache = json.load(f)
                    self._trust_store_mtime = mtime
            except FileNotFoundError:
                if self._trust_store_cache is None:
                    raise

            return self._trust_store_cache

    def get_kid(self) -> str:
        return self._kid


def generate_signing_key(
    signing_key_path: str,
    trust_store_path: str,
    kid: str = "riskmate-ledger-01"
) -> str:
    """
    Create a new Ed25519 ledger signing key and publish its public half.

    The public key is merged into the trust store's ledger_keys so entries
    signed by earlier keys stay verifiable.

    Returns:
        The base64 public key
    """
    sk = SigningKey.generate()
    public_b64 = b64e(bytes(sk.verify_key))

    key_path = Path(signing_key_path)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(json.dumps({
        "kid": kid,
        "private_key_b64": b64e(bytes(sk)),
        "public_key_b64": public_b64,
    }, indent=2), encoding="utf-8")

    store_path = Path(trust_store_path)
    store_path.parent.mkdir(parents=True, exist_ok=True)
    store: Dict[str, Any] = {}
    if store_path.exists():
        store = json.loads(store_path.read_text(encoding="utf-8"))
    store.setdefault("ledger_keys", {})[kid] = public_b64
    store_path.write_text(json.dumps(store, indent=2, sort_keys=True), encoding="utf-8")
    return public_b64


def get_key_provider(
    signing_key_path: str = "secrets/ledger_signing_key.json",
    trust_store_path: str = "trust/trust_store.json"
) -> KeyProvider:
    """Factory function to create the configured key provider."""
    return FileKeyProvider(
        signing_key_path=signing_key_path,
        trust_store_path=trust_store_path
    )
