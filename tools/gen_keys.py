
import sys

from app.config import SIGNING_KEY_PATH, TRUST_STORE_PATH
from app.keys import generate_signing_key

kid = sys.argv[1] if len(sys.argv) > 1 else "riskmate-ledger-01"

public_b64 = generate_signing_key(SIGNING_KEY_PATH, TRUST_STORE_PATH, kid=kid)

print(f"Generated ledger signing key {kid} -> {SIGNING_KEY_PATH}")
print(f"Published public key {public_b64} in {TRUST_STORE_PATH}")
