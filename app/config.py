"""
Configuration module for the Riskmate proof pack service.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from pathlib import Path
from typing import Dict

from proofpack.context import RenderConfig

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("RISKMATE_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("DB_PATH", "data/riskmate.db")

# Rate limits (requests per minute, per organization)
EXPORT_RPM = int(os.getenv("EXPORT_RPM", "10"))
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "120"))

# Pack generation
PACK_MAX_WORKERS = int(os.getenv("PACK_MAX_WORKERS", "3"))
PACK_TIMEOUT_SECONDS = float(os.getenv("PACK_TIMEOUT_SECONDS", "60"))

# Rendering. PDF_STRICT=0 enables relaxed sanitization (no fail-closed check).
PDF_STRICT = os.getenv("PDF_STRICT", "1") != "0"
BRAND_NAME = os.getenv("BRAND_NAME", "Riskmate")
PAGE_SIZE = os.getenv("PAGE_SIZE", "letter")

# Signing configuration
SIGNING_KEY_PATH = os.getenv("SIGNING_KEY_PATH", "secrets/ledger_signing_key.json")
TRUST_STORE_PATH = os.getenv("TRUST_STORE_PATH", "trust/trust_store.json")

# Ledger backend: sqlite_hash_chain | s3_object_lock
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "sqlite_hash_chain")
S3_BUCKET = os.getenv("S3_BUCKET", "")
S3_PREFIX = os.getenv("S3_PREFIX", "riskmate/ledger/")
S3_RETENTION_DAYS = int(os.getenv("S3_RETENTION_DAYS", "2555"))
S3_LEGAL_HOLD = os.getenv("S3_LEGAL_HOLD", "OFF")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1") != "0"


# ============================================================
# Derived settings
# ============================================================

def render_config() -> RenderConfig:
    """Rendering options passed explicitly into every generator call."""
    return RenderConfig(strict=PDF_STRICT, brand=BRAND_NAME, page_size=PAGE_SIZE)


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that all required configuration files exist.
    Returns dict of path -> exists.
    """
    paths = {
        "signing_key": SIGNING_KEY_PATH,
        "trust_store": TRUST_STORE_PATH,
    }
    return {name: Path(path).exists() for name, path in paths.items()}


# ============================================================
# Feature Flags
# ============================================================

def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("RISKMATE_DEBUG", "").lower() in ("1", "true", "yes")
