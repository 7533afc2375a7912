"""
Security module for the Riskmate proof pack service.

Provides caller identity, role checks, input validation and log
sanitization.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .errors import ApiError

# ============================================================
# Input Validation
# ============================================================

PACK_ID_PATTERN = re.compile(r'^[a-f0-9]{16}$')
RUN_ID_PATTERN = re.compile(r'^[a-f0-9]{32}$')
ORG_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,64}$')


def _validate(value: str, pattern, field_name: str) -> str:
    if not isinstance(value, str) or not pattern.match(value):
        raise ApiError(
            "INVALID_FORMAT",
            f"{field_name} has an invalid format",
            internal_message=f"{field_name}={value!r}",
            field=field_name
        )
    return value


def validate_pack_id(value: str) -> str:
    """Validate a pack ID (16 hex characters)."""
    return _validate(value, PACK_ID_PATTERN, "pack_id")


def validate_run_id(value: str) -> str:
    """Validate a report run ID (32 hex characters)."""
    return _validate(value, RUN_ID_PATTERN, "run_id")


# ============================================================
# Identity and roles
# ============================================================

EXPORT_ROLES = frozenset({"owner", "admin", "safety_lead", "executive"})
RUN_WRITE_ROLES = frozenset({"owner", "admin", "safety_lead"})


@dataclass(frozen=True)
class Identity:
    user_id: str
    organization_id: str
    role: str
    name: str


def extract_identity(headers: Mapping[str, str]) -> Identity:
    """
    Resolve the authenticated caller from gateway-set headers.

    Raises:
        ApiError: UNAUTHORIZED if user or organization is missing
    """
    user_id = (headers.get("x-user-id") or "").strip()
    org_id = (headers.get("x-organization-id") or "").strip()
    if not user_id or not org_id:
        raise ApiError("UNAUTHORIZED", "Authentication required")
    if not ORG_ID_PATTERN.match(org_id):
        raise ApiError("UNAUTHORIZED", "Authentication required", internal_message="malformed organization id")
    role = (headers.get("x-user-role") or "member").strip().lower()
    name = (headers.get("x-user-name") or user_id).strip()
    return Identity(user_id=user_id, organization_id=org_id, role=role, name=name)


def require_role(identity: Identity, allowed: frozenset, action: str) -> Identity:
    if identity.role not in allowed:
        raise ApiError(
            "FORBIDDEN",
            f"Your role does not allow {action}",
            internal_message=f"role={identity.role}",
            required_roles=sorted(allowed)
        )
    return identity


# ============================================================
# Audit Logging Helpers
# ============================================================

def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = ["sig_b64", "private_key_b64", "signature_svg", "secret", "token"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
