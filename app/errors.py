"""
Error responses for the Riskmate proof pack service.

Every error leaves the service as the same JSON envelope so clients can
decide whether to retry from fields, never from message text:

    message, code, error_id, request_id, severity, category,
    classification, retryable, retry_strategy, error_hint
    [, retry_after_seconds] [, support_url] [, internal_message]

retryable is False exactly when retry_strategy is "none".
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .config import is_debug

# ============================================================
# Taxonomy
# ============================================================

CATEGORY_AUTH = "auth"
CATEGORY_VALIDATION = "validation"
CATEGORY_RATE_LIMIT = "rate_limit"
CATEGORY_EXPORT = "export"
CATEGORY_STATE = "state"
CATEGORY_INTERNAL = "internal"

USER_ACTION_REQUIRED = "user_action_required"
SYSTEM_TRANSIENT = "system_transient"
DEVELOPER_BUG = "developer_bug"

RETRY_NONE = "none"
RETRY_IMMEDIATE = "immediate"
RETRY_BACKOFF = "exponential_backoff"
RETRY_AFTER = "after_retry_after"


@dataclass(frozen=True)
class ErrorCode:
    status: int
    category: str
    classification: Optional[str] = None
    hint: Optional[str] = None
    support_url: Optional[str] = None


ERROR_CODES: Dict[str, ErrorCode] = {
    "VALIDATION_ERROR": ErrorCode(
        400, CATEGORY_VALIDATION, DEVELOPER_BUG,
        "Check time_range, start_date/end_date and filter values",
    ),
    "INVALID_FORMAT": ErrorCode(
        400, CATEGORY_VALIDATION, DEVELOPER_BUG,
        "Identifiers must match the documented format",
    ),
    "UNAUTHORIZED": ErrorCode(
        401, CATEGORY_AUTH, USER_ACTION_REQUIRED,
        "Log in again and retry", "/support/runbooks/auth#unauthorized",
    ),
    "FORBIDDEN": ErrorCode(
        403, CATEGORY_AUTH, USER_ACTION_REQUIRED,
        "This action requires an owner, admin or safety lead role",
        "/support/runbooks/auth#role-forbidden",
    ),
    "NOT_FOUND": ErrorCode(404, CATEGORY_VALIDATION, DEVELOPER_BUG),
    "RUN_IMMUTABLE": ErrorCode(
        409, CATEGORY_STATE, USER_ACTION_REQUIRED,
        "Final report runs cannot be changed; create a new run",
    ),
    "INVALID_STATE_TRANSITION": ErrorCode(
        409, CATEGORY_STATE, USER_ACTION_REQUIRED,
        "Check the run status before retrying this action",
    ),
    "RATE_LIMIT_EXCEEDED": ErrorCode(
        429, CATEGORY_RATE_LIMIT, USER_ACTION_REQUIRED,
        "Wait retry_after_seconds before exporting again",
    ),
    "QUERY_ERROR": ErrorCode(500, CATEGORY_EXPORT, SYSTEM_TRANSIENT),
    "EXPORT_ERROR": ErrorCode(
        500, CATEGORY_EXPORT, SYSTEM_TRANSIENT,
        "Report the error_id to support if this persists",
    ),
    "EXPORT_TIMEOUT": ErrorCode(
        504, CATEGORY_EXPORT, SYSTEM_TRANSIENT,
        "Narrow the time range or filters and retry",
    ),
    "LEDGER_BUSY": ErrorCode(
        409, CATEGORY_EXPORT, SYSTEM_TRANSIENT,
        "Another ledger write was in progress; nothing was recorded, retry the request",
    ),
    "INTERNAL_ERROR": ErrorCode(500, CATEGORY_INTERNAL, SYSTEM_TRANSIENT),
}

# 4xx codes a client may simply retry
RETRYABLE_CODES = frozenset({"LEDGER_BUSY"})


class ApiError(Exception):
    """
    Raised from route handlers; rendered by the ApiError exception handler.

    Args:
        code: Key of ERROR_CODES
        message: User-safe message
        internal_message: Detail for logs (and debug responses only)
        retry_after_seconds: Sets after_retry_after strategy
        error_id: Pre-assigned id when the failure was already logged
        headers: Extra response headers
        extra: Additional response fields
    """

    def __init__(
        self,
        code: str,
        message: str,
        internal_message: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        error_id: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any
    ):
        if code not in ERROR_CODES:
            raise KeyError(f"unregistered error code: {code}")
        self.code = code
        self.message = message
        self.internal_message = internal_message
        self.retry_after_seconds = retry_after_seconds
        self.error_id = error_id or str(uuid.uuid4())
        self.headers = headers or {}
        self.extra = extra
        super().__init__(f"{code}: {message}")

    @property
    def status_code(self) -> int:
        return ERROR_CODES[self.code].status


def retry_strategy(status: int, code: str, has_retry_after: bool) -> Tuple[bool, str]:
    """
    Decide whether and how a client should retry.

    5xx -> exponential backoff; a retry-after hint -> wait for it;
    explicitly retryable codes -> immediate; everything else -> none.
    """
    if status >= 500:
        return True, RETRY_BACKOFF
    if has_retry_after:
        return True, RETRY_AFTER
    if code in RETRYABLE_CODES:
        return True, RETRY_IMMEDIATE
    return False, RETRY_NONE


def classify(status: int, code: str) -> str:
    code_def = ERROR_CODES.get(code)
    if code_def is not None and code_def.classification:
        return code_def.classification
    return SYSTEM_TRANSIENT if status >= 500 else DEVELOPER_BUG


def error_body(
    code: str,
    message: str,
    request_id: str,
    error_id: Optional[str] = None,
    status: Optional[int] = None,
    retry_after_seconds: Optional[int] = None,
    internal_message: Optional[str] = None,
    **extra: Any
) -> Dict[str, Any]:
    """Build the error envelope. Unknown codes are treated as internal errors."""
    code_def = ERROR_CODES.get(code, ERROR_CODES["INTERNAL_ERROR"])
    status = status or code_def.status
    retryable, strategy = retry_strategy(status, code, retry_after_seconds is not None)

    body: Dict[str, Any] = {
        "message": message,
        "code": code,
        "error_id": error_id or str(uuid.uuid4()),
        "request_id": request_id,
        "severity": "error" if status >= 500 else "warn",
        "category": code_def.category,
        "classification": classify(status, code),
        "retryable": retryable,
        "retry_strategy": strategy,
        "error_hint": code_def.hint,
    }
    if code_def.support_url:
        body["support_url"] = code_def.support_url
    if retry_after_seconds is not None:
        body["retry_after_seconds"] = retry_after_seconds
    if internal_message and is_debug():
        body["internal_message"] = internal_message
    body.update(extra)
    return body
