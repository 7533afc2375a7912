"""
Logging configuration for the Riskmate proof pack service.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for audit events.

    Provides methods for logging pack exports, verification results,
    report run transitions and security-relevant actions.
    """

    def __init__(self, name: str = "riskmate.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def pack_requested(self, organization_id: str, user_id: str, time_range: str) -> None:
        self._log(
            logging.INFO,
            "PACK_EXPORT_REQUESTED",
            organization_id=organization_id,
            user_id=user_id,
            time_range=time_range,
            message=f"Audit pack requested for {organization_id}"
        )

    def pack_completed(
        self,
        pack_id: str,
        organization_id: str,
        manifest_hash: str,
        summary: dict,
        byte_length: int,
        duration_ms: int
    ) -> None:
        """Log a completed pack export."""
        self._log(
            logging.INFO,
            "PACK_EXPORT_COMPLETED",
            pack_id=pack_id,
            organization_id=organization_id,
            manifest_hash=manifest_hash,
            summary=summary,
            byte_length=byte_length,
            duration_ms=duration_ms,
            message=f"Audit pack {pack_id} generated"
        )

    def pack_failed(self, organization_id: str, code: str, reason: str, error_id: Optional[str] = None) -> None:
        """Log a failed pack export. Nothing was written to the ledger."""
        self._log(
            logging.ERROR,
            "PACK_EXPORT_FAILED",
            organization_id=organization_id,
            code=code,
            reason=reason,
            error_id=error_id,
            message=f"Audit pack failed: {code}"
        )

    def verification_result(
        self,
        target_type: str,
        target_id: str,
        ok: bool,
        reason: Optional[str] = None
    ) -> None:
        level = logging.INFO if ok else logging.WARNING
        self._log(
            level,
            "VERIFICATION_RESULT",
            target_type=target_type,
            target_id=target_id,
            ok=ok,
            reason=reason,
            message=f"Verification of {target_type} {target_id}: {'ok' if ok else 'MISMATCH'}"
        )

    def run_transition(self, run_id: str, from_status: str, to_status: str, actor_id: str) -> None:
        self._log(
            logging.INFO,
            "RUN_TRANSITION",
            run_id=run_id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            message=f"Report run {run_id}: {from_status} -> {to_status}"
        )

    def write_rejected(self, run_id: str, code: str, reason: str) -> None:
        """Log a write refused by the run lifecycle."""
        self._log(
            logging.WARNING,
            "RUN_WRITE_REJECTED",
            run_id=run_id,
            code=code,
            reason=reason,
            message=f"Write rejected for run {run_id}: {code}"
        )

    def api_error(
        self,
        code: str,
        status: int,
        error_id: str,
        path: str,
        detail: Optional[str] = None,
        exc_info: bool = False
    ) -> None:
        """Log an error response with its correlation id."""
        level = logging.ERROR if status >= 500 else logging.WARNING
        extra = {
            "event_type": "API_ERROR",
            "request_id": request_id_var.get(),
            "code": code,
            "status": status,
            "error_id": error_id,
            "path": path,
            "detail": detail,
        }
        self._logger.log(level, f"API_ERROR: {code} on {path}", exc_info=exc_info, extra={"extra_fields": extra})

    def rate_limit_exceeded(
        self,
        client_id: str,
        endpoint: str
    ) -> None:
        """Log rate limit exceeded."""
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
