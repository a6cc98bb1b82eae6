"""Logging for the Outlook gateway.

Everything logs under the ``outlook_gateway`` logger. Production output is
one JSON object per line; other environments get a readable line format
with the request id. OAuth tokens, refresh tokens and authorization codes
are masked by ``TokenRedactionFilter`` before any handler sees them.
"""

import json
import logging
import re
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from outlook_gateway.config import Settings, get_settings

ROOT_LOGGER = "outlook_gateway"

# Request id of the HTTP request being handled (X-Request-ID or Graph's client-request-id)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName", "extra_fields", "request_id"}

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9\-_.~+/=]+"),
    re.compile(r"(\b(?:access_token|refresh_token|id_token|code|client_secret)=)[^&\s\"']+"),
    re.compile(r"(\"(?:access_token|refresh_token|id_token|client_secret)\":\s*\")[^\"]+"),
)

_SECRET_KEYS = frozenset(
    {"access_token", "refresh_token", "id_token", "client_secret", "authorization", "client_state"}
)

REDACTED = "[redacted]"


def redact(text: str) -> str:
    """Mask bearer tokens and OAuth secrets in free text."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(rf"\1{REDACTED}", text)
    return text


def redact_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: REDACTED if key.lower() in _SECRET_KEYS else value
        for key, value in fields.items()
    }


class TokenRedactionFilter(logging.Filter):
    """Scrubs secrets from the message and structured fields of a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        scrubbed = redact(message)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        if isinstance(getattr(record, "extra_fields", None), dict):
            record.extra_fields = redact_fields(record.extra_fields)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
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

        log_data.update(getattr(record, "extra_fields", None) or {})
        log_data.update(
            {key: value for key, value in record.__dict__.items() if key not in _STANDARD_ATTRS}
        )
        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Readable single-line format for development and tests."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get() or "N/A"
        return super().format(record)


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Install the stdout handler on the gateway logger, replacing any earlier one."""
    settings = settings or get_settings()
    json_output = settings.is_production

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(settings.log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.log_level)
    handler.setFormatter(JSONFormatter() if json_output else StandardFormatter())
    handler.addFilter(TokenRedactionFilter())
    logger.addHandler(handler)
    logger.propagate = False

    # Third-party request logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment.value}, format={'JSON' if json_output else 'Standard'}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    **kwargs: Any,
) -> None:
    """Log a completed HTTP request with its timing."""
    extra_fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        **{key: value for key, value in kwargs.items() if value is not None},
    }
    get_logger("http").info(
        f"{method} {path} - {status_code} - {duration_ms:.2f}ms",
        extra={"extra_fields": extra_fields},
    )


def log_reconciliation(kind: str, account_name: str, received: int, accepted: int) -> None:
    """Log how many notifications in a delivery survived reconciliation."""
    get_logger("reconciliation").info(
        f"{kind}: {accepted} of {received} notification(s) accepted for {account_name}",
        extra={
            "extra_fields": {
                "webhook_kind": kind,
                "account": account_name,
                "received": received,
                "accepted": accepted,
                "suppressed": received - accepted,
            }
        },
    )


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    """Log an exception with its traceback and request context."""
    extra_fields = {
        "error_type": type(error).__name__,
        "error_message": redact(str(error)),
        "context": context or {},
        **kwargs,
    }
    get_logger("error").error(
        f"Error: {type(error).__name__}: {error}",
        exc_info=True,
        extra={"extra_fields": extra_fields},
    )
