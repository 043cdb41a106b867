"""
================================================================================
Request / Response Logger
================================================================================

Structured logging of API traffic with correlation IDs.

Every call produces two compact lines:
    [3F9A1C2B-R001] -> POST /auth/signin
    [3F9A1C2B-R001] <- 200 OK (84ms)

With request/response logging enabled in configuration, full dumps of
headers and bodies are emitted at DEBUG level. Sensitive headers and body
fields are masked and bodies are truncated before they reach any sink.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Mapping, Optional

import httpx
from loguru import logger


# Maximum body length written to logs
MAX_BODY_LOG_LENGTH = 1000

# Maximum length of the error reason shown in retry warnings
MAX_ERROR_REASON_LENGTH = 100

MASK = "***[MASKED]***"

SENSITIVE_KEY_PATTERN = re.compile(
    r"authorization|token|secret|password|api[-_]?key|cookie|session|jwt",
    re.IGNORECASE,
)

_SENSITIVE_TEXT_PATTERNS = [
    (re.compile(r'("password"\s*:\s*")[^"]+"'), r'\1***"'),
    (re.compile(r'("secret"\s*:\s*")[^"]+"'), r'\1***"'),
    (re.compile(r'("jwt"\s*:\s*")[^"]{20}[^"]*"'), r'\1[TOKEN_MASKED]..."'),
    (re.compile(r'("token"\s*:\s*")[^"]{20}[^"]*"'), r'\1[TOKEN_MASKED]..."'),
]

SEPARATOR = "=" * 80
SECTION_SEPARATOR = "-" * 80


# =============================================================================
# Masking helpers
# =============================================================================

def is_sensitive_key(key: str) -> bool:
    return bool(SENSITIVE_KEY_PATTERN.search(str(key)))


def mask_value(value: Any) -> str:
    """Mask a secret, keeping a short prefix and suffix of long values."""
    text = "" if value is None else str(value)
    if len(text) > 20:
        return f"{text[:15]}...{text[-5:]} [MASKED]"
    return MASK


def redact_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive header values before logging."""
    if not headers:
        return {}
    return {
        key: mask_value(value) if is_sensitive_key(key) else value
        for key, value in headers.items()
    }


def redact_body(payload: Any) -> Any:
    """Recursively mask sensitive fields in request/response bodies."""
    if isinstance(payload, dict):
        return {
            key: mask_value(value) if is_sensitive_key(key) else redact_body(value)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [redact_body(item) for item in payload]
    if isinstance(payload, str):
        return mask_sensitive_text(payload)
    return payload


def mask_sensitive_text(text: str) -> str:
    """Mask secrets inside raw JSON-looking text."""
    for pattern, replacement in _SENSITIVE_TEXT_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


# =============================================================================
# Formatting helpers
# =============================================================================

def truncate(text: str, limit: int = MAX_BODY_LOG_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... [TRUNCATED - {len(text)} chars total]"


def format_body(body: Any) -> str:
    """Pretty-print and mask a body (dict, list or JSON/plain text)."""
    if body is None:
        return ""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return truncate(mask_sensitive_text(body))
    try:
        text = json.dumps(redact_body(body), ensure_ascii=False, indent=2, default=str)
    except (TypeError, ValueError):
        text = mask_sensitive_text(str(body))
    return truncate(text)


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def extract_error_message(response: httpx.Response) -> str:
    """Pull a short reason out of an error response for retry warnings."""
    body = response.text
    if body:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            for field_name in ("message", "error"):
                if data.get(field_name):
                    return str(data[field_name])
        if len(body) > MAX_ERROR_REASON_LENGTH:
            return body[:MAX_ERROR_REASON_LENGTH] + "..."
        return body
    return f"Status {response.status_code}"


# =============================================================================
# Logger
# =============================================================================

class RequestResponseLogger:
    """
    Correlation-aware request/response logging.

    Args:
        request_enabled: Emit verbose request dumps (DEBUG)
        response_enabled: Emit verbose response dumps
    """

    def __init__(self, request_enabled: bool = True, response_enabled: bool = True) -> None:
        self.request_enabled = request_enabled
        self.response_enabled = response_enabled

    def log_request(
        self,
        request_id: str,
        method: str,
        url: str,
        headers: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> None:
        log = logger.bind(correlation_id=request_id)
        log.info(f"[{request_id}] -> {method} {url}")
        if not self.request_enabled:
            return

        lines = [
            "",
            SEPARATOR,
            f"| REQUEST [{request_id}]",
            SEPARATOR,
            f"| Method   : {method}",
            f"| Endpoint : {url}",
        ]
        safe_headers = redact_headers(headers)
        if safe_headers:
            lines += [SECTION_SEPARATOR, "| Headers:"]
            lines += [f"|   {name}: {value}" for name, value in safe_headers.items()]
        if params:
            lines += [SECTION_SEPARATOR, "| Query Params:"]
            lines += [f"|   {name}={value}" for name, value in params.items()]
        if body is not None:
            lines += [SECTION_SEPARATOR, "| Body:"]
            lines += [f"|   {line}" for line in format_body(body).splitlines()]
        lines.append(SEPARATOR)
        log.debug("\n".join(lines))

    def log_response(self, request_id: str, response: httpx.Response, duration_ms: int) -> None:
        log = logger.bind(correlation_id=request_id)
        status = response.status_code
        log.info(f"[{request_id}] <- {status} {response.reason_phrase} ({duration_ms}ms)")
        if not self.response_enabled:
            return

        lines = [
            "",
            SEPARATOR,
            f"| RESPONSE [{request_id}]",
            SEPARATOR,
            f"| Status   : {status} {response.reason_phrase}",
            f"| Duration : {duration_ms}ms",
            f"| Size     : {format_size(len(response.content))}",
        ]
        safe_headers = redact_headers(response.headers)
        if safe_headers:
            lines += [SECTION_SEPARATOR, "| Headers:"]
            lines += [f"|   {name}: {value}" for name, value in safe_headers.items()]
        if response.content:
            lines += [SECTION_SEPARATOR, "| Body:"]
            lines += [f"|   {line}" for line in format_body(response.text).splitlines()]
        lines.append(SEPARATOR)

        dump = "\n".join(lines)
        if status >= 500:
            log.error(dump)
        elif status >= 400:
            log.warning(dump)
        else:
            log.debug(dump)

    def log_retry(
        self,
        request_id: str,
        operation: str,
        attempt: int,
        max_attempts: int,
        reason: str,
        status_code: Optional[int] = None,
    ) -> None:
        logger.bind(correlation_id=request_id).warning(
            f"[{request_id}] RETRY {attempt}/{max_attempts} for {operation} - "
            f"Status: {status_code if status_code is not None else 'n/a'}, "
            f"Reason: {truncate(reason, MAX_ERROR_REASON_LENGTH)}"
        )

    def log_request_failure(self, request_id: str, operation: str, error: Exception) -> None:
        log = logger.bind(correlation_id=request_id)
        log.error(
            f"[{request_id}] REQUEST FAILED: {operation} - "
            f"{type(error).__name__}: {error}"
        )
        log.opt(exception=error).debug(f"[{request_id}] Stack trace:")

    @staticmethod
    def log_step(description: str) -> None:
        logger.info(f"  -> {description}")


__all__ = [
    "RequestResponseLogger",
    "extract_error_message",
    "format_body",
    "format_size",
    "mask_sensitive_text",
    "mask_value",
    "redact_body",
    "redact_headers",
    "MAX_BODY_LOG_LENGTH",
]
