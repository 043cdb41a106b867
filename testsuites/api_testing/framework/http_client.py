"""
================================================================================
HTTP Client with Retry, Correlation and Allure Integration
================================================================================

Executes API calls for the test suites with:
    - Linear backoff retry on server errors (5xx) and network failures
    - No retry on client errors (4xx) - those are test outcomes
    - A correlation ID per call, shared by request and response log lines
    - Bearer authentication through TokenManager
    - Allure steps with masked headers/body and a cURL command

Outcome policy:
    - status < 500             -> returned immediately
    - status >= 500            -> retried; the last 5xx is returned when
                                  attempts run out
    - network/timeout failure  -> retried; RequestFailedError when attempts
                                  run out

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

import allure
import httpx
from allure_commons.types import AttachmentType
from loguru import logger

from .correlation_context import TestContext
from .request_logger import (
    RequestResponseLogger,
    extract_error_message,
    redact_body,
    redact_headers,
    truncate,
)
from .token_manager import TokenManager


# Maximum response length to include in Allure reports
MAX_RESPONSE_LENGTH = 3000

# Default retry settings
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY_MS = 1000

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_CONNECTION_TIMEOUT_MS = 5000
DEFAULT_RESPONSE_TIMEOUT_MS = 10000


RequestBuilder = Callable[[Dict[str, Any]], Dict[str, Any]]


class HttpClientError(Exception):
    """Base exception for HTTP client errors."""
    pass


class RequestFailedError(HttpClientError):
    """Raised when no response could be obtained after all attempts."""

    def __init__(self, operation: str, attempts: int, cause: Exception) -> None:
        super().__init__(f"Request failed after {attempts} attempt(s): {operation} ({cause})")
        self.operation = operation
        self.attempts = attempts


@dataclass(frozen=True)
class RequestOutcome:
    """Normalized result of one logical API call."""
    status_code: int
    body: str
    duration_ms: int
    attempts: int
    method: str = ""
    path: str = ""
    correlation_id: str = ""
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.body)


class HttpClient:
    """
    API client with built-in resilience and reporting.

    Usage:
        >>> config = ConfigLoader()
        >>> with HttpClient(config, token_manager, context) as client:
        ...     outcome = client.get("/api/user/profile")
        ...     print(outcome.status_code, outcome.json())
    """

    def __init__(
        self,
        config: Any = None,
        token_manager: Optional[TokenManager] = None,
        context: Optional[TestContext] = None,
        transport: Optional[httpx.BaseTransport] = None,
        retry_count: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ) -> None:
        """
        Initialize HTTP client with configuration.

        Args:
            config: ConfigLoader (or any object with ``get(key, default)``)
            token_manager: Source of the shared bearer token
            context: Correlation context; a private one is created if None
            transport: Optional httpx transport (tests use MockTransport)
            retry_count: Total attempts per call, overrides api.retry_count
            retry_delay_ms: Backoff base, overrides api.retry_delay_ms
        """
        self.config = config
        self.base_url = self._setting("api.base_url", DEFAULT_BASE_URL)
        self.retry_count = max(1, int(
            retry_count if retry_count is not None
            else self._setting("api.retry_count", DEFAULT_RETRY_COUNT)
        ))
        self.retry_delay_ms = int(
            retry_delay_ms if retry_delay_ms is not None
            else self._setting("api.retry_delay_ms", DEFAULT_RETRY_DELAY_MS)
        )
        self.connection_timeout_ms = int(
            self._setting("api.connection_timeout_ms", DEFAULT_CONNECTION_TIMEOUT_MS)
        )
        self.response_timeout_ms = int(
            self._setting("api.response_timeout_ms", DEFAULT_RESPONSE_TIMEOUT_MS)
        )

        self.token_manager = token_manager
        self.context = context or TestContext()
        self.request_logger = RequestResponseLogger(
            request_enabled=bool(self._setting("logging.request_enabled", True)),
            response_enabled=bool(self._setting("logging.response_enabled", True)),
        )

        self._transport = transport
        self.session: Optional[httpx.Client] = None

    def __enter__(self) -> "HttpClient":
        """Enter context manager - initialize HTTP session."""
        self.session = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                self.response_timeout_ms / 1000,
                connect=self.connection_timeout_ms / 1000,
            ),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=self._transport,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - close HTTP session."""
        if self.session:
            self.session.close()
            self.session = None

    # ==========================================================================
    # Public API
    # ==========================================================================

    def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        request_builder: Optional[RequestBuilder] = None,
        **kwargs: Any,
    ) -> RequestOutcome:
        """
        Execute a call with retry on 5xx and network errors.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, PATCH)
            path: Request path (relative to base_url)
            body: JSON body
            request_builder: Callable adjusting the httpx request kwargs
            **kwargs: Extra httpx request arguments (params, headers, ...);
                ``authenticated=False`` skips the bearer token

        Returns:
            RequestOutcome of the first non-5xx response, or the last 5xx

        Raises:
            RequestFailedError: When every attempt failed without a response
            TokenError: When a bearer token is required but cannot be obtained
        """
        return self._execute(method, path, body, request_builder, self.retry_count, kwargs)

    def execute_once(
        self,
        method: str,
        path: str,
        body: Any = None,
        request_builder: Optional[RequestBuilder] = None,
        **kwargs: Any,
    ) -> RequestOutcome:
        """
        Execute a call with a single attempt.

        Meant for negative tests that expect an error status and should not
        wait through retries.
        """
        return self._execute(method, path, body, request_builder, 1, kwargs)

    def request(self, method: str, url: str, *, retry: bool = True, **kwargs: Any) -> RequestOutcome:
        """Execute a request; ``json=`` carries the body."""
        body = kwargs.pop("json", None)
        if retry:
            return self.execute(method, url, body, **kwargs)
        return self.execute_once(method, url, body, **kwargs)

    def get(self, url: str, **kwargs: Any) -> RequestOutcome:
        """Execute GET request."""
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> RequestOutcome:
        """Execute POST request."""
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> RequestOutcome:
        """Execute PUT request."""
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> RequestOutcome:
        """Execute PATCH request."""
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> RequestOutcome:
        """Execute DELETE request."""
        return self.request("DELETE", url, **kwargs)

    # ==========================================================================
    # Execution
    # ==========================================================================

    def _execute(
        self,
        method: str,
        path: str,
        body: Any,
        request_builder: Optional[RequestBuilder],
        max_attempts: int,
        kwargs: Dict[str, Any],
    ) -> RequestOutcome:
        if self.session is None:
            raise HttpClientError(
                "HttpClient must be used within a context manager. "
                "Use 'with HttpClient() as client:'"
            )

        method = method.upper()
        authenticated = kwargs.pop("authenticated", True)
        request_kwargs = self._build_request_kwargs(body, authenticated, kwargs)
        if request_builder is not None:
            request_kwargs = request_builder(request_kwargs)

        request_id = self.context.register_request()
        operation = f"{method} {path}"
        log = logger.bind(correlation_id=request_id)
        started = time.monotonic()

        self.request_logger.log_request(
            request_id,
            method,
            path,
            headers=self._merged_headers(request_kwargs.get("headers")),
            body=request_kwargs.get("json"),
            params=request_kwargs.get("params"),
        )

        response: Optional[httpx.Response] = None
        last_exception: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self.session.request(method, path, **request_kwargs)
            except httpx.TransportError as e:
                last_exception = e
                self.request_logger.log_request_failure(request_id, operation, e)
                if attempt < max_attempts:
                    log.warning(
                        f"[{request_id}] Retrying after exception ({attempt}/{max_attempts})"
                    )
                    self._backoff(attempt)
                continue

            if response.status_code < 500:
                return self._complete(
                    request_id, operation, method, path, request_kwargs,
                    response, attempt, started,
                )

            if attempt < max_attempts:
                self.request_logger.log_retry(
                    request_id,
                    operation,
                    attempt,
                    max_attempts,
                    extract_error_message(response),
                    status_code=response.status_code,
                )
                self._backoff(attempt)

        if response is not None:
            outcome = self._complete(
                request_id, operation, method, path, request_kwargs,
                response, max_attempts, started,
            )
            if max_attempts > 1:
                log.error(
                    f"[{request_id}] {operation} failed after {max_attempts} attempts "
                    f"with status {response.status_code}"
                )
            return outcome

        raise RequestFailedError(operation, max_attempts, last_exception) from last_exception

    def _complete(
        self,
        request_id: str,
        operation: str,
        method: str,
        path: str,
        request_kwargs: Dict[str, Any],
        response: httpx.Response,
        attempts: int,
        started: float,
    ) -> RequestOutcome:
        duration_ms = int((time.monotonic() - started) * 1000)
        self.request_logger.log_response(request_id, response, duration_ms)

        status = response.status_code
        log = logger.bind(correlation_id=request_id)
        if status >= 500:
            if attempts == 1:
                log.warning(
                    f"[{request_id}] {operation} completed with server error "
                    f"{status} in {duration_ms}ms (no retry)"
                )
        elif status >= 400:
            log.warning(
                f"[{request_id}] {operation} completed with client error "
                f"{status} in {duration_ms}ms"
            )
        else:
            log.info(
                f"[{request_id}] {operation} completed successfully "
                f"{status} in {duration_ms}ms"
            )

        self._log_to_allure(method, path, request_kwargs, response)

        return RequestOutcome(
            status_code=status,
            body=response.text,
            duration_ms=duration_ms,
            attempts=attempts,
            method=method,
            path=path,
            correlation_id=request_id,
            headers=MappingProxyType(dict(response.headers)),
        )

    def _build_request_kwargs(
        self,
        body: Any,
        authenticated: bool,
        kwargs: Dict[str, Any],
    ) -> Dict[str, Any]:
        request_kwargs = dict(kwargs)
        headers = dict(request_kwargs.pop("headers", None) or {})
        if authenticated and self.token_manager is not None:
            headers = self.token_manager.apply(headers)
        if headers:
            request_kwargs["headers"] = headers
        if body is not None:
            request_kwargs["json"] = body
        return request_kwargs

    def _merged_headers(self, headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
        merged = dict(self.session.headers) if self.session else {}
        merged.update(headers or {})
        return merged

    def _backoff(self, attempt: int) -> None:
        """Linear backoff: attempt * retry_delay_ms."""
        self._sleep(attempt * self.retry_delay_ms / 1000)

    def _sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def _setting(self, key: str, default: Any) -> Any:
        if self.config is None:
            return default
        return self.config.get(key, default)

    # ==========================================================================
    # Allure reporting
    # ==========================================================================

    def _log_to_allure(
        self,
        method: str,
        url: str,
        kwargs: Dict[str, Any],
        response: httpx.Response,
    ) -> None:
        """
        Log HTTP request/response to Allure report.

        Attaches:
            - Request URL with query parameters
            - Request headers and body (masked)
            - cURL command for reproduction
            - Response status and body (truncated if too long)
        """
        full_url = str(response.request.url)

        status_mark = "PASS" if response.status_code < 400 else "FAIL"
        step_title = f"[{status_mark}] {method} {url} -> {response.status_code}"

        with allure.step(step_title):
            allure.attach(full_url, name="Request URL", attachment_type=AttachmentType.TEXT)

            safe_headers = redact_headers(self._merged_headers(kwargs.get("headers")))
            if safe_headers:
                allure.attach(
                    json.dumps(safe_headers, ensure_ascii=False, indent=2),
                    name="Request Headers",
                    attachment_type=AttachmentType.JSON,
                )

            safe_body = redact_body(kwargs.get("json"))
            if safe_body:
                allure.attach(
                    json.dumps(safe_body, ensure_ascii=False, indent=2, default=str),
                    name="Request Body",
                    attachment_type=AttachmentType.JSON,
                )

            allure.attach(
                self._build_curl(method, full_url, safe_headers, safe_body),
                name="cURL Command",
                attachment_type=AttachmentType.TEXT,
            )

            allure.attach(
                f"{status_mark} {response.status_code}",
                name="Response Status",
                attachment_type=AttachmentType.TEXT,
            )

            try:
                response_content = json.dumps(
                    redact_body(response.json()), ensure_ascii=False, indent=2
                )
            except ValueError:
                response_content = response.text or "<empty>"

            allure.attach(
                truncate(response_content, MAX_RESPONSE_LENGTH),
                name="Response Body",
                attachment_type=AttachmentType.JSON,
            )

    @staticmethod
    def _build_curl(
        method: str,
        url: str,
        headers: Dict[str, Any],
        body: Any,
    ) -> str:
        """Build a copy-paste ready cURL command (headers already masked)."""
        parts = [f"curl -X {method}"]
        for key, value in headers.items():
            parts.append(f"-H '{key}: {value}'")
        if body:
            parts.append(f"-d '{json.dumps(body, ensure_ascii=False, default=str)}'")
        parts.append(f"'{url}'")
        return " \\\n  ".join(parts)


__all__ = [
    "HttpClient",
    "HttpClientError",
    "RequestFailedError",
    "RequestOutcome",
]
