"""
================================================================================
Token Manager with Auto-Refresh and Caching
================================================================================

Manages the shared API authentication token with:
    - Lazy acquisition through the login endpoint
    - Automatic refresh before expiration (safety buffer)
    - Double-checked locking so concurrent tests trigger a single login
    - Administrative override with a token from a specific signup flow

The refresh path uses its own short-lived httpx client instead of HttpClient,
because HttpClient itself asks the token manager for credentials.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
from loguru import logger


# Default token validity (30 minutes in seconds)
DEFAULT_TOKEN_VALIDITY = 30 * 60

# Refresh token when less than this many seconds remain
TOKEN_REFRESH_BUFFER = 120

DEFAULT_SIGNIN_PATH = "/auth/signin"


class TokenError(Exception):
    """Raised when token operations fail."""
    pass


@dataclass(frozen=True)
class Credential:
    """Cached bearer token with issuance and expiry timestamps (epoch seconds)."""
    value: str
    issued_at: float
    expires_at: float

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("Credential must expire after it was issued")

    @classmethod
    def issue(cls, value: str, validity_seconds: float, now: float) -> "Credential":
        return cls(value=value, issued_at=now, expires_at=now + validity_seconds)

    def is_valid(self, now: float, buffer_seconds: float = TOKEN_REFRESH_BUFFER) -> bool:
        return now + buffer_seconds < self.expires_at


class TokenManager:
    """
    Token manager with automatic refresh.

    Features:
        - Single cached Credential, replaced as a whole on refresh
        - Cheap unlocked validity check, lock-guarded refresh
        - Refresh failures raise TokenError; a broken token is never cached

    Usage:
        >>> token_manager = TokenManager(config)
        >>> headers = token_manager.apply({})
        >>> # headers now contains "Authorization: Bearer <jwt>"
    """

    def __init__(
        self,
        config: Any = None,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize token manager.

        Args:
            config: ConfigLoader instance for configuration access
            transport: Optional httpx transport for the login call
            clock: Time source returning epoch seconds
        """
        self.config = config
        self._transport = transport
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()

        self.validity_seconds = float(
            self._setting("auth.token_validity_minutes", DEFAULT_TOKEN_VALIDITY // 60)
        ) * 60
        self.buffer_seconds = float(
            self._setting("auth.refresh_buffer_seconds", TOKEN_REFRESH_BUFFER)
        )

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def get_token(self) -> str:
        """
        Return a valid token, logging in first if needed.

        Raises:
            TokenError: When the login call fails or returns no token
        """
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock(), self.buffer_seconds):
            return credential.value

        with self._lock:
            # Double-check after acquiring lock
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock(), self.buffer_seconds):
                return credential.value

            value = self._request_new_token()
            credential = Credential.issue(value, self.validity_seconds, self._clock())
            self._credential = credential
            logger.info("Token refreshed and cached")
            return credential.value

    def set_token(self, value: str, validity_seconds: Optional[float] = None) -> None:
        """Install a token obtained elsewhere (e.g. a test's own signup)."""
        if not value:
            raise TokenError("Refusing to cache an empty token")
        validity = self.validity_seconds if validity_seconds is None else validity_seconds
        if validity <= 0:
            raise TokenError(f"Token validity must be positive, got {validity}s")
        with self._lock:
            self._credential = Credential.issue(value, validity, self._clock())
        logger.debug("Token set manually")

    def clear_token(self) -> None:
        """Invalidate the cached token; the next get_token logs in again."""
        with self._lock:
            self._credential = None
        logger.debug("Token cache cleared")

    def has_valid_token(self) -> bool:
        credential = self._credential
        return credential is not None and credential.is_valid(self._clock(), self.buffer_seconds)

    def apply(self, headers: Dict[str, str]) -> Dict[str, str]:
        """
        Apply the Authorization header to a copy of ``headers``.

        Refreshes the token if it is missing or about to expire.
        """
        result = dict(headers)
        result["Authorization"] = f"Bearer {self.get_token()}"
        return result

    def _request_new_token(self) -> str:
        """
        Log in with the default credentials and return the JWT.

        Raises:
            TokenError: On transport failure, non-200 status or missing jwt
        """
        base_url = self._setting("api.base_url", "http://localhost:8000")
        signin_path = self._setting("auth.signin_path", DEFAULT_SIGNIN_PATH)
        timeout = float(self._setting("api.response_timeout_ms", 10000)) / 1000
        payload = {
            "email": self._setting("auth.username"),
            "password": self._setting("auth.password"),
        }

        try:
            with httpx.Client(
                base_url=base_url, timeout=timeout, transport=self._transport
            ) as client:
                response = client.post(signin_path, json=payload)
        except httpx.HTTPError as e:
            raise TokenError(f"Failed to refresh authentication token: {e}") from e

        if response.status_code != 200:
            raise TokenError(
                f"Failed to refresh authentication token: login returned "
                f"{response.status_code}"
            )

        try:
            token = response.json().get("jwt")
        except (ValueError, AttributeError) as e:
            raise TokenError("Login response is not a JSON object") from e

        if not token:
            raise TokenError("JWT token not found in login response")
        return token

    def _setting(self, key: str, default: Any = None) -> Any:
        if self.config is None:
            return default
        return self.config.get(key, default)


__all__ = [
    "Credential",
    "TokenManager",
    "TokenError",
    "DEFAULT_TOKEN_VALIDITY",
    "TOKEN_REFRESH_BUFFER",
]
