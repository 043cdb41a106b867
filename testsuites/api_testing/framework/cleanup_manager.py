"""
================================================================================
Test User Cleanup Manager
================================================================================

Tracks users created by tests (signups) so they can be deleted when the
suite ends, whichever test created them and whether it passed or not.

Lifecycle:
    1. Tests call register() right after a successful signup
    2. Tests that change a user's password call update_secret()
    3. Suite teardown calls drain_and_cleanup() once, after all tests

Each user is deleted with its own credentials:
    login (unless a fresh token is cached) -> profile lookup (unless the
    id is known) -> DELETE. A failing user is counted and logged; it never
    stops the batch or fails the suite.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Union

import allure
from loguru import logger

from .http_client import HttpClient
from .request_logger import RequestResponseLogger
from .token_manager import (
    DEFAULT_SIGNIN_PATH,
    DEFAULT_TOKEN_VALIDITY,
    TOKEN_REFRESH_BUFFER,
    Credential,
)


DEFAULT_PROFILE_PATH = "/api/user/profile"
DEFAULT_DELETE_PATH = "/api/user/{id}"

DELETE_SUCCESS_CODES = (200, 204)


class CleanupError(Exception):
    """Raised internally when a single user cannot be deleted."""
    pass


@dataclass(frozen=True)
class CleanupEntry:
    """A test-created user awaiting deletion."""
    identity: str
    secret: str
    token: Optional[Credential] = None
    resolved_id: Optional[int] = None

    def __repr__(self) -> str:
        return f"CleanupEntry(identity={self.identity!r}, resolved_id={self.resolved_id!r})"


@dataclass
class CleanupSummary:
    """Result of one drain."""
    total: int = 0
    deleted: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)


class CleanupRegistry:
    """
    Append-only registry of users to delete at suite end.

    register() never takes the lock (list.append is atomic), so parallel
    tests do not wait on each other. update_secret() and the drain take it.

    Usage:
        >>> registry = CleanupRegistry(config)
        >>> registry.register("user@test.example.com", "Secret123!")
        >>> with HttpClient(config) as client:
        ...     summary = registry.drain_and_cleanup(client)
    """

    def __init__(self, config=None, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self._clock = clock
        self._entries: List[CleanupEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[CleanupEntry]:
        return list(self._entries)

    def register(
        self,
        identity: str,
        secret: str,
        resolved_id: Optional[int] = None,
        token: Union[Credential, str, None] = None,
    ) -> None:
        """Register a created user for deletion at suite end."""
        if isinstance(token, str):
            token = Credential.issue(token, self._token_validity(), self._clock()) if token else None
        self._entries.append(
            CleanupEntry(identity=identity, secret=secret, token=token, resolved_id=resolved_id)
        )
        logger.info(
            f"[CLEANUP] Registered user for cleanup: {identity} (Total: {len(self._entries)})"
        )

    def update_secret(self, identity: str, new_secret: str) -> bool:
        """
        Replace the password of a registered user and drop its cached token.

        Returns:
            True when the user was found
        """
        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.identity == identity:
                    self._entries[index] = replace(entry, secret=new_secret, token=None)
                    logger.info(f"[CLEANUP] Updated password for user: {identity}")
                    return True
        logger.warning(f"[CLEANUP] No registered user to update: {identity}")
        return False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def drain_and_cleanup(self, client: HttpClient) -> CleanupSummary:
        """
        Delete every registered user and empty the registry.

        Failures are logged and counted, never raised.
        """
        with self._lock:
            entries = list(self._entries)

        summary = CleanupSummary(total=len(entries))
        logger.info("=" * 60)
        logger.info("TEST USER CLEANUP STARTING")
        logger.info("=" * 60)

        try:
            if not entries:
                logger.info("No test users to cleanup")
                return summary

            logger.info(f"Total users to cleanup: {len(entries)}")
            logger.info("-" * 60)

            with allure.step(f"Cleanup {len(entries)} test user(s)"):
                for entry in entries:
                    RequestResponseLogger.log_step(f"Deleting test user {entry.identity}")
                    try:
                        self._delete_user(entry, client)
                    except Exception as e:
                        summary.failed += 1
                        summary.failures.append(f"{entry.identity}: {e}")
                        logger.warning(f"[FAILED]  Could not delete user {entry.identity}: {e}")
                    else:
                        summary.deleted += 1
                        logger.info(f"[SUCCESS] Deleted user: {entry.identity}")

            logger.info("-" * 60)
            logger.info("CLEANUP SUMMARY")
            logger.info(f"  Total Users:    {summary.total}")
            logger.info(f"  Deleted:        {summary.deleted}")
            logger.info(f"  Failed:         {summary.failed}")
            return summary
        finally:
            with self._lock:
                del self._entries[:len(entries)]
            logger.info("=" * 60)

    def _delete_user(self, entry: CleanupEntry, client: HttpClient) -> None:
        token = self._resolve_token(entry, client)
        auth_headers = {"Authorization": f"Bearer {token}"}

        user_id = entry.resolved_id
        if user_id is None:
            profile = client.execute(
                "GET",
                self._setting("cleanup.profile_path", DEFAULT_PROFILE_PATH),
                headers=auth_headers,
                authenticated=False,
            )
            if profile.status_code != 200:
                raise CleanupError(f"Could not get profile. Status: {profile.status_code}")
            try:
                user_id = profile.json()["id"]
            except (ValueError, KeyError, TypeError) as e:
                raise CleanupError("Profile response has no user id") from e

        delete_path = self._setting("cleanup.delete_path", DEFAULT_DELETE_PATH)
        response = client.execute(
            "DELETE",
            delete_path.format(id=user_id),
            headers=auth_headers,
            authenticated=False,
        )
        if response.status_code not in DELETE_SUCCESS_CODES:
            raise CleanupError(f"Delete API returned status: {response.status_code}")

    def _resolve_token(self, entry: CleanupEntry, client: HttpClient) -> str:
        buffer_seconds = float(self._setting("auth.refresh_buffer_seconds", TOKEN_REFRESH_BUFFER))
        if entry.token is not None and entry.token.is_valid(self._clock(), buffer_seconds):
            return entry.token.value

        response = client.execute(
            "POST",
            self._setting("auth.signin_path", DEFAULT_SIGNIN_PATH),
            {"email": entry.identity, "password": entry.secret},
            authenticated=False,
        )
        if response.status_code != 200:
            raise CleanupError(f"Login failed. Status: {response.status_code}")
        try:
            token = response.json().get("jwt")
        except (ValueError, AttributeError) as e:
            raise CleanupError("Login response is not a JSON object") from e
        if not token:
            raise CleanupError("JWT token not found in login response")
        return token

    def _token_validity(self) -> float:
        return float(self._setting("auth.token_validity_minutes", DEFAULT_TOKEN_VALIDITY // 60)) * 60

    def _setting(self, key: str, default=None):
        if self.config is None:
            return default
        return self.config.get(key, default)


__all__ = [
    "CleanupEntry",
    "CleanupError",
    "CleanupRegistry",
    "CleanupSummary",
]
