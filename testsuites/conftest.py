"""
================================================================================
Root Pytest Configuration
================================================================================

This module provides the root pytest configuration for the entire test suite.

It registers common markers, wires the harness lifecycle into pytest and
provides the shared fixtures:

    - config            (session)  configuration loader
    - test_context      (session)  correlation context + run statistics
    - token_manager     (session)  shared bearer token
    - cleanup_registry  (session)  users deleted at suite end
    - http_client       (function) authenticated HTTP client
    - correlation       (autouse)  starts/ends the correlation record per test

================================================================================
"""

from __future__ import annotations

import uuid
from collections import Counter
from typing import Generator

import allure
import pytest
from loguru import logger

from testsuites.api_testing.framework import (
    CleanupRegistry,
    ConfigLoader,
    HttpClient,
    TestContext,
    TokenManager,
    init_logger,
)


_outcomes: Counter = Counter()


MARKERS = {
    # Priority
    "P0": "Critical - must pass before deployment",
    "P1": "High - core expense and user flows",
    "P2": "Medium - edge cases",
    # Type
    "smoke": "Quick health check of the deployed API",
    "regression": "Full regression run",
    "unit": "Harness unit tests (no remote service needed)",
    "requires_external": "Needs a reachable Expense Tracking API",
    # Domain
    "api": "Tests under api_testing",
    "auth": "Signin / token behaviour",
    "cleanup": "Tests that register users for suite-end deletion",
}


def pytest_configure(config):
    """Register the harness markers."""
    for name, description in MARKERS.items():
        config.addinivalue_line("markers", f"{name}: {description}")


def pytest_collection_modifyitems(config, items):
    """Auto-add directory markers to collected tests."""
    for item in items:
        parts = item.path.parts
        if "api_testing" in parts:
            item.add_marker(pytest.mark.api)
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)


def pytest_report_header(config):
    """Add custom header to pytest output."""
    return [
        "",
        "=" * 60,
        "Expense Tracking System - API Automation Harness",
        "=" * 60,
        "",
    ]


# =============================================================================
# Suite Listener Hooks
# =============================================================================

def pytest_sessionstart(session):
    init_logger(ConfigLoader())
    _outcomes.clear()
    logger.info("========================================")
    logger.info(f"Test Suite Started: {session.name}")
    logger.info("========================================")


def pytest_runtest_logreport(report):
    """Log one line per finished test."""
    name = report.nodeid.split("::")[-1]
    duration_ms = int(report.duration * 1000)

    if report.when == "call":
        if report.passed:
            _outcomes["passed"] += 1
            logger.info(f"PASSED: {name} ({duration_ms}ms)")
        elif report.failed:
            _outcomes["failed"] += 1
            logger.error(f"FAILED: {name} ({duration_ms}ms)")
            logger.error(f"Failure reason: {_failure_reason(report)}")
    if report.skipped and report.when in ("setup", "call"):
        _outcomes["skipped"] += 1
        logger.warning(f"SKIPPED: {name}")
    elif report.failed and report.when == "setup":
        _outcomes["failed"] += 1
        logger.error(f"FAILED (setup): {name} - {_failure_reason(report)}")


def pytest_sessionfinish(session, exitstatus):
    logger.info("========================================")
    logger.info(f"Test Suite Finished: {session.name}")
    logger.info(
        f"Passed: {_outcomes['passed']}, Failed: {_outcomes['failed']}, "
        f"Skipped: {_outcomes['skipped']}"
    )
    logger.info("========================================")


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Expose each phase report on the item (item.rep_setup, item.rep_call)."""
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)


def pytest_exception_interact(node, call, report):
    """Attach the stack trace to Allure on test failure."""
    if report.failed:
        allure.attach(
            report.longreprtext,
            name="Stack Trace",
            attachment_type=allure.attachment_type.TEXT,
        )


def _failure_reason(report) -> str:
    text = report.longreprtext or ""
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else "unknown"


# =============================================================================
# Session-Scoped Fixtures (Shared across all tests)
# =============================================================================

@pytest.fixture(scope="session")
def config() -> ConfigLoader:
    """
    Provide configuration loader instance.

    Session-scoped to ensure configuration is loaded only once.
    """
    loader = ConfigLoader()
    loader.log_configuration()
    return loader


@pytest.fixture(scope="session")
def test_context(config: ConfigLoader) -> Generator[TestContext, None, None]:
    """Correlation context; logs the run summary at the end of the session."""
    context = TestContext(
        slow_test_threshold_ms=int(config.get("reporting.slow_test_threshold_ms", 5000))
    )
    yield context
    context.log_summary()


@pytest.fixture(scope="session")
def token_manager(config: ConfigLoader) -> TokenManager:
    """Shared token for the default test identity."""
    return TokenManager(config)


@pytest.fixture(scope="session")
def cleanup_registry(
    config: ConfigLoader,
    token_manager: TokenManager,
    test_context: TestContext,
) -> Generator[CleanupRegistry, None, None]:
    """
    Registry of users created by tests.

    Usage:
        def test_signup(http_client, cleanup_registry, unique_email):
            outcome = http_client.post("/auth/signup", json=payload, authenticated=False)
            cleanup_registry.register(unique_email, payload["password"])

    All registered users are deleted once, after the last test.
    """
    registry = CleanupRegistry(config)
    yield registry

    logger.info("Starting test suite cleanup...")
    with HttpClient(config, token_manager, test_context) as client:
        registry.drain_and_cleanup(client)
    token_manager.clear_token()
    logger.info("Test suite cleanup complete")


# =============================================================================
# Function-Scoped Fixtures (Fresh for each test)
# =============================================================================

@pytest.fixture(autouse=True)
def correlation(request, test_context: TestContext) -> Generator[TestContext, None, None]:
    """Start a correlation record for every test and record its outcome."""
    test_class = request.module.__name__
    if request.cls is not None:
        test_class = f"{test_class}.{request.cls.__name__}"
    test_context.start_test(test_class, request.node.name)

    yield test_context

    failed = next(
        (
            report
            for report in (getattr(request.node, "rep_setup", None), getattr(request.node, "rep_call", None))
            if report is not None and report.failed
        ),
        None,
    )
    test_context.end_test(
        passed=failed is None,
        failure_reason=_failure_reason(failed) if failed is not None else None,
    )


@pytest.fixture
def http_client(
    config: ConfigLoader,
    token_manager: TokenManager,
    test_context: TestContext,
) -> Generator[HttpClient, None, None]:
    """
    Provide configured HTTP client for API requests.

    Usage:
        def test_example(http_client):
            outcome = http_client.get("/api/user/profile")
            assert outcome.status_code == 200
    """
    with HttpClient(config, token_manager, test_context) as client:
        yield client


@pytest.fixture
def unique_email() -> str:
    """Signup email that cannot collide with parallel workers or earlier runs."""
    return f"autotest_{uuid.uuid4().hex[:8]}@test.example.com"
