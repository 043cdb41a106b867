"""
================================================================================
API Testing Framework
================================================================================

Resilient-call and token-lifecycle core of the API automation harness.

Modules:
    - config_loader: YAML configuration management
    - log_config: Loguru sink setup
    - correlation_context: Per-test correlation IDs and run statistics
    - token_manager: Shared authentication token with auto-refresh
    - request_logger: Masked request/response logging
    - http_client: HTTP client with retry and Allure logging
    - cleanup_manager: Suite-end deletion of test-created users

Author: Automation Team
License: MIT
================================================================================
"""

from .cleanup_manager import CleanupEntry, CleanupRegistry, CleanupSummary
from .config_loader import ConfigLoader, ConfigurationError
from .correlation_context import CorrelationRecord, TestContext, TestStats
from .http_client import HttpClient, HttpClientError, RequestFailedError, RequestOutcome
from .log_config import init_logger
from .request_logger import RequestResponseLogger
from .token_manager import Credential, TokenError, TokenManager

__all__ = [
    "CleanupEntry",
    "CleanupRegistry",
    "CleanupSummary",
    "ConfigLoader",
    "ConfigurationError",
    "CorrelationRecord",
    "Credential",
    "HttpClient",
    "HttpClientError",
    "RequestFailedError",
    "RequestOutcome",
    "RequestResponseLogger",
    "TestContext",
    "TestStats",
    "TokenError",
    "TokenManager",
    "init_logger",
]
