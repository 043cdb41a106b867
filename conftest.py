"""
Repository-level pytest configuration.

Selects the target environment when neither the user nor CI picked one, so
``environments.<env>.base_url`` in config/config.yaml always resolves.

Credentials in config/config.yaml are placeholders. CI should inject
AUTH_USERNAME / AUTH_PASSWORD (or API_BASE_URL) as environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import pytest


DEFAULT_ENVIRONMENT = "qa"


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return repo root path."""
    return Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def default_environment() -> Generator[str, None, None]:
    """Default ENVIRONMENT to qa for the session unless already set."""
    environment = os.environ.setdefault("ENVIRONMENT", DEFAULT_ENVIRONMENT)
    yield environment
