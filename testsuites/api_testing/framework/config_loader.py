"""
================================================================================
Configuration Loader
================================================================================

Harness settings from config/config.yaml, overridable per key from the
process environment.

Lookup order for ``get("api.retry_count", 3)``:
    1. API_RETRY_COUNT environment variable (coerced to the default's type)
    2. api -> retry_count in the YAML file
    3. the default argument

``api.base_url`` is resolved once at load time: an explicit value wins,
otherwise ``environments.<active environment>.base_url`` is used. The
active environment is ENVIRONMENT, then the top-level ``environment`` key,
then "qa".

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent.parent / "config" / "config.yaml"

DEFAULT_ENVIRONMENT = "qa"

# Environment variables set by common CI systems
CI_ENV_MARKERS = ("CI", "JENKINS_HOME", "GITHUB_ACTIONS")

_TRUE_STRINGS = ("true", "1", "yes", "on")


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be parsed or has a malformed section."""
    pass


def env_key(key: str) -> str:
    """Environment variable name overriding a dotted key."""
    return key.upper().replace(".", "_")


def _coerce(raw: str, reference: Any) -> Any:
    # bool first: bool is a subclass of int
    if isinstance(reference, bool):
        return raw.strip().lower() in _TRUE_STRINGS
    for kind in (int, float):
        if isinstance(reference, kind):
            try:
                return kind(raw)
            except ValueError:
                return raw
    return raw


def _lookup(tree: Dict[str, Any], key: str) -> Any:
    node: Any = tree
    for part in key.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


class ConfigLoader:
    """
    Process-wide configuration (one instance per process).

    Usage:
        >>> config = ConfigLoader()
        >>> config.get("api.retry_count", 3)
        3
        >>> config.environment
        'qa'

    Tests that need a different file call ``ConfigLoader.reset()`` first.
    """

    _instance: Optional["ConfigLoader"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls, config_path: Optional[Path] = None) -> "ConfigLoader":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None) -> None:
        if getattr(self, "_initialized", False):
            return
        self._config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._load_config()
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Forget the loaded instance; the next ConfigLoader() reads the file again."""
        cls._instance = None
        cls._config = {}

    @property
    def config_path(self) -> Path:
        return self._config_path

    # ==========================================================================
    # Loading
    # ==========================================================================

    def _load_config(self) -> None:
        if not self._config_path.exists():
            logger.warning(
                f"Config file {self._config_path} not found, "
                f"using defaults and environment variables"
            )
            self._config = {}
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {self._config_path}: {e}") from e

        self._config = loaded if isinstance(loaded, dict) else {}
        logger.debug(f"Config loaded: {self._config_path}")
        self._resolve_base_url()

    def _resolve_base_url(self) -> None:
        # A bare "api:" key loads as None
        api = self._mapping(self._config.get("api"), "api")
        self._config["api"] = api
        if api.get("base_url"):
            return

        environment = self.environment
        environments = self._mapping(self._config.get("environments"), "environments")
        section = self._mapping(environments.get(environment), f"environments.{environment}")
        if section.get("base_url"):
            api["base_url"] = section["base_url"]
            logger.debug(f"Base URL for '{environment}': {api['base_url']}")

    def _mapping(self, value: Any, name: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ConfigurationError(
                f"Section '{name}' in {self._config_path} must be a mapping, "
                f"got {type(value).__name__}"
            )
        return value

    def reload(self) -> None:
        """Re-read the file (environment overrides always apply live)."""
        self._load_config()
        logger.info(f"Config reloaded: {self._config_path}")

    # ==========================================================================
    # Access
    # ==========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Value for a dotted key; see module docstring for lookup order."""
        raw = os.environ.get(env_key(key))
        if raw is not None:
            return raw if default is None else _coerce(raw, default)

        value = _lookup(self._config, key)
        return default if value is None else value

    @property
    def environment(self) -> str:
        env = os.environ.get("ENVIRONMENT") or self._config.get("environment")
        return str(env or DEFAULT_ENVIRONMENT).lower()

    def is_ci(self) -> bool:
        if self.get("ci.environment", False):
            return True
        return any(os.environ.get(marker) for marker in CI_ENV_MARKERS)

    def log_configuration(self) -> None:
        """Log the effective settings; the password is never printed."""
        rows = [
            ("Environment", self.environment),
            ("Base URL", self.get("api.base_url")),
            ("Username", self.get("auth.username")),
            ("Conn Timeout", f"{self.get('api.connection_timeout_ms', 5000)}ms"),
            ("Resp Timeout", f"{self.get('api.response_timeout_ms', 10000)}ms"),
            ("Retry Count", self.get("api.retry_count", 3)),
            ("Retry Delay", f"{self.get('api.retry_delay_ms', 1000)}ms"),
            ("Request Logging", self.get("logging.request_enabled", True)),
            ("Response Logging", self.get("logging.response_enabled", True)),
            ("CI Environment", self.is_ci()),
        ]
        logger.info("=" * 60)
        logger.info("EXPENSE TRACKING SYSTEM - API AUTOMATION CONFIGURATION")
        logger.info("=" * 60)
        for label, value in rows:
            logger.info(f"{label:<16}: {value}")
        logger.info("=" * 60)


__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "env_key",
]
