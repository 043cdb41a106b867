import pytest
import yaml

from testsuites.api_testing.framework.config_loader import (
    ConfigLoader,
    ConfigurationError,
    env_key,
)


@pytest.fixture(autouse=True)
def _fresh_loader(monkeypatch):
    for name in ("API_BASE_URL", "API_RETRY_COUNT", "LOGGING_REQUEST_ENABLED", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)
    ConfigLoader.reset()
    yield
    ConfigLoader.reset()


def test_env_override_and_defaults(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.dump({"api": {"base_url": "http://example.com", "retry_count": 2}}),
        encoding="utf-8",
    )

    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.base_url") == "http://example.com"
    assert loader.get("api.retry_delay_ms", 1000) == 1000

    ConfigLoader.reset()
    monkeypatch.setenv("API_BASE_URL", "http://env.example.com")
    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.base_url") == "http://env.example.com"


def test_env_values_are_converted_to_default_type(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({"api": {"retry_count": 3}}), encoding="utf-8")
    monkeypatch.setenv("API_RETRY_COUNT", "5")
    monkeypatch.setenv("LOGGING_REQUEST_ENABLED", "false")

    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.retry_count", 3) == 5
    assert loader.get("logging.request_enabled", True) is False


def test_base_url_comes_from_active_environment(monkeypatch, tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.dump({
            "environment": "qa",
            "environments": {
                "qa": {"base_url": "http://qa.example.com"},
                "staging": {"base_url": "http://staging.example.com"},
            },
        }),
        encoding="utf-8",
    )

    loader = ConfigLoader(config_path=config_path)
    assert loader.environment == "qa"
    assert loader.get("api.base_url") == "http://qa.example.com"

    ConfigLoader.reset()
    monkeypatch.setenv("ENVIRONMENT", "STAGING")
    loader = ConfigLoader(config_path=config_path)
    assert loader.environment == "staging"
    assert loader.get("api.base_url") == "http://staging.example.com"


def test_explicit_base_url_wins_over_environment_section(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.dump({
            "environment": "qa",
            "environments": {"qa": {"base_url": "http://qa.example.com"}},
            "api": {"base_url": "http://pinned.example.com"},
        }),
        encoding="utf-8",
    )

    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.base_url") == "http://pinned.example.com"


def test_reload_updates_values(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({"api": {"retry_count": 5}}), encoding="utf-8")

    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.retry_count") == 5

    config_path.write_text(yaml.dump({"api": {"retry_count": 1}}), encoding="utf-8")
    loader.reload()
    assert loader.get("api.retry_count") == 1


def test_missing_file_falls_back_to_defaults(tmp_path):
    loader = ConfigLoader(config_path=tmp_path / "absent.yaml")
    assert loader.get("api.retry_count", 3) == 3
    assert loader.get("api.base_url") is None


def test_invalid_yaml_raises_configuration_error(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("api: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigLoader(config_path=config_path)


def test_ci_detected_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    loader = ConfigLoader(config_path=tmp_path / "absent.yaml")
    assert loader.is_ci() is True


def test_env_key_naming():
    assert env_key("api.base_url") == "API_BASE_URL"
    assert env_key("auth.refresh_buffer_seconds") == "AUTH_REFRESH_BUFFER_SECONDS"


def test_null_api_section_uses_environment_base_url(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "api:\nenvironments:\n  qa:\n    base_url: http://qa.example.com\n",
        encoding="utf-8",
    )

    loader = ConfigLoader(config_path=config_path)
    assert loader.get("api.base_url") == "http://qa.example.com"
    assert loader.get("api.retry_count", 3) == 3


@pytest.mark.parametrize(
    "content",
    [
        "api: http://not-a-section\n",
        "environments:\n  qa: http://qa.example.com\n",
        "environments: [qa, staging]\n",
    ],
)
def test_malformed_section_raises_configuration_error(tmp_path, content):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigLoader(config_path=config_path)
