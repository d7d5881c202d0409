import json
from pathlib import Path

import pytest

from webpilot.config.gateway_config import GatewayConfig, host_matches, load_gateway_config

SAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "webpilot.yaml"

_ENV_VARS = (
    "PORT",
    "WEBPILOT_HEADLESS",
    "WEBPILOT_MAX_SESSIONS",
    "WEBPILOT_SESSION_IDLE_SECS",
    "WEBPILOT_SWEEP_INTERVAL_SECS",
    "WEBPILOT_HTTP_HOST",
    "WEBPILOT_SCREENSHOT_DIR",
    "WEBPILOT_SINGLE_PROCESS",
    "WEBPILOT_BROWSER_EXECUTABLE_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_gateway_config()

    assert config.engine.headless is True
    assert config.sessions.max_sessions == 5
    assert config.http.port == 10000
    assert config.http.cors_origins == ["*"]
    assert config.timeouts.for_tool("navigate_to_url") == 45_000
    assert config.timeouts.for_tool("unlisted_tool") == config.timeouts.default_ms


def test_sample_yaml_with_env_indirection(monkeypatch):
    monkeypatch.setenv("INTRANET_USER", "alice")
    monkeypatch.setenv("INTRANET_PASSWORD", "s3cret")

    config = load_gateway_config(SAMPLE_CONFIG)

    creds = config.credentials_for("intranet.example.com")
    assert creds is not None and creds.usable
    assert (creds.username, creds.password) == ("alice", "s3cret")
    assert config.sessions.rule_for("data.census.gov").slow is True
    assert config.sessions.rule_for("www.example.com").locale == "en-US"
    assert config.timeouts.for_tool("submit_form") == 60_000


def test_env_overrides(monkeypatch, tmp_path):
    path = tmp_path / "webpilot.json"
    path.write_text(json.dumps({"sessions": {"max_sessions": 3}, "http": {"port": 9000}}))
    monkeypatch.setenv("WEBPILOT_MAX_SESSIONS", "8")
    monkeypatch.setenv("WEBPILOT_HEADLESS", "false")
    monkeypatch.setenv("PORT", "8123")

    config = load_gateway_config(path)

    assert config.sessions.max_sessions == 8
    assert config.engine.headless is False
    assert config.http.port == 8123


def test_invalid_env_values_keep_configured(monkeypatch):
    monkeypatch.setenv("WEBPILOT_MAX_SESSIONS", "lots")
    monkeypatch.setenv("WEBPILOT_HEADLESS", "maybe")

    config = GatewayConfig.from_dict({"sessions": {"max_sessions": 2}}).apply_env_overrides()

    assert config.sessions.max_sessions == 2
    assert config.engine.headless is True


def test_unsupported_file_format(tmp_path):
    path = tmp_path / "webpilot.toml"
    path.write_text("x = 1")

    with pytest.raises(ValueError):
        load_gateway_config(path)


def test_host_matches():
    assert host_matches("example.com", "example.com")
    assert host_matches("example.com", "shop.example.com")
    assert not host_matches("example.com", "badexample.com")
    assert host_matches("*.gov", "data.census.gov")
    assert not host_matches("", "example.com")
