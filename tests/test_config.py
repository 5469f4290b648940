"""Tests for bridge configuration."""

from pathlib import Path

import pytest

from live_vroid.config import BridgeConfig, EndpointAddress, RetryPolicy


class TestEndpointAddress:
    def test_parses_default_url(self):
        endpoint = EndpointAddress.parse("ws://localhost:8080")
        assert endpoint == EndpointAddress("ws", "localhost", 8080, "/")
        assert endpoint.url == "ws://localhost:8080"

    def test_default_ports(self):
        assert EndpointAddress.parse("ws://godot.local").port == 80
        assert EndpointAddress.parse("wss://godot.local").port == 443

    def test_keeps_path_and_query(self):
        endpoint = EndpointAddress.parse("wss://godot.local:9000/avatar?room=1")
        assert endpoint.path == "/avatar?room=1"
        assert endpoint.url == "wss://godot.local:9000/avatar?room=1"

    @pytest.mark.parametrize("url", ["http://localhost:8080", "localhost:8080", "ws://"])
    def test_rejects_invalid_urls(self, url):
        with pytest.raises(ValueError):
            EndpointAddress.parse(url)

    def test_is_immutable(self):
        endpoint = EndpointAddress.parse("ws://localhost:8080")
        with pytest.raises(AttributeError):
            endpoint.port = 1


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.retry_delay == 2.0
        assert policy.command_timeout == 10.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"retry_delay": -0.5}, {"command_timeout": 0}, {"connect_timeout": -1}],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestBridgeConfig:
    def test_defaults(self, monkeypatch):
        for name in ("GODOT_WS_URL", "GODOT_COMMAND_TIMEOUT", "GODOT_MAX_RETRIES", "GODOT_RETRY_DELAY"):
            monkeypatch.delenv(name, raising=False)
        config = BridgeConfig.from_env()
        assert config.server_url == "ws://localhost:8080"
        assert config.retry_policy() == RetryPolicy()

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GODOT_WS_URL", "ws://10.0.0.5:9090")
        monkeypatch.setenv("GODOT_COMMAND_TIMEOUT", "2.5")
        monkeypatch.setenv("GODOT_MAX_RETRIES", "5")
        monkeypatch.setenv("GODOT_RETRY_DELAY", "0.5")
        monkeypatch.setenv("LIVE_VROID_LOG_DIR", str(tmp_path))
        monkeypatch.setenv("LIVE_VROID_LOG_LEVEL", "debug")

        config = BridgeConfig.from_env()

        assert config.endpoint() == EndpointAddress("ws", "10.0.0.5", 9090)
        assert config.retry_policy() == RetryPolicy(max_retries=5, retry_delay=0.5, command_timeout=2.5)
        assert config.log_dir == Path(tmp_path)
        assert config.log_level == "DEBUG"
