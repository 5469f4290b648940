"""Configuration for the Live-Vroid bridge."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

DEFAULT_SERVER_URL = "ws://localhost:8080"
DEFAULT_LOG_DIR = Path.home() / ".live_vroid" / "logs"


@dataclass(frozen=True)
class EndpointAddress:
    """WebSocket endpoint of the Godot avatar scene."""

    scheme: str
    host: str
    port: int
    path: str = "/"

    @classmethod
    def parse(cls, url: str) -> "EndpointAddress":
        """Parse a ws:// or wss:// URL.

        Raises:
            ValueError: If the URL is not a WebSocket URL or has no host
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("ws", "wss"):
            raise ValueError(f"Unsupported URL scheme for {url!r}, expected ws:// or wss://")
        if not parsed.hostname:
            raise ValueError(f"Missing host in {url!r}")

        port = parsed.port or (443 if parsed.scheme == "wss" else 80)
        path = parsed.path or "/"
        if parsed.query:
            path += "?" + parsed.query
        return cls(scheme=parsed.scheme, host=parsed.hostname, port=port, path=path)

    @property
    def url(self) -> str:
        path = "" if self.path == "/" else self.path
        return f"{self.scheme}://{self.host}:{self.port}{path}"


@dataclass(frozen=True)
class RetryPolicy:
    """Connection retry and command timeout settings (seconds)."""

    max_retries: int = 3
    retry_delay: float = 2.0
    command_timeout: float = 10.0
    connect_timeout: float = 5.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.command_timeout <= 0 or self.connect_timeout <= 0:
            raise ValueError("timeouts must be positive")


@dataclass
class BridgeConfig:
    """Configuration for the bridge process."""

    server_url: str = DEFAULT_SERVER_URL
    command_timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 2.0
    connect_timeout: float = 5.0
    heartbeat_interval: Optional[float] = 20.0
    log_dir: Path = DEFAULT_LOG_DIR
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Load config from environment variables."""
        config = cls()
        config.server_url = os.environ.get("GODOT_WS_URL", config.server_url)
        config.command_timeout = float(os.environ.get("GODOT_COMMAND_TIMEOUT", config.command_timeout))
        config.max_retries = int(os.environ.get("GODOT_MAX_RETRIES", config.max_retries))
        config.retry_delay = float(os.environ.get("GODOT_RETRY_DELAY", config.retry_delay))
        config.log_dir = Path(os.environ.get("LIVE_VROID_LOG_DIR", config.log_dir))
        config.log_level = os.environ.get("LIVE_VROID_LOG_LEVEL", config.log_level).upper()
        return config

    def endpoint(self) -> EndpointAddress:
        return EndpointAddress.parse(self.server_url)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            command_timeout=self.command_timeout,
            connect_timeout=self.connect_timeout,
        )
