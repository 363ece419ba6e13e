"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "hostactuator"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

DEFAULT_CONFIG_TOML = """\
[general]
# actuator_id defaults to the hostname, cwd to the current directory
actuator_id = ""
cwd = ""
capabilities = ["exec", "process", "read", "write", "edit"]
brain_mode = false

[broker]
url = ""
token = ""

[reconnect]
base_ms = 1000
max_ms = 30000
# 0 retries forever
max_attempts = 0

[execution]
default_timeout = 1800
max_timeout = 3600
kill_grace = 5

[webhook]
# port of the local agent gateway that receives wake events; 0 disables
port = 0
timeout = 5
"""


@dataclass
class BrokerConfig:
    url: str = ""
    token: str = ""


@dataclass
class ReconnectConfig:
    base_ms: int = 1000
    max_ms: int = 30000
    max_attempts: int = 0

    @property
    def attempt_limit(self) -> int | None:
        return self.max_attempts or None


@dataclass
class ExecutionConfig:
    default_timeout: float = 1800
    max_timeout: float = 3600
    kill_grace: float = 5


@dataclass
class WebhookConfig:
    port: int = 0
    timeout: float = 5


@dataclass
class ActuatorConfig:
    actuator_id: str = ""
    cwd: str = ""
    capabilities: list[str] = field(
        default_factory=lambda: ["exec", "process", "read", "write", "edit"]
    )
    brain_mode: bool = False
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    config_path: Path = DEFAULT_CONFIG_PATH

    @property
    def resolved_actuator_id(self) -> str:
        return self.actuator_id or socket.gethostname()

    @property
    def resolved_cwd(self) -> Path:
        if not self.cwd:
            return Path.cwd()
        return Path(self.cwd).expanduser().resolve()


def _env_overlay(config: ActuatorConfig) -> None:
    """Override config values with environment variables where applicable."""
    if url := os.environ.get("ACTUATOR_BROKER_URL"):
        config.broker.url = url
    if token := os.environ.get("ACTUATOR_BROKER_TOKEN"):
        config.broker.token = token
    if actuator_id := os.environ.get("ACTUATOR_ID"):
        config.actuator_id = actuator_id
    if os.environ.get("ACTUATOR_BRAIN_MODE") == "1":
        config.brain_mode = True
    if port := os.environ.get("ACTUATOR_WEBHOOK_PORT"):
        try:
            config.webhook.port = int(port)
        except ValueError:
            raise ValueError(f"ACTUATOR_WEBHOOK_PORT must be an integer, got {port!r}") from None


def load_config(config_path: Path | None = None) -> ActuatorConfig:
    """Load configuration from TOML file with env var overlay."""
    path = config_path or DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    else:
        raw = tomllib.loads(DEFAULT_CONFIG_TOML)

    general = raw.get("general", {})
    broker_raw = raw.get("broker", {})
    reconnect_raw = raw.get("reconnect", {})
    execution_raw = raw.get("execution", {})
    webhook_raw = raw.get("webhook", {})

    config = ActuatorConfig(
        actuator_id=general.get("actuator_id", ""),
        cwd=general.get("cwd", ""),
        capabilities=list(
            general.get("capabilities", ["exec", "process", "read", "write", "edit"])
        ),
        brain_mode=general.get("brain_mode", False),
        broker=BrokerConfig(
            url=broker_raw.get("url", ""),
            token=broker_raw.get("token", ""),
        ),
        reconnect=ReconnectConfig(
            base_ms=reconnect_raw.get("base_ms", 1000),
            max_ms=reconnect_raw.get("max_ms", 30000),
            max_attempts=reconnect_raw.get("max_attempts", 0),
        ),
        execution=ExecutionConfig(
            default_timeout=execution_raw.get("default_timeout", 1800),
            max_timeout=execution_raw.get("max_timeout", 3600),
            kill_grace=execution_raw.get("kill_grace", 5),
        ),
        webhook=WebhookConfig(
            port=webhook_raw.get("port", 0),
            timeout=webhook_raw.get("timeout", 5),
        ),
        config_path=path,
    )

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
