"""Configuration management for the pairlink relay."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from pairlink.errors import ConfigError


DEFAULT_PORT = 8080

# Environment overrides, applied after the config file
PORT_ENV = "PORT"
EXTERNAL_URL_ENV = "RELAY_EXTERNAL_URL"


@dataclass
class Config:
    """Relay configuration."""

    port: int = DEFAULT_PORT
    bind_address: str = "0.0.0.0"
    external_url: str | None = None  # Advertised base URL, startup log only
    log_level: str = "INFO"
    log_file: str | None = None
    history_limit: int = 10  # Entries returned by get_connection_history
    handler_timeout: float = 10.0  # seconds
    send_timeout: float = 5.0  # seconds

    def advertised_url(self) -> str:
        """Base URL clients are told to use."""
        return self.external_url or f"http://localhost:{self.port}"


def get_config_path(custom_path: Path | None = None) -> Path:
    """Get the configuration file path.

    Args:
        custom_path: Override path. If None, returns default.

    Returns:
        Path to config file.
    """
    if custom_path is not None:
        return custom_path
    return Path.home() / ".config" / "pairlink" / "config.yaml"


def _default_file_reader(path: Path) -> dict[str, Any] | None:
    """Default file reader that loads YAML from disk."""
    if not path.exists():
        return None
    try:
        content = path.read_text()
        if not content.strip():
            return None
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    return data if isinstance(data, dict) else None


def _parse_port(value: Any, source: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port from {source}: {value!r}")
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range from {source}: {port}")
    return port


def _parse_positive(value: Any, kind: type, key: str, source: str) -> Any:
    """Coerce a numeric setting, rejecting booleans and non-positive values."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid {key} from {source}: {value!r}")
    try:
        number = kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid {key} from {source}: {value!r}")
    if number <= 0:
        raise ConfigError(f"{key} must be positive in {source}: {number}")
    return number


def load_config(
    path: Path | None = None,
    file_reader: Callable[[Path], dict[str, Any] | None] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file, then apply environment overrides.

    Args:
        path: Path to config file. If None, uses default path.
        file_reader: Injectable file reader for testing.
        environ: Injectable environment mapping for testing.

    Returns:
        Config object with values from file, environment, or defaults.

    Raises:
        ConfigError: If the port or a numeric setting is invalid.
    """
    config_path = get_config_path(path)
    reader = file_reader or _default_file_reader
    env = os.environ if environ is None else environ

    data = reader(config_path) or {}
    source = str(config_path)

    config = Config(
        port=_parse_port(data.get("port", Config.port), source),
        bind_address=data.get("bind_address", Config.bind_address),
        external_url=data.get("external_url", Config.external_url),
        log_level=data.get("log_level", Config.log_level),
        log_file=data.get("log_file", Config.log_file),
        history_limit=_parse_positive(
            data.get("history_limit", Config.history_limit), int, "history_limit", source
        ),
        handler_timeout=_parse_positive(
            data.get("handler_timeout", Config.handler_timeout), float, "handler_timeout", source
        ),
        send_timeout=_parse_positive(
            data.get("send_timeout", Config.send_timeout), float, "send_timeout", source
        ),
    )

    if env.get(PORT_ENV):
        config.port = _parse_port(env[PORT_ENV], PORT_ENV)
    if env.get(EXTERNAL_URL_ENV):
        config.external_url = env[EXTERNAL_URL_ENV]

    return config
