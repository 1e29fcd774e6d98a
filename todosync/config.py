"""Configuration loading for todosync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import DEFAULT_DOCUMENT_ID

EQUAL_TIMESTAMP_POLICIES = ("noop", "conflict")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    db_path: str = "~/.todosync/server.db"
    password: str = ""
    document_id: str = DEFAULT_DOCUMENT_ID
    history_limit: int = 50
    equal_timestamp_policy: str = "noop"  # "noop" or "conflict"


@dataclass
class ClientConfig:
    server_url: str = "http://localhost:8080"
    password: str = ""
    document_id: str = DEFAULT_DOCUMENT_ID
    cache_path: str = "~/.todosync/cache.db"
    debounce_seconds: float = 2.0
    poll_interval_seconds: float = 4.0
    timeout_seconds: float = 10.0


@dataclass
class LoggingConfig:
    level: str = "info"
    json: bool = False


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TODOSYNC_ prefix."""
    return os.environ.get(f"TODOSYNC_{key}", default)


def _is_truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Shared credential applies to both sides unless set individually
    if password := _get_env("PASSWORD"):
        config.server.password = password
        config.client.password = password
    if document_id := _get_env("DOCUMENT_ID"):
        config.server.document_id = document_id
        config.client.document_id = document_id

    # Server overrides
    if host := _get_env("HOST"):
        config.server.host = host
    if port := _get_env("PORT"):
        config.server.port = int(port)
    if db_path := _get_env("DB_PATH"):
        config.server.db_path = db_path
    if history_limit := _get_env("HISTORY_LIMIT"):
        config.server.history_limit = int(history_limit)
    if policy := _get_env("EQUAL_TIMESTAMP_POLICY"):
        config.server.equal_timestamp_policy = policy.lower()

    # Client overrides
    if server_url := _get_env("SERVER_URL"):
        config.client.server_url = server_url
    if cache_path := _get_env("CACHE_PATH"):
        config.client.cache_path = cache_path
    if debounce := _get_env("DEBOUNCE_SECONDS"):
        config.client.debounce_seconds = float(debounce)
    if poll_interval := _get_env("POLL_INTERVAL_SECONDS"):
        config.client.poll_interval_seconds = float(poll_interval)

    # Logging overrides
    if level := _get_env("LOG_LEVEL"):
        config.logging.level = level.lower()
    if json_logs := _get_env("LOG_JSON"):
        config.logging.json = _is_truthy(json_logs)

    return config


def _validate(config: Config) -> None:
    """Reject settings the engine cannot run with."""
    if config.server.equal_timestamp_policy not in EQUAL_TIMESTAMP_POLICIES:
        raise ValueError(
            f"server.equal_timestamp_policy must be one of "
            f"{', '.join(EQUAL_TIMESTAMP_POLICIES)}, "
            f"got {config.server.equal_timestamp_policy!r}"
        )
    if config.server.history_limit < 1:
        raise ValueError("server.history_limit must be at least 1")
    if config.client.debounce_seconds < 0:
        raise ValueError("client.debounce_seconds must not be negative")
    if config.client.poll_interval_seconds <= 0:
        raise ValueError("client.poll_interval_seconds must be positive")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None or missing, defaults
            are used.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If a setting is out of range.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    db_path=server_data.get("db_path", config.server.db_path),
                    password=str(server_data.get("password", config.server.password)),
                    document_id=server_data.get(
                        "document_id", config.server.document_id
                    ),
                    history_limit=server_data.get(
                        "history_limit", config.server.history_limit
                    ),
                    equal_timestamp_policy=str(
                        server_data.get(
                            "equal_timestamp_policy",
                            config.server.equal_timestamp_policy,
                        )
                    ).lower(),
                )

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    server_url=client_data.get("server_url", config.client.server_url),
                    password=str(client_data.get("password", config.client.password)),
                    document_id=client_data.get(
                        "document_id", config.client.document_id
                    ),
                    cache_path=client_data.get("cache_path", config.client.cache_path),
                    debounce_seconds=client_data.get(
                        "debounce_seconds", config.client.debounce_seconds
                    ),
                    poll_interval_seconds=client_data.get(
                        "poll_interval_seconds", config.client.poll_interval_seconds
                    ),
                    timeout_seconds=client_data.get(
                        "timeout_seconds", config.client.timeout_seconds
                    ),
                )

            # Parse logging config
            if "logging" in data:
                log_data = data["logging"]
                config.logging = LoggingConfig(
                    level=str(log_data.get("level", config.logging.level)).lower(),
                    json=log_data.get("json", config.logging.json),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
