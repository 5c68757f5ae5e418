"""
Configuration module for client connection settings.

This module provides configuration loading and validation for the API
endpoint, credentials, pagination headers and transport rate limiting.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tsdb_client import __version__
from tsdb_client.core.errors import ConfigValidationError

API_HOST = "api.tempo-db.com"
API_PORT = 443
API_VERSION = "v1"
DEFAULT_USER_AGENT = f"tsdb-client-python/{__version__}"


@dataclass
class HeaderConfig:
    """Names of the response headers the client inspects."""

    truncated: str = "Truncated"
    retry_after: str = "Retry-After"


@dataclass
class LimitsConfig:
    """Client-side rate limiting and retry policy."""

    enabled: bool = False
    steady_rate: float = 10.0  # tokens per second
    burst: int = 20
    max_retries: int = 3
    base_backoff: float = 1.0
    max_backoff: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LimitsConfig":
        """Create LimitsConfig from dictionary."""
        return cls(
            enabled=data.get("enabled", False),
            steady_rate=data.get("steady_rate", 10.0),
            burst=data.get("burst", 20),
            max_retries=data.get("max_retries", 3),
            base_backoff=data.get("base_backoff", 1.0),
            max_backoff=data.get("max_backoff", 60.0),
        )


@dataclass
class ClientConfig:
    """Connection settings for one database."""

    key: str = ""
    secret: str = ""
    host: str = API_HOST
    port: int = API_PORT
    secure: bool = True
    api_version: str = API_VERSION
    timeout: float = 30.0
    ca_file: str | None = None
    user_agent: str = DEFAULT_USER_AGENT
    headers: HeaderConfig = field(default_factory=HeaderConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @property
    def base_url(self) -> str:
        """Scheme, host and port every request URI is built on; default ports are left out."""
        scheme = "https" if self.secure else "http"
        if self.port == (443 if self.secure else 80):
            return f"{scheme}://{self.host}"
        return f"{scheme}://{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientConfig":
        """Create ClientConfig from dictionary."""
        headers_data = data.get("headers", {})
        headers = HeaderConfig(**headers_data) if headers_data else HeaderConfig()

        limits_data = data.get("limits", {})
        limits = LimitsConfig.from_dict(limits_data) if limits_data else LimitsConfig()

        return cls(
            key=data.get("key", ""),
            secret=data.get("secret", ""),
            host=data.get("host", API_HOST),
            port=data.get("port", API_PORT),
            secure=data.get("secure", True),
            api_version=data.get("api_version", API_VERSION),
            timeout=data.get("timeout", 30.0),
            ca_file=data.get("ca_file"),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            headers=headers,
            limits=limits,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a plain dictionary (secret included)."""
        return asdict(self)


def load_config(config_path: str | Path | None = None) -> ClientConfig:
    """
    Load client configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        ClientConfig with connection settings

    Raises:
        yaml.YAMLError: If config file is invalid YAML
        ConfigValidationError: If config validation fails
    """
    if config_path is None:
        config_path = Path.cwd() / "config" / "tsdb.yml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        # Return default config if file doesn't exist
        return ClientConfig()

    with open(config_path, "r") as f:
        data = yaml.safe_load(f)

    if not data:
        return ClientConfig()

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Config file {config_path} must contain a mapping")

    config = ClientConfig.from_dict(data)
    validate_config(config)
    return config


def validate_config(config: ClientConfig) -> None:
    """
    Validate configuration.

    Args:
        config: Configuration to validate

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not config.host:
        raise ConfigValidationError("Client config must have a host")

    if not 0 < config.port < 65536:
        raise ConfigValidationError(f"Port {config.port} is out of range")

    if not config.api_version:
        raise ConfigValidationError("Client config must have an api_version")

    if config.timeout <= 0:
        raise ConfigValidationError("timeout must be positive")

    if not config.headers.truncated:
        raise ConfigValidationError("headers.truncated must name a header")

    if config.ca_file is not None and not Path(config.ca_file).exists():
        raise ConfigValidationError(f"CA file {config.ca_file} does not exist")

    limits = config.limits
    if limits.steady_rate <= 0:
        raise ConfigValidationError("limits.steady_rate must be positive")

    if limits.burst <= 0:
        raise ConfigValidationError("limits.burst must be positive")

    if limits.max_retries < 0:
        raise ConfigValidationError("limits.max_retries must not be negative")

    if limits.base_backoff < 0 or limits.max_backoff < limits.base_backoff:
        raise ConfigValidationError(
            "limits.base_backoff must be non-negative and not exceed limits.max_backoff"
        )
