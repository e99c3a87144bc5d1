"""Configuration types with environment variable support.

Server settings can be configured via environment variables with the
DISTRIPROXY_ prefix. Example: DISTRIPROXY_BIND=127.0.0.1:3128 sets the
fallback listen address.

The proxied paths and the TLS toggles live in a YAML or TOML file:

    tls_enable: false
    paths:
      - path: /debian
        url: https://deb.debian.org/debian
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from distriproxy.core.exceptions import ConfigError, TLSConfigError
from distriproxy.routing.table import DEFAULT_ROUTES, Route, RouteTable

DEFAULT_CONFIG_FILE = "distriproxy.yaml"


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing, unreadable, has invalid syntax or
            an unsupported format.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigError(f"Config file encoding error in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Config file unreadable: {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ConfigError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level")
    return data


class PathConfig(BaseModel):
    """One proxied sub-path and the upstream it is served from."""

    path: str = Field(description="Path prefix on the proxy, e.g. /debian.")
    url: str = Field(description="Upstream origin URL, e.g. https://deb.debian.org/debian.")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"upstream url must be an absolute http(s) URL, got {value!r}")
        if parts.query or parts.fragment:
            raise ValueError(f"upstream url must not carry a query or fragment, got {value!r}")
        return value


class ProxyConfig(BaseModel):
    """Configuration parsed from the config file."""

    tls_enable: bool | None = None
    tls_certificate_file: str | None = None
    tls_key_file: str | None = None
    paths: list[PathConfig] = Field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProxyConfig:
        """Validate a configuration dictionary.

        Raises:
            ConfigError: With one detail line per validation error.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            details = [
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigError("Invalid configuration", details) from e

    @classmethod
    def from_file(cls, path: str | Path) -> ProxyConfig:
        """Load and validate a configuration file."""
        return cls.from_dict(load_config_from_file(path))

    def with_tls_overrides(
        self,
        enable: bool | None = None,
        certificate_file: str | None = None,
        key_file: str | None = None,
    ) -> ProxyConfig:
        """Return a copy with command-line TLS values applied.

        Only values that are not None replace the file's entries.
        """
        update: dict[str, Any] = {}
        if enable is not None:
            update["tls_enable"] = enable
        if certificate_file is not None:
            update["tls_certificate_file"] = certificate_file
        if key_file is not None:
            update["tls_key_file"] = key_file
        return self.model_copy(update=update)

    def tls_settings(self) -> TLSSettings:
        """Resolve the effective TLS settings.

        Raises:
            TLSConfigError: If TLS is enabled but the certificate or key is unset.
        """
        if not self.tls_enable:
            return TLSSettings(enabled=False)
        if not self.tls_certificate_file:
            raise TLSConfigError("TLS enabled but --certificate not set")
        if not self.tls_key_file:
            raise TLSConfigError("TLS enabled but --key not set")
        return TLSSettings(
            enabled=True,
            certificate_file=self.tls_certificate_file,
            key_file=self.tls_key_file,
        )

    def route_table(self) -> RouteTable:
        """Build the route table, falling back to the built-in mirrors."""
        if not self.paths:
            return RouteTable(DEFAULT_ROUTES)
        return RouteTable(Route(prefix=p.path, origin=p.url) for p in self.paths)


class TLSSettings(BaseModel):
    """Effective TLS settings after merging file and command line."""

    enabled: bool = False
    certificate_file: str | None = None
    key_file: str | None = None


class ServerSettings(BaseSettings):
    """Server runtime settings.

    All settings can be overridden via environment variables:
    - DISTRIPROXY_BIND: fallback listen address when no socket is inherited
    - DISTRIPROXY_SHUTDOWN_TIMEOUT: graceful shutdown bound (seconds)
    - DISTRIPROXY_METRICS_BIND: enables the metrics listener
    - etc.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISTRIPROXY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    bind: str = Field(
        default=":8080",
        description="Listen address (host:port) used when no socket is inherited.",
    )
    shutdown_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for in-flight requests on shutdown.",
    )
    connect_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Upstream connect timeout (seconds). Reads are not bounded.",
    )
    max_connections: int = Field(
        default=100,
        description="Maximum concurrent upstream connections.",
    )
    max_keepalive: int = Field(
        default=20,
        description="Maximum idle keepalive upstream connections in the pool.",
    )
    follow_redirects: bool = Field(
        default=True,
        description="Follow upstream redirects instead of relaying them.",
    )
    metrics_bind: str | None = Field(
        default=None,
        description="Listen address for /metrics and /health. Disabled when unset.",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level: debug, info, warning or error.",
    )
    log_json: bool = Field(
        default=False,
        description="Render log entries as JSON lines.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_log_level(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value
