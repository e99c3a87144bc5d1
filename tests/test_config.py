"""Tests for configuration loading from files and environment variables."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from distriproxy.core.config import (
    PathConfig,
    ProxyConfig,
    ServerSettings,
    load_config_from_file,
)
from distriproxy.core.exceptions import (
    ConfigError,
    ExitCode,
    RouteTableError,
    TLSConfigError,
)
from distriproxy.routing import DEFAULT_ROUTES

YAML_CONFIG = """\
tls_enable: false
paths:
  - path: /debian
    url: https://deb.debian.org/debian
  - path: /centos
    url: https://ftp.halifax.rwth-aachen.de/centos
"""

TOML_CONFIG = """\
tls_enable = true
tls_certificate_file = "/etc/distriproxy/cert.pem"
tls_key_file = "/etc/distriproxy/key.pem"

[[paths]]
path = "/debian"
url = "https://deb.debian.org/debian"
"""


class TestServerSettings:
    """Test ServerSettings defaults and environment overrides."""

    def test_default_values(self) -> None:
        """Test default values."""
        settings = ServerSettings()
        assert settings.bind == ":8080"
        assert settings.shutdown_timeout == 10.0
        assert settings.follow_redirects is True
        assert settings.metrics_bind is None
        assert settings.log_level == "info"
        assert settings.log_json is False

    def test_env_override_bind(self) -> None:
        """Test DISTRIPROXY_BIND env var."""
        with patch.dict(os.environ, {"DISTRIPROXY_BIND": "127.0.0.1:3128"}):
            settings = ServerSettings()
            assert settings.bind == "127.0.0.1:3128"

    def test_env_override_shutdown_timeout(self) -> None:
        """Test DISTRIPROXY_SHUTDOWN_TIMEOUT env var."""
        with patch.dict(os.environ, {"DISTRIPROXY_SHUTDOWN_TIMEOUT": "2.5"}):
            settings = ServerSettings()
            assert settings.shutdown_timeout == 2.5

    def test_env_override_follow_redirects(self) -> None:
        """Test DISTRIPROXY_FOLLOW_REDIRECTS env var."""
        with patch.dict(os.environ, {"DISTRIPROXY_FOLLOW_REDIRECTS": "false"}):
            settings = ServerSettings()
            assert settings.follow_redirects is False

    def test_shutdown_timeout_must_be_positive(self) -> None:
        """Test validation of the shutdown timeout."""
        with pytest.raises(ValueError):
            ServerSettings(shutdown_timeout=0)

    def test_unknown_log_level_rejected(self) -> None:
        """Test that a log level logging does not know fails validation."""
        with patch.dict(os.environ, {"DISTRIPROXY_LOG_LEVEL": "verbose"}):
            with pytest.raises(ValueError):
                ServerSettings()

    def test_log_level_case_insensitive(self) -> None:
        """Test that log levels are normalized to lower case."""
        with patch.dict(os.environ, {"DISTRIPROXY_LOG_LEVEL": "WARNING"}):
            settings = ServerSettings()
            assert settings.log_level == "warning"

    def test_explicit_values_beat_env(self) -> None:
        """Test that constructor arguments take precedence."""
        with patch.dict(os.environ, {"DISTRIPROXY_BIND": "127.0.0.1:3128"}):
            settings = ServerSettings(bind=":9090")
            assert settings.bind == ":9090"


class TestLoadConfigFromFile:
    """Test reading config files."""

    def test_load_yaml(self, tmp_path) -> None:
        """Test loading a YAML file."""
        path = tmp_path / "distriproxy.yaml"
        path.write_text(YAML_CONFIG)

        data = load_config_from_file(path)

        assert data["tls_enable"] is False
        assert data["paths"][0] == {"path": "/debian", "url": "https://deb.debian.org/debian"}

    def test_load_toml(self, tmp_path) -> None:
        """Test loading a TOML file."""
        path = tmp_path / "distriproxy.toml"
        path.write_text(TOML_CONFIG)

        data = load_config_from_file(path)

        assert data["tls_enable"] is True
        assert data["paths"] == [{"path": "/debian", "url": "https://deb.debian.org/debian"}]

    def test_empty_yaml_is_empty_config(self, tmp_path) -> None:
        """Test that an empty file yields an empty mapping."""
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path) -> None:
        """Test that a missing file is a configuration error."""
        with pytest.raises(ConfigError, match="not found"):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path) -> None:
        """Test YAML syntax errors."""
        path = tmp_path / "broken.yaml"
        path.write_text("paths: [\n  - path: /debian\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_invalid_toml(self, tmp_path) -> None:
        """Test TOML syntax errors."""
        path = tmp_path / "broken.toml"
        path.write_text("tls_enable = \n")

        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config_from_file(path)

    def test_unsupported_format(self, tmp_path) -> None:
        """Test unknown file suffixes."""
        path = tmp_path / "distriproxy.json"
        path.write_text("{}")

        with pytest.raises(ConfigError, match="Unsupported"):
            load_config_from_file(path)

    def test_top_level_must_be_mapping(self, tmp_path) -> None:
        """Test that a list at the top level is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- /debian\n- /centos\n")

        with pytest.raises(ConfigError, match="mapping"):
            load_config_from_file(path)


class TestProxyConfig:
    """Test ProxyConfig validation and route table construction."""

    def test_from_file(self, tmp_path) -> None:
        """Test loading and validating a file."""
        path = tmp_path / "distriproxy.yaml"
        path.write_text(YAML_CONFIG)

        config = ProxyConfig.from_file(path)

        assert config.tls_enable is False
        assert [p.path for p in config.paths] == ["/debian", "/centos"]

    def test_route_table_from_paths(self) -> None:
        """Test that configured paths become routes."""
        config = ProxyConfig(
            paths=[PathConfig(path="/debian", url="https://deb.debian.org/debian")]
        )

        table = config.route_table()

        assert table.prefixes == ["/debian"]

    def test_route_table_defaults(self) -> None:
        """Test fallback to the built-in mirrors when no paths are configured."""
        table = ProxyConfig().route_table()

        assert len(table) == len(DEFAULT_ROUTES)
        assert "/debian-security" in table.prefixes

    def test_overlapping_paths_rejected(self) -> None:
        """Test that overlapping prefixes fail at startup."""
        config = ProxyConfig.from_dict(
            {
                "paths": [
                    {"path": "/centos", "url": "https://ftp.halifax.rwth-aachen.de/centos"},
                    {"path": "/centos/vault", "url": "http://vault.centos.org"},
                ]
            }
        )

        with pytest.raises(RouteTableError) as exc_info:
            config.route_table()
        assert exc_info.value.exit_code == ExitCode.CONFIG

    @pytest.mark.parametrize(
        "url",
        [
            "deb.debian.org/debian",
            "ftp://ftp.debian.org/debian",
            "https://",
            "https://deb.debian.org/debian?mirror=1",
        ],
    )
    def test_invalid_upstream_url(self, url) -> None:
        """Test upstream URL validation."""
        with pytest.raises(ConfigError) as exc_info:
            ProxyConfig.from_dict({"paths": [{"path": "/debian", "url": url}]})

        assert exc_info.value.details
        assert exc_info.value.details[0].startswith("paths.0.url")

    def test_missing_path_field(self) -> None:
        """Test that each path needs both fields."""
        with pytest.raises(ConfigError) as exc_info:
            ProxyConfig.from_dict({"paths": [{"url": "https://deb.debian.org/debian"}]})

        assert any(detail.startswith("paths.0.path") for detail in exc_info.value.details)


class TestTLSSettings:
    """Test merging TLS values from file and command line."""

    def test_disabled_by_default(self) -> None:
        """Test that TLS is off unless enabled."""
        tls = ProxyConfig().tls_settings()
        assert tls.enabled is False

    def test_enabled_from_file(self, tmp_path) -> None:
        """Test TLS values read from a file."""
        path = tmp_path / "distriproxy.toml"
        path.write_text(TOML_CONFIG)

        tls = ProxyConfig.from_file(path).tls_settings()

        assert tls.enabled is True
        assert tls.certificate_file == "/etc/distriproxy/cert.pem"
        assert tls.key_file == "/etc/distriproxy/key.pem"

    def test_enabled_without_certificate(self) -> None:
        """Test that enabling TLS requires a certificate."""
        config = ProxyConfig(tls_enable=True, tls_key_file="key.pem")

        with pytest.raises(TLSConfigError, match="--certificate"):
            config.tls_settings()

    def test_enabled_without_key(self) -> None:
        """Test that enabling TLS requires a key."""
        config = ProxyConfig(tls_enable=True, tls_certificate_file="cert.pem")

        with pytest.raises(TLSConfigError, match="--key") as exc_info:
            config.tls_settings()
        assert exc_info.value.exit_code == ExitCode.FAILURE

    def test_overrides_replace_file_values(self) -> None:
        """Test that command-line values win over the file."""
        config = ProxyConfig(
            tls_enable=True,
            tls_certificate_file="file-cert.pem",
            tls_key_file="file-key.pem",
        )

        updated = config.with_tls_overrides(enable=False, certificate_file="cli-cert.pem")

        assert updated.tls_enable is False
        assert updated.tls_certificate_file == "cli-cert.pem"
        assert updated.tls_key_file == "file-key.pem"
        # original untouched
        assert config.tls_enable is True

    def test_unset_overrides_keep_file_values(self) -> None:
        """Test that None overrides change nothing."""
        config = ProxyConfig(tls_enable=True, tls_certificate_file="cert.pem")

        updated = config.with_tls_overrides()

        assert updated == config
