"""Tests for settings and runtime configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from route_publisher.common.exceptions import NotConfiguredError
from route_publisher.config import (
    DEFAULT_API_BASE_URL,
    IdentitySettings,
    PublisherConfig,
    TunnelSettings,
)


class TestTunnelSettings:
    """Test tunnel provider settings."""

    def test_missing_fields_lists_required_blanks(self):
        settings = TunnelSettings(api_token="t", account_id="a")
        assert settings.missing_fields() == ["tunnel_id", "zone_id", "zone_name"]

    def test_require_raises_with_missing_fields(self):
        with pytest.raises(NotConfiguredError) as exc_info:
            TunnelSettings(api_token="t").require()
        assert exc_info.value.service == "tunnel"
        assert "account_id" in exc_info.value.missing
        assert "Tunnel is not configured" in str(exc_info.value)

    def test_require_needs_configured_flag(self, tunnel_settings):
        unconfigured = tunnel_settings.model_copy(update={"configured": False})
        with pytest.raises(NotConfiguredError):
            unconfigured.require()
        assert tunnel_settings.require() is tunnel_settings

    def test_zone_name_normalized(self):
        settings = TunnelSettings(zone_name=" Example.COM. ")
        assert settings.zone_name == "example.com"

    def test_tunnel_target(self, tunnel_settings):
        assert tunnel_settings.tunnel_target == "tun-1.cfargotunnel.com"

    def test_public_view_hides_token(self, tunnel_settings):
        view = tunnel_settings.public_view()
        assert view["hasApiToken"] is True
        assert "cf-secret-token" not in str(view)
        assert view["zoneName"] == "example.com"

    def test_unknown_fields_rejected(self):
        with pytest.raises(PydanticValidationError):
            TunnelSettings(api_key="nope")


class TestIdentitySettings:
    """Test identity provider settings."""

    def test_api_url_trailing_slash_stripped(self):
        assert IdentitySettings(api_url="https://auth.test/").api_url == "https://auth.test"

    def test_api_url_must_be_http(self):
        with pytest.raises(PydanticValidationError, match="api_url must start with"):
            IdentitySettings(api_url="auth.test")

    def test_is_active(self, identity_settings):
        assert identity_settings.is_active
        assert not identity_settings.model_copy(update={"enabled": False}).is_active
        assert not IdentitySettings(api_url="https://auth.test").is_active

    def test_require(self):
        with pytest.raises(NotConfiguredError, match="Identity is not configured"):
            IdentitySettings().require()

    def test_public_view_hides_token(self, identity_settings):
        assert "ak-secret-token" not in str(identity_settings.public_view())


class TestPublisherConfig:
    """Test process-level configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PROJECTS_DIR", raising=False)
        config = PublisherConfig()
        assert config.api_base_url == DEFAULT_API_BASE_URL
        assert config.manifest_name == "CLAUDE.md"
        assert config.projects_dir == Path.home() / "Projects"
        assert config.restart_commands[0][0] == "systemctl"
        assert config.update_dev_server_hosts is True

    def test_timeouts_bounded(self):
        with pytest.raises(PydanticValidationError):
            PublisherConfig(request_timeout=0)
        with pytest.raises(PydanticValidationError):
            PublisherConfig(lock_timeout=10_000)

    def test_api_base_url_validated(self):
        assert PublisherConfig(api_base_url="https://x.test/v4/").api_base_url == "https://x.test/v4"
        with pytest.raises(PydanticValidationError):
            PublisherConfig(api_base_url="ftp://x")

    def test_restart_commands_validated(self):
        with pytest.raises(PydanticValidationError):
            PublisherConfig(restart_commands=[("systemctl", [])])

    def test_from_env(self, tmp_path):
        config = PublisherConfig.from_env(
            {
                "ROUTE_PUBLISHER_PROJECTS_DIR": str(tmp_path),
                "ROUTE_PUBLISHER_LOCK_TIMEOUT": "7.5",
                "ROUTE_PUBLISHER_UPDATE_DEV_SERVER_HOSTS": "false",
            }
        )
        assert config.projects_dir == tmp_path
        assert config.lock_timeout == 7.5
        assert config.update_dev_server_hosts is False

    def test_from_env_falls_back_to_projects_dir(self, tmp_path):
        config = PublisherConfig.from_env({"PROJECTS_DIR": str(tmp_path)})
        assert config.projects_dir == tmp_path
