"""Settings and runtime configuration models.

Two kinds of configuration live here:

* ``TunnelSettings`` / ``IdentitySettings`` are operator-supplied credentials
  persisted in a settings store. They are loaded per call, so every component
  receives a *provider* callable instead of a snapshot.
* ``PublisherConfig`` holds process-level knobs (paths, timeouts, daemon
  restart commands) read once at startup.
"""

import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common.exceptions import NotConfiguredError

DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_RESTART_COMMANDS: list[tuple[str, list[str]]] = [
    ("systemctl", ["sudo", "systemctl", "restart", "cloudflared"]),
    ("service", ["sudo", "service", "cloudflared", "restart"]),
]
MANUAL_RESTART_HINT = "sudo systemctl restart cloudflared"


class TunnelSettings(BaseModel):
    """Credentials and identifiers for the tunnel provider account."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    api_token: str | None = Field(default=None, description="Bearer API token")
    account_id: str | None = Field(default=None, description="Account identifier")
    tunnel_id: str | None = Field(default=None, description="Tunnel identifier")
    tunnel_name: str | None = Field(default=None, description="Tunnel display name")
    zone_id: str | None = Field(default=None, description="DNS zone identifier")
    zone_name: str | None = Field(default=None, description="DNS zone, e.g. example.com")
    default_subdomain: str | None = Field(default=None)
    configured: bool = Field(default=False)
    last_validated: datetime | None = Field(default=None)

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "api_token",
        "account_id",
        "tunnel_id",
        "zone_id",
        "zone_name",
    )

    @field_validator("zone_name")
    @classmethod
    def validate_zone_name(cls, v: str | None) -> str | None:
        """Store zone names lowercase without a trailing dot."""
        if v is None:
            return v
        return v.lower().rstrip(".") or None

    def missing_fields(self) -> list[str]:
        """Return the required fields that are empty."""
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        return self.configured and not self.missing_fields()

    def require(self) -> "TunnelSettings":
        """Return self if usable, otherwise raise NotConfiguredError."""
        missing = self.missing_fields()
        if missing or not self.configured:
            raise NotConfiguredError("tunnel", missing)
        return self

    @property
    def tunnel_target(self) -> str:
        """CNAME target that routes a hostname into the tunnel."""
        return f"{self.tunnel_id}.cfargotunnel.com"

    def public_view(self) -> dict[str, Any]:
        """Settings as returned to API callers; never includes the token."""
        return {
            "configured": self.configured,
            "accountId": self.account_id,
            "tunnelId": self.tunnel_id,
            "tunnelName": self.tunnel_name,
            "zoneId": self.zone_id,
            "zoneName": self.zone_name,
            "defaultSubdomain": self.default_subdomain,
            "lastValidated": self.last_validated,
            "hasApiToken": bool(self.api_token),
        }


class IdentitySettings(BaseModel):
    """Credentials for the SSO identity provider used for route protection."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    api_url: str | None = Field(default=None, description="Identity provider base URL")
    api_token: str | None = Field(default=None)
    outpost_id: str | None = Field(default=None, description="Outpost to bind apps to")
    default_group_id: str | None = Field(default=None)
    enabled: bool = Field(default=True, description="Protect new routes by default")
    configured: bool = Field(default=False)
    last_validated: datetime | None = Field(default=None)

    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = ("api_url", "api_token")

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.rstrip("/")
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("api_url must start with http:// or https://")
        return v or None

    def missing_fields(self) -> list[str]:
        return [name for name in self.REQUIRED_FIELDS if not getattr(self, name)]

    @property
    def is_active(self) -> bool:
        """Protection can be applied: configured, complete and switched on."""
        return self.configured and self.enabled and not self.missing_fields()

    def require(self) -> "IdentitySettings":
        missing = self.missing_fields()
        if missing or not self.configured:
            raise NotConfiguredError("identity", missing)
        return self

    def public_view(self) -> dict[str, Any]:
        return {
            "configured": self.configured,
            "enabled": self.enabled,
            "apiUrl": self.api_url,
            "outpostId": self.outpost_id,
            "defaultGroupId": self.default_group_id,
            "lastValidated": self.last_validated,
        }


TunnelSettingsProvider = Callable[[], TunnelSettings]
IdentitySettingsProvider = Callable[[], IdentitySettings]


def _default_projects_dir() -> Path:
    return Path(os.environ.get("PROJECTS_DIR", str(Path.home() / "Projects")))


class PublisherConfig(BaseModel):
    """Process-level configuration for the publisher."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    projects_dir: Path = Field(default_factory=_default_projects_dir)
    manifest_name: str = Field(default="CLAUDE.md", min_length=1)
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL)
    request_timeout: float = Field(default=15.0, ge=0.1, le=120.0)
    lock_timeout: float = Field(default=30.0, ge=0.1, le=300.0)
    restart_timeout: float = Field(default=30.0, ge=0.1, le=300.0)
    health_timeout: float = Field(default=10.0, ge=0.1, le=60.0)
    restart_commands: list[tuple[str, list[str]]] = Field(
        default_factory=lambda: [(m, list(c)) for m, c in DEFAULT_RESTART_COMMANDS]
    )
    update_dev_server_hosts: bool = Field(
        default=True, description="Add published hostnames to dev server allowedHosts"
    )

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("restart_commands")
    @classmethod
    def validate_restart_commands(
        cls, v: list[tuple[str, list[str]]]
    ) -> list[tuple[str, list[str]]]:
        for method, command in v:
            if not method or not command:
                raise ValueError("Each restart command needs a method name and argv")
        return v

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "PublisherConfig":
        """Build config from ``ROUTE_PUBLISHER_*`` environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        mapping = {
            "ROUTE_PUBLISHER_PROJECTS_DIR": "projects_dir",
            "ROUTE_PUBLISHER_MANIFEST": "manifest_name",
            "ROUTE_PUBLISHER_API_BASE_URL": "api_base_url",
            "ROUTE_PUBLISHER_REQUEST_TIMEOUT": "request_timeout",
            "ROUTE_PUBLISHER_LOCK_TIMEOUT": "lock_timeout",
            "ROUTE_PUBLISHER_RESTART_TIMEOUT": "restart_timeout",
            "ROUTE_PUBLISHER_HEALTH_TIMEOUT": "health_timeout",
        }
        for env_name, field_name in mapping.items():
            if env.get(env_name):
                values[field_name] = env[env_name]
        if "PROJECTS_DIR" in env and "projects_dir" not in values:
            values["projects_dir"] = env["PROJECTS_DIR"]
        flag = env.get("ROUTE_PUBLISHER_UPDATE_DEV_SERVER_HOSTS")
        if flag is not None:
            values["update_dev_server_hosts"] = flag.lower() in ("1", "true", "yes")
        return cls(**values)
