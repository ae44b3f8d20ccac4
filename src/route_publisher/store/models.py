"""Published route record."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RouteStatus(str, Enum):
    """Route lifecycle status.

    PENDING until a daemon restart or health check confirms the route,
    ERROR after a failed check, DISABLED once reconciliation finds the rule
    gone from the tunnel ingress.
    """

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    DISABLED = "DISABLED"


PROTECTION_FIELDS = ("app_id", "app_slug", "provider_id")


class Route(BaseModel):
    """A hostname published through the tunnel to a local service.

    Immutable; use ``model_copy``-based helpers or the store's ``update``.
    The identity protection fields form one group: either protection is
    enabled and all ids are set, or it is disabled and all ids are None.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    hostname: str = Field(min_length=1)
    subdomain: str = Field(min_length=1)
    local_host: str = Field(default="localhost", min_length=1)
    local_port: int = Field(ge=1, le=65535)
    service: str = Field(min_length=1)
    websocket_enabled: bool = False
    status: RouteStatus = RouteStatus.PENDING
    dns_record_id: str | None = None
    project_id: str | None = None
    description: str | None = None
    protection_enabled: bool = False
    app_id: str | None = None
    app_slug: str | None = None
    provider_id: str | None = None
    error_message: str | None = None
    last_checked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("app_id", "provider_id", "dns_record_id", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        # Identity provider primary keys arrive as integers.
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def check_protection_group(self) -> "Route":
        values = [getattr(self, name) for name in PROTECTION_FIELDS]
        if self.protection_enabled and not all(values):
            raise ValueError("Protection enabled requires app_id, app_slug and provider_id")
        if not self.protection_enabled and any(values):
            raise ValueError("Protection ids must be empty when protection is disabled")
        return self

    @staticmethod
    def build_service(local_host: str, local_port: int, scheme: str = "http") -> str:
        return f"{scheme}://{local_host}:{local_port}"

    @property
    def url(self) -> str:
        return f"https://{self.hostname}"

    def protection_changes(
        self,
        enabled: bool,
        app_id: str | None = None,
        app_slug: str | None = None,
        provider_id: str | None = None,
    ) -> dict[str, Any]:
        """Field updates that replace the whole protection group at once."""
        if not enabled:
            return {
                "protection_enabled": False,
                "app_id": None,
                "app_slug": None,
                "provider_id": None,
            }
        return {
            "protection_enabled": True,
            "app_id": app_id,
            "app_slug": app_slug,
            "provider_id": provider_id,
        }

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
