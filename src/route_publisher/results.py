"""Structured results returned by workflow and reconciliation operations.

Every multi-step operation reports per-step outcomes plus a list of
non-fatal :class:`PartialFailureWarning` entries, so a caller can tell a
full success from a degraded one from a failure before any upstream change.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .store.models import Route


class ApiModel(BaseModel):
    """Result base whose API form uses camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PartialFailureWarning(ApiModel):
    """A step that failed without aborting its operation."""

    model_config = ConfigDict(frozen=True)

    step: str
    message: str
    hostname: str | None = None


class RestartResult(ApiModel):
    """Outcome of a tunnel daemon restart attempt."""

    method: str
    success: bool
    message: str | None = None


class ProtectionResult(ApiModel):
    """Identity protection state after an enable attempt."""

    enabled: bool = False
    app_id: str | None = None
    app_slug: str | None = None
    provider_id: str | None = None
    error: str | None = None

    @classmethod
    def disabled(cls, error: str | None = None) -> "ProtectionResult":
        return cls(enabled=False, error=error)


class StepResult(ApiModel):
    success: bool
    message: str | None = None
    value: Any | None = None


class PublishResult(ApiModel):
    route: Route
    url: str
    restart: RestartResult
    dns: StepResult
    protection: ProtectionResult
    dev_server: StepResult | None = None
    warnings: list[PartialFailureWarning] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        """The route is recorded and the daemon picked up the new rule."""
        return self.restart.success

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class RouteUpdateResult(ApiModel):
    route: Route
    changes: dict[str, Any] = Field(default_factory=dict)
    restart: RestartResult | None = None
    dev_server: StepResult | None = None
    warnings: list[PartialFailureWarning] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.restart is None or self.restart.success


class TeardownResult(ApiModel):
    hostname: str
    record_found: bool = False
    ingress_removed: bool = False
    dns_deleted: bool = False
    protection_removed: bool = False
    record_deleted: bool = False
    restart: RestartResult | None = None
    warnings: list[PartialFailureWarning] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        """The thing that identified the route is gone.

        That is the local record when one existed, else the ingress rule.
        """
        return self.record_deleted if self.record_found else self.ingress_removed


class BulkTeardownResult(ApiModel):
    success: bool = True
    deleted: list[str] = Field(default_factory=list)
    errors: list[dict[str, str]] = Field(default_factory=list)
    restart: RestartResult | None = None
    warnings: list[PartialFailureWarning] = Field(default_factory=list)
    message: str | None = None


class HealthResult(ApiModel):
    hostname: str
    healthy: bool
    status: int | None = None
    error: str | None = None


class SyncEntry(ApiModel):
    hostname: str | None = None
    action: str
    local_port: int | None = None
    project_id: str | None = None
    websocket_enabled: bool | None = None
    reason: str | None = None
    error: str | None = None


class SyncResult(ApiModel):
    success: bool = True
    synced: list[SyncEntry] = Field(default_factory=list)
    skipped: list[SyncEntry] = Field(default_factory=list)
    errors: list[SyncEntry] = Field(default_factory=list)
    warnings: list[PartialFailureWarning] = Field(default_factory=list)

    @property
    def mutations(self) -> int:
        return sum(1 for entry in self.synced if entry.action != "unchanged")

    def summary(self) -> dict[str, Any]:
        def dump(entries: list[Any]) -> list[dict[str, Any]]:
            return [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in entries]

        return {
            "success": self.success,
            "synced": len(self.synced),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
            "changed": self.mutations,
            "details": {
                "synced": dump(self.synced),
                "skipped": dump(self.skipped),
                "errors": dump(self.errors),
            },
            "warnings": dump(self.warnings),
        }
