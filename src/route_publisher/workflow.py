"""Publishing, updating and tearing down one route across all systems.

Step order and failure policy:

* validation and lookups run first and abort before any upstream change;
* the ingress read-modify-write runs under the ingress lock and aborts the
  operation if it fails, since nothing else has happened yet; the matching
  local record write follows it under the same lock;
* DNS and identity steps run unlocked and degrade into warnings;
* the daemon restart never aborts and its result is reported as-is.

Cancelling a call midway does not roll back steps already applied upstream.
"""

from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .common.exceptions import (
    NotFoundError,
    RoutePublisherError,
    ValidationError,
)
from .common.logging import get_logger
from .common.utils import normalize_subdomain, validate_non_empty_string, validate_port
from .config import PublisherConfig, TunnelSettingsProvider
from .daemon import DaemonController
from .dns import DnsRecordManager
from .identity import ProtectionManager
from .ingress import HostRule, IngressAccessor
from .inventory.devserver import allow_dev_server_host
from .inventory.projects import ProjectInventory
from .results import (
    HealthResult,
    PartialFailureWarning,
    ProtectionResult,
    PublishResult,
    RestartResult,
    RouteUpdateResult,
    StepResult,
    TeardownResult,
)
from .store.models import Route, RouteStatus, utcnow
from .store.routes import RouteStore

logger = get_logger(__name__)

Prober = Callable[[str], int]


class PublishRequest(BaseModel):
    """Parameters for publishing a local service under a subdomain."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    subdomain: str
    local_port: Any
    local_host: str = "localhost"
    project_id: str | None = None
    description: str | None = None
    enable_protection: bool = Field(default=True)
    websocket: bool = False


def _validated(check: Callable[[], Any]) -> Any:
    try:
        return check()
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _validate_local_host(value: str) -> str:
    host = validate_non_empty_string(value, "Local host")
    if "://" in host or "/" in host or " " in host or ":" in host.strip("[]"):
        raise ValueError(f"Invalid local host '{value}': expected a bare hostname or IP")
    return host


class PublicationWorkflow:
    """Creates, changes and removes published routes."""

    def __init__(
        self,
        store: RouteStore,
        ingress: IngressAccessor,
        dns: DnsRecordManager,
        protection: ProtectionManager,
        daemon: DaemonController,
        inventory: ProjectInventory,
        tunnel_settings: TunnelSettingsProvider,
        config: PublisherConfig,
        prober: Prober | None = None,
    ):
        self.store = store
        self.ingress = ingress
        self.dns = dns
        self.protection = protection
        self.daemon = daemon
        self.inventory = inventory
        self._tunnel_settings = tunnel_settings
        self.config = config
        self._prober = prober

    def _get_route(self, hostname: str) -> Route:
        route = self.store.get(hostname)
        if route is None:
            raise NotFoundError(f"Route {hostname} not found")
        return route

    def _dev_server_step(self, project_id: str | None, hostname: str) -> StepResult | None:
        if not project_id or not self.config.update_dev_server_hosts:
            return None
        project_path = self.inventory.project_path(project_id)
        if not project_path.is_dir():
            return StepResult(success=False, message=f"Project path not found: {project_path}")
        return allow_dev_server_host(project_path, hostname)

    def publish(self, request: PublishRequest) -> PublishResult:
        """Publish ``<subdomain>.<zone>`` pointing at the local service.

        Raises:
            ValidationError: Bad input or hostname already published
            NotConfiguredError: Tunnel settings incomplete
            UpstreamError: The ingress update failed (nothing was changed)
        """
        subdomain = _validated(lambda: normalize_subdomain(request.subdomain))
        port = _validated(lambda: validate_port(request.local_port, "Local port"))
        local_host = _validated(lambda: _validate_local_host(request.local_host))

        settings = self._tunnel_settings().require()
        hostname = f"{subdomain}.{settings.zone_name}"
        service = Route.build_service(local_host, port)

        if self.store.get(hostname) is not None:
            raise ValidationError(f"Hostname {hostname} is already published")

        log = logger.bind(hostname=hostname, service=service)
        log.info("Publishing route", websocket=request.websocket)

        pending = Route(
            hostname=hostname,
            subdomain=subdomain,
            local_host=local_host,
            local_port=port,
            service=service,
            websocket_enabled=request.websocket,
            status=RouteStatus.PENDING,
            project_id=request.project_id,
            description=request.description,
        )
        # A sync may import the rule as soon as it is written; upsert wins over it.
        with self.ingress.edit(after_write=lambda: self.store.upsert(pending)) as rules:
            rules.add(HostRule(hostname=hostname, service=service, websocket=request.websocket))

        warnings: list[PartialFailureWarning] = []

        try:
            record_id, dns_problem = self.dns.ensure(hostname)
        except RoutePublisherError as e:
            record_id, dns_problem = None, str(e)
        if dns_problem:
            warnings.append(PartialFailureWarning(step="dns", message=dns_problem, hostname=hostname))
        dns_step = StepResult(success=record_id is not None, message=dns_problem, value=record_id)

        protection = ProtectionResult.disabled()
        if request.enable_protection:
            protection = self.protection.enable(hostname, service)
            if protection.error:
                warnings.append(
                    PartialFailureWarning(step="protection", message=protection.error, hostname=hostname)
                )

        self.store.update(
            hostname,
            dns_record_id=record_id,
            **pending.protection_changes(
                protection.enabled, protection.app_id, protection.app_slug, protection.provider_id
            ),
        )

        restart = self.daemon.restart()
        if restart.success:
            route = self.store.update(
                hostname, status=RouteStatus.ACTIVE, last_checked_at=utcnow(), error_message=None
            )
        else:
            route = self.store.update(hostname, error_message=restart.message)

        dev_server = self._dev_server_step(request.project_id, hostname)

        log.info(
            "Published route",
            status=route.status.value,
            restart=restart.method,
            protected=route.protection_enabled,
            warnings=len(warnings),
        )
        return PublishResult(
            route=route,
            url=route.url,
            restart=restart,
            dns=dns_step,
            protection=protection,
            dev_server=dev_server,
            warnings=warnings,
        )

    def _patch_rule(
        self, hostname: str, patch: Callable[[HostRule], HostRule], **changes: Any
    ) -> Route:
        """Patch the ingress rule, then the local record, under one lock hold."""
        updated: list[Route] = []

        def record() -> None:
            updated.append(self.store.update(hostname, **changes))

        with self.ingress.edit(after_write=record) as rules:
            rule = rules.find(hostname)
            if rule is None:
                raise NotFoundError(f"Route {hostname} not found in tunnel ingress configuration")
            rules.replace(patch(rule))
        return updated[0]

    def update_port(self, hostname: str, local_port: Any) -> RouteUpdateResult:
        """Point an existing route at a different local port.

        Raises:
            ValidationError: Port out of range
            NotFoundError: No local record, or no ingress rule, for hostname
        """
        port = _validated(lambda: validate_port(local_port, "Local port"))
        route = self._get_route(hostname)
        scheme = urlsplit(route.service).scheme or "http"
        service = Route.build_service(route.local_host, port, scheme)

        logger.info("Updating route port", hostname=route.hostname, old=route.local_port, new=port)
        updated = self._patch_rule(
            route.hostname,
            lambda rule: rule.with_service(service),
            local_port=port,
            service=service,
        )
        restart = self.daemon.restart()
        return RouteUpdateResult(
            route=updated,
            changes={"oldPort": route.local_port, "newPort": port, "service": service},
            restart=restart,
            dev_server=self._dev_server_step(route.project_id, route.hostname),
        )

    def set_websocket(self, hostname: str, enabled: Any) -> RouteUpdateResult:
        if not isinstance(enabled, bool):
            raise ValidationError("enabled (boolean) is required")
        route = self._get_route(hostname)

        logger.info("Setting route websocket support", hostname=route.hostname, enabled=enabled)
        updated = self._patch_rule(
            route.hostname, lambda rule: rule.with_websocket(enabled), websocket_enabled=enabled
        )
        restart = self.daemon.restart()
        return RouteUpdateResult(
            route=updated, changes={"websocketEnabled": enabled}, restart=restart
        )

    def set_protection(self, hostname: str, enabled: Any) -> RouteUpdateResult:
        """Turn identity protection on or off; the stored group changes atomically."""
        if not isinstance(enabled, bool):
            raise ValidationError("enabled (boolean) is required")
        route = self._get_route(hostname)
        warnings: list[PartialFailureWarning] = []

        if enabled and not route.protection_enabled:
            result = self.protection.enable(route.hostname, route.service)
            if not result.enabled:
                message = result.error or "Identity protection is not configured or disabled"
                warnings.append(
                    PartialFailureWarning(step="protection", message=message, hostname=route.hostname)
                )
            changes = route.protection_changes(
                result.enabled, result.app_id, result.app_slug, result.provider_id
            )
        elif not enabled and route.protection_enabled:
            warnings.extend(
                self.protection.disable(route.app_slug, route.provider_id, route.hostname)
            )
            changes = route.protection_changes(False)
        else:
            return RouteUpdateResult(route=route, changes={})

        updated = self.store.update(route.hostname, **changes)
        return RouteUpdateResult(
            route=updated,
            changes={"protectionEnabled": updated.protection_enabled},
            warnings=warnings,
        )

    def release(self, hostname: str, route: Route | None) -> TeardownResult:
        """Remove everything except the ingress rule, collecting warnings.

        Deletes the DNS record (by id, else by name lookup), identity
        protection and the local record. Each step runs even if an earlier
        one failed. Shared by single and bulk teardown.
        """
        result = TeardownResult(hostname=hostname)

        def warn(step: str, error: Exception) -> None:
            logger.warning("Teardown step failed", hostname=hostname, step=step, error=str(error))
            result.warnings.append(
                PartialFailureWarning(step=step, message=str(error), hostname=hostname)
            )

        try:
            record_id = route.dns_record_id if route else None
            if record_id is None:
                existing = self.dns.find(hostname)
                record_id = existing.id if existing else None
            if record_id is not None:
                self.dns.delete(record_id)
                result.dns_deleted = True
        except RoutePublisherError as e:
            warn("dns", e)

        if route is not None and route.protection_enabled:
            problems = self.protection.disable(route.app_slug, route.provider_id, hostname)
            result.warnings.extend(problems)
            result.protection_removed = not problems

        if route is not None:
            result.record_found = True
            try:
                self.store.delete(hostname)
                result.record_deleted = True
            except RoutePublisherError as e:
                warn("store", e)

        return result

    def unpublish(self, hostname: str) -> TeardownResult:
        """Tear a route down everywhere, as far as possible.

        A hostname with neither a local record nor an ingress rule is
        NotFoundError. A rule left behind by a half-finished publish (no
        local record) is still removed, so teardown can always be retried.
        """
        route = self.store.get(hostname)
        hostname = route.hostname if route else hostname.strip().lower()

        with self.ingress.edit() as rules:
            removed = rules.remove(hostname)
            if route is None and not removed:
                raise NotFoundError(f"Route {hostname} not found")

        logger.info("Unpublishing route", hostname=hostname, ingress_removed=removed)
        result = self.release(hostname, route)
        result.ingress_removed = removed
        if route is None:
            result.warnings.append(
                PartialFailureWarning(
                    step="store", message="No local record; removed ingress rule only", hostname=hostname
                )
            )

        result.restart = self.daemon.restart()
        return result

    def check_route(self, hostname: str) -> HealthResult:
        """Probe ``https://<hostname>`` and record ACTIVE or ERROR."""
        route = self._get_route(hostname)
        if self._prober is None:
            raise ValidationError("Health probing is not available")

        try:
            status = self._prober(f"https://{route.hostname}")
        except RoutePublisherError as e:
            self.store.update(
                route.hostname,
                status=RouteStatus.ERROR,
                last_checked_at=utcnow(),
                error_message=str(e),
            )
            return HealthResult(hostname=route.hostname, healthy=False, error=str(e))

        healthy = 200 <= status < 500
        self.store.update(
            route.hostname,
            status=RouteStatus.ACTIVE if healthy else RouteStatus.ERROR,
            last_checked_at=utcnow(),
            error_message=None if healthy else f"HTTP {status}",
        )
        logger.info("Checked route", hostname=route.hostname, status=status, healthy=healthy)
        return HealthResult(hostname=route.hostname, healthy=healthy, status=status)

    def restart(self) -> RestartResult:
        return self.daemon.restart()
