"""Reconciling the route store with the tunnel and the local inventory.

The tunnel ingress is authoritative for which routes exist. :meth:`sync`
brings the store in line with it; the other operations classify stored
routes against local projects and clean up the ones no project claims.
"""

from typing import Any

from pydantic import BaseModel, Field

from .common.exceptions import NotFoundError, RoutePublisherError, ValidationError
from .common.logging import get_logger
from .config import TunnelSettingsProvider
from .dns import DnsRecordManager
from .ingress import CatchAllRule, IngressAccessor
from .inventory.projects import ProjectInventory
from .inventory.sockets import SocketInspector
from .matching import DEFAULT_HEURISTICS, Heuristic, InventorySnapshot, RouteMatch, classify
from .results import (
    BulkTeardownResult,
    PartialFailureWarning,
    SyncEntry,
    SyncResult,
    TeardownResult,
)
from .store.models import Route, RouteStatus, utcnow
from .store.routes import RouteStore
from .workflow import PublicationWorkflow

logger = get_logger(__name__)

MISSING_FROM_INGRESS = "Not found in tunnel ingress configuration"


class MappedRoute(BaseModel):
    route: Route
    match: RouteMatch

    def to_api(self) -> dict[str, Any]:
        project = self.match.project
        return {
            **self.route.to_api(),
            "project": (
                {
                    "id": project.id,
                    "name": project.name,
                    "path": str(project.path) if project.path else None,
                    "port": project.port,
                }
                if project
                else None
            ),
            "matchMethod": self.match.method.value if self.match.method else None,
            "isOrphaned": self.match.orphaned,
            "portActive": self.match.port_active,
            "portProcess": self.match.port_process,
            "configuredPort": self.match.configured_port,
        }


class MappedRoutes(BaseModel):
    routes: list[MappedRoute] = Field(default_factory=list)

    @property
    def orphaned(self) -> list[MappedRoute]:
        return [m for m in self.routes if m.match.orphaned]

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.routes),
            "linked": sum(1 for m in self.routes if not m.match.orphaned),
            "orphaned": len(self.orphaned),
            "portsActive": sum(1 for m in self.routes if m.match.port_active),
        }


class ReconciliationEngine:
    """Keeps stored routes consistent with the tunnel and local projects."""

    def __init__(
        self,
        store: RouteStore,
        ingress: IngressAccessor,
        dns: DnsRecordManager,
        inventory: ProjectInventory,
        sockets: SocketInspector,
        workflow: PublicationWorkflow,
        tunnel_settings: TunnelSettingsProvider,
        heuristics: tuple[Heuristic, ...] = DEFAULT_HEURISTICS,
    ):
        self.store = store
        self.ingress = ingress
        self.dns = dns
        self.inventory = inventory
        self.sockets = sockets
        self.workflow = workflow
        self._tunnel_settings = tunnel_settings
        self.heuristics = heuristics

    def snapshot(self) -> InventorySnapshot:
        """Capture the port map and live sockets once for a pass."""
        return InventorySnapshot(
            port_map=self.inventory.port_map(),
            sockets=self.sockets.listening(),
            projects_root=self.inventory.projects_dir,
            cwd_lookup=self.sockets.cwd,
        )

    def classify(self, route: Route, snapshot: InventorySnapshot | None = None) -> RouteMatch:
        return classify(route, snapshot or self.snapshot(), self.heuristics)

    def _subdomain_for(self, hostname: str, zone_name: str) -> str:
        suffix = f".{zone_name}"
        if hostname.endswith(suffix) and len(hostname) > len(suffix):
            return hostname[: -len(suffix)]
        return hostname.split(".", 1)[0]

    def sync(self) -> SyncResult:
        """Make the store mirror the tunnel ingress.

        Creates records for unknown hostnames, refreshes known ones and marks
        stored routes absent from the ingress DISABLED. Records are never
        deleted, and a second run with nothing changed upstream writes
        nothing.
        """
        settings = self._tunnel_settings().require()
        rules = self.ingress.get_ingress()
        port_map = self.inventory.port_map()
        result = SyncResult()
        seen: set[str] = set()

        for rule in rules.rules:
            if isinstance(rule, CatchAllRule):
                result.skipped.append(SyncEntry(action="skipped", reason="catch-all rule"))

        for rule in rules.host_rules:
            hostname = rule.hostname.lower()
            seen.add(hostname)
            origin = rule.origin()
            if origin is None:
                result.skipped.append(
                    SyncEntry(
                        hostname=hostname,
                        action="skipped",
                        reason=f"Unsupported service {rule.service}",
                    )
                )
                continue

            local_host, local_port = origin
            project = port_map.project_for_port(local_port)
            try:
                entry = self._sync_rule(
                    hostname,
                    rule.service,
                    local_host,
                    local_port,
                    rule.websocket,
                    project.name if project else None,
                    settings.zone_name or "",
                    result.warnings,
                )
            except (RoutePublisherError, ValueError) as e:
                logger.error("Failed to sync route", hostname=hostname, error=str(e))
                result.errors.append(SyncEntry(hostname=hostname, action="error", error=str(e)))
                continue
            result.synced.append(entry)

        for route in self.store.list():
            if route.hostname in seen:
                continue
            if route.status == RouteStatus.DISABLED and route.error_message == MISSING_FROM_INGRESS:
                continue
            self.store.update(
                route.hostname, status=RouteStatus.DISABLED, error_message=MISSING_FROM_INGRESS
            )
            result.synced.append(
                SyncEntry(hostname=route.hostname, action="disabled", reason=MISSING_FROM_INGRESS)
            )

        result.success = not result.errors
        logger.info(
            "Synced routes from tunnel ingress",
            synced=len(result.synced),
            changed=result.mutations,
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        return result

    def _sync_rule(
        self,
        hostname: str,
        service: str,
        local_host: str,
        local_port: int,
        websocket: bool,
        project_id: str | None,
        zone_name: str,
        warnings: list[PartialFailureWarning],
    ) -> SyncEntry:
        existing = self.store.get(hostname)

        if existing is not None:
            wanted: dict[str, Any] = {
                "service": service,
                "local_host": local_host,
                "local_port": local_port,
                "websocket_enabled": websocket,
                "project_id": project_id or existing.project_id,
                "status": RouteStatus.ACTIVE,
                "error_message": None,
            }
            changes = {k: v for k, v in wanted.items() if getattr(existing, k) != v}
            if not changes:
                return SyncEntry(
                    hostname=hostname,
                    action="unchanged",
                    local_port=local_port,
                    project_id=existing.project_id,
                    websocket_enabled=websocket,
                )
            changes["last_checked_at"] = utcnow()
            route = self.store.update(hostname, **changes)
            return SyncEntry(
                hostname=hostname,
                action="updated",
                local_port=local_port,
                project_id=route.project_id,
                websocket_enabled=websocket,
            )

        record_id = None
        try:
            record = self.dns.find(hostname)
            record_id = record.id if record else None
        except RoutePublisherError as e:
            warnings.append(PartialFailureWarning(step="dns", message=str(e), hostname=hostname))

        if project_id:
            description = f"Linked to {project_id} (port {local_port})"
        else:
            description = "Imported from tunnel"
        self.store.create(
            Route(
                hostname=hostname,
                subdomain=self._subdomain_for(hostname, zone_name),
                local_host=local_host,
                local_port=local_port,
                service=service,
                websocket_enabled=websocket,
                status=RouteStatus.ACTIVE,
                dns_record_id=record_id,
                project_id=project_id,
                description=description,
                last_checked_at=utcnow(),
            )
        )
        return SyncEntry(
            hostname=hostname,
            action="created",
            local_port=local_port,
            project_id=project_id,
            websocket_enabled=websocket,
        )

    def mapped_routes(self) -> MappedRoutes:
        snapshot = self.snapshot()
        return MappedRoutes(
            routes=[
                MappedRoute(route=route, match=self.classify(route, snapshot))
                for route in self.store.list()
            ]
        )

    def orphaned_routes(self) -> list[MappedRoute]:
        return self.mapped_routes().orphaned

    def routes_for_project(self, project_id: str) -> tuple[list[Route], int | None]:
        """Routes linked to a project by id or by its declared port."""
        declared_port = self.inventory.declared_port(project_id)
        routes = {r.hostname: r for r in self.store.list(project_id=project_id)}
        if declared_port is not None:
            for route in self.store.list(local_port=declared_port):
                routes.setdefault(route.hostname, route)
        ordered = sorted(routes.values(), key=lambda r: r.created_at, reverse=True)
        return ordered, declared_port

    def delete_orphan(self, hostname: str) -> TeardownResult:
        """Tear down one route, refusing if a project still claims it.

        Raises:
            NotFoundError: No such route
            ValidationError: The route is linked to a project
        """
        route = self.store.get(hostname)
        if route is None:
            raise NotFoundError(f"Route {hostname} not found")
        match = self.classify(route)
        if not match.orphaned:
            name = match.project.name if match.project else "a project"
            raise ValidationError(
                f"Route {route.hostname} is linked to {name}; unpublish it instead"
            )
        return self.workflow.unpublish(route.hostname)

    def delete_orphans(self, confirm: Any = False) -> BulkTeardownResult:
        """Tear down every orphaned route with one ingress write and one restart.

        Raises:
            ValidationError: ``confirm`` is not exactly True
        """
        if confirm is not True:
            raise ValidationError("Confirmation required: pass confirm=true to delete orphaned routes")

        snapshot = self.snapshot()
        orphans = [r for r in self.store.list() if self.classify(r, snapshot).orphaned]
        if not orphans:
            return BulkTeardownResult(message="No orphaned routes found")

        logger.info("Deleting orphaned routes", count=len(orphans))
        with self.ingress.edit() as rules:
            for route in orphans:
                rules.remove(route.hostname)

        result = BulkTeardownResult()
        for route in orphans:
            try:
                teardown = self.workflow.release(route.hostname, route)
            except RoutePublisherError as e:
                result.errors.append({"hostname": route.hostname, "error": str(e)})
                continue
            result.warnings.extend(teardown.warnings)
            if teardown.success:
                result.deleted.append(route.hostname)
            else:
                result.errors.append(
                    {"hostname": route.hostname, "error": "Local record was not deleted"}
                )

        result.restart = self.workflow.restart()
        result.success = not result.errors
        result.message = f"Deleted {len(result.deleted)} orphaned route(s)"
        return result
