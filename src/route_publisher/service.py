"""Composition root wiring every component from configuration and stores."""

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .common.exceptions import NotConfiguredError, UpstreamError, ValidationError
from .common.logging import get_logger
from .config import IdentitySettings, PublisherConfig, TunnelSettings
from .daemon import DaemonController, Runner
from .dns import DnsRecordManager
from .identity import ProtectionManager
from .ingress import IngressAccessor
from .inventory.projects import ProjectInventory, ProjectSource
from .inventory.sockets import SocketInspector
from .reconcile import ReconciliationEngine
from .store.models import utcnow
from .store.routes import InMemoryRouteStore, RouteStore
from .store.settings import InMemorySettingsStore
from .upstream import (
    ApiClient,
    build_clients,
    validate_identity_credentials,
    validate_tunnel_credentials,
)
from .workflow import PublicationWorkflow

logger = get_logger(__name__)


class TunnelSettingsUpdate(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    api_token: str | None = None
    account_id: str | None = None
    tunnel_id: str | None = None
    zone_id: str | None = None
    zone_name: str | None = None
    default_subdomain: str | None = None


class IdentitySettingsUpdate(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    api_url: str | None = None
    api_token: str | None = None
    outpost_id: str | None = None
    default_group_id: str | None = None
    enabled: bool | None = None


class PublisherService:
    """Builds the publisher from a config, a route store, a settings store
    and a project source, and serves the settings and tunnel queries.

    Route mutations live on :attr:`workflow`; reconciliation on
    :attr:`reconciler`.
    """

    def __init__(
        self,
        config: PublisherConfig | None = None,
        route_store: RouteStore | None = None,
        settings_store: InMemorySettingsStore | None = None,
        project_source: ProjectSource | None = None,
        *,
        http_client: httpx.Client | None = None,
        runner: Runner | None = None,
        sockets: SocketInspector | None = None,
    ):
        self.config = config or PublisherConfig.from_env()
        self.routes = route_store if route_store is not None else InMemoryRouteStore()
        self.settings = settings_store or InMemorySettingsStore()

        self._http_client = http_client or httpx.Client()
        self.api, self.cloudflare, self.authentik = build_clients(
            self.config, self.settings.tunnel, self.settings.identity, self._http_client
        )
        self.prober = ApiClient(self._http_client, timeout=self.config.health_timeout)

        self.ingress = IngressAccessor(self.cloudflare, lock_timeout=self.config.lock_timeout)
        self.dns = DnsRecordManager(self.cloudflare)
        self.protection = ProtectionManager(self.authentik, self.settings.identity)
        self.daemon = DaemonController(
            self.config.restart_commands, timeout=self.config.restart_timeout, runner=runner
        )
        self.inventory = ProjectInventory(
            self.config.projects_dir, self.config.manifest_name, project_source
        )
        self.sockets = sockets or SocketInspector()

        self.workflow = PublicationWorkflow(
            store=self.routes,
            ingress=self.ingress,
            dns=self.dns,
            protection=self.protection,
            daemon=self.daemon,
            inventory=self.inventory,
            tunnel_settings=self.settings.tunnel,
            config=self.config,
            prober=self.prober.head_status,
        )
        self.reconciler = ReconciliationEngine(
            store=self.routes,
            ingress=self.ingress,
            dns=self.dns,
            inventory=self.inventory,
            sockets=self.sockets,
            workflow=self.workflow,
            tunnel_settings=self.settings.tunnel,
        )

    def close(self) -> None:
        self._http_client.close()

    # Tunnel settings

    def tunnel_settings(self) -> dict[str, Any]:
        return self.settings.tunnel().public_view()

    def save_tunnel_settings(self, update: TunnelSettingsUpdate) -> dict[str, Any]:
        """Validate candidate credentials upstream, then persist them.

        An omitted token keeps the stored one.

        Raises:
            ValidationError: Required fields missing or rejected upstream
        """
        current = self.settings.tunnel()
        token = update.api_token or current.api_token
        if not (token and update.account_id and update.tunnel_id and update.zone_id):
            raise ValidationError("API token, account ID, tunnel ID, and zone ID are required")

        candidate = TunnelSettings(
            api_token=token,
            account_id=update.account_id,
            tunnel_id=update.tunnel_id,
            zone_id=update.zone_id,
            zone_name=update.zone_name or None,
            default_subdomain=update.default_subdomain or current.default_subdomain,
        )
        tunnel, zone = validate_tunnel_credentials(self.cloudflare, candidate)

        candidate.tunnel_name = tunnel.get("name")
        candidate.zone_name = update.zone_name or zone.get("name")
        candidate.configured = True
        candidate.last_validated = utcnow()
        saved = self.settings.save_tunnel(candidate)

        return {
            "success": True,
            "configured": True,
            "tunnelName": saved.tunnel_name,
            "zoneName": saved.zone_name,
        }

    def clear_tunnel_settings(self) -> dict[str, Any]:
        self.settings.clear_tunnel()
        logger.info("Cleared tunnel settings")
        return {"success": True}

    def validate(self) -> dict[str, Any]:
        """Re-check stored credentials; zone access is optional."""
        settings = self.settings.tunnel().require()
        tunnel = zone = None
        tunnel_error = zone_error = None

        try:
            tunnel = self.cloudflare.tunnel_info()
        except UpstreamError as e:
            tunnel_error = e.message
        try:
            zone = self.cloudflare.zone_info()
        except UpstreamError as e:
            zone_error = e.message
            logger.info("Zone access not available", error=e.message)

        valid = bool(tunnel and tunnel.get("id"))
        if valid:
            settings.last_validated = utcnow()
            self.settings.save_tunnel(settings)

        def brief(data: dict[str, Any] | None) -> dict[str, Any] | None:
            if not data:
                return None
            return {"id": data.get("id"), "name": data.get("name"), "status": data.get("status")}

        return {
            "valid": valid,
            "tunnel": brief(tunnel),
            "tunnelError": tunnel_error,
            "zone": brief(zone),
            "zoneError": zone_error,
            "warnings": (
                ["Zone access limited - DNS records may need manual creation"] if zone_error else []
            ),
        }

    # Tunnel queries

    def tunnel_config(self) -> dict[str, Any]:
        return {"success": True, "config": self.cloudflare.get_configuration()}

    def tunnel_info(self) -> dict[str, Any]:
        return {"success": True, "tunnel": self.cloudflare.tunnel_info()}

    def tunnel_status(self) -> dict[str, Any]:
        """Connection health plus the number of ingress rules."""
        settings = self.settings.tunnel().require()
        connections = self.cloudflare.tunnel_connections()

        ingress_count = 0
        try:
            ingress_count = len(self.ingress.get_ingress())
        except UpstreamError as e:
            logger.warning("Could not fetch tunnel config for ingress count", error=e.message)

        first = connections[0] if connections else {}
        return {
            "success": True,
            "status": "healthy" if connections else "disconnected",
            "connections": len(connections),
            "ingressCount": ingress_count,
            "connectedAt": first.get("opened_at"),
            "clientVersion": first.get("client_version"),
            "tunnelId": settings.tunnel_id,
            "tunnelName": settings.tunnel_name,
        }

    def dns_records(self) -> dict[str, Any]:
        records, total = self.dns.list_cnames()
        return {"success": True, "records": records, "total": total}

    def analytics(self, since: str = "-1440") -> dict[str, Any]:
        return {"success": True, **self.cloudflare.analytics(since)}

    # Identity settings

    def identity_settings(self) -> dict[str, Any]:
        return self.settings.identity().public_view()

    def save_identity_settings(self, update: IdentitySettingsUpdate) -> dict[str, Any]:
        """Persist identity settings, validating whenever a URL and token are known.

        Raises:
            ValidationError: The provider rejected the credentials
        """
        current = self.settings.identity()
        candidate = IdentitySettings(
            api_url=update.api_url or None,
            api_token=update.api_token or current.api_token,
            outpost_id=update.outpost_id or None,
            default_group_id=update.default_group_id or None,
            enabled=True if update.enabled is None else update.enabled,
        )

        if candidate.api_url and candidate.api_token:
            validate_identity_credentials(self.authentik, candidate)
            candidate.configured = True
            candidate.last_validated = utcnow()

        saved = self.settings.save_identity(candidate)
        return saved.public_view()

    def clear_identity_settings(self) -> dict[str, Any]:
        self.settings.clear_identity()
        logger.info("Cleared identity settings")
        return {"success": True, "message": "Identity provider configuration cleared"}

    def validate_identity(self) -> dict[str, Any]:
        settings = self.settings.identity()
        missing = settings.missing_fields()
        if missing:
            raise NotConfiguredError("identity", missing)

        try:
            user = self.authentik.whoami(settings=settings)
        except UpstreamError as e:
            return {"valid": False, "error": e.message}

        settings.configured = True
        settings.last_validated = utcnow()
        self.settings.save_identity(settings)
        return {"valid": True, "user": user.get("username"), "email": user.get("email")}

    def identity_outposts(self) -> dict[str, Any]:
        return {"success": True, "outposts": self.authentik.list_outposts()}
