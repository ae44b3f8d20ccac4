"""HTTP API for route publishing.

Handlers are plain ``def`` functions, so FastAPI runs them in its thread
pool; concurrent requests meet at the ingress lock, not in the event loop.
Errors from the domain map onto status codes in :func:`status_for`.
"""

from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .common.exceptions import (
    IngressBusyError,
    NotConfiguredError,
    NotFoundError,
    RoutePublisherError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from .common.logging import get_logger
from .service import IdentitySettingsUpdate, PublisherService, TunnelSettingsUpdate
from .workflow import PublishRequest

logger = get_logger(__name__)


class _Body(BaseModel):
    # Values are checked by the domain layer so bad input gets its 400 shape.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PortUpdate(_Body):
    local_port: Any = None


class FlagUpdate(_Body):
    enabled: Any = None


class ConfirmBody(_Body):
    confirm: Any = None


def status_for(error: RoutePublisherError) -> int:
    if isinstance(error, NotConfiguredError):
        return 412
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, UpstreamTimeoutError):
        return 504
    if isinstance(error, IngressBusyError):
        return 503
    if isinstance(error, UpstreamError):
        return 502
    return 500


def error_body(error: RoutePublisherError) -> dict[str, Any]:
    body: dict[str, Any] = {"error": str(error), "code": error.code}
    if isinstance(error, NotConfiguredError):
        body["service"] = error.service
        body["missing"] = error.missing
    return body


def install_error_handlers(app: FastAPI) -> None:
    async def handle_publisher_error(request: Request, exc: RoutePublisherError) -> JSONResponse:
        status = status_for(exc)
        log = logger.warning if status < 500 else logger.error
        log(
            "Request failed",
            method=request.method,
            path=request.url.path,
            status=status,
            code=exc.code,
            error=str(exc),
        )
        return JSONResponse(status_code=status, content=error_body(exc))

    app.add_exception_handler(RoutePublisherError, handle_publisher_error)


def create_router(service: PublisherService) -> APIRouter:
    """Build the publisher router around one service instance."""
    router = APIRouter(tags=["routes"])
    workflow = service.workflow
    reconciler = service.reconciler

    # Settings

    @router.get("/settings")
    def get_settings() -> dict[str, Any]:
        return service.tunnel_settings()

    @router.post("/settings")
    def save_settings(body: TunnelSettingsUpdate) -> dict[str, Any]:
        return service.save_tunnel_settings(body)

    @router.delete("/settings")
    def clear_settings() -> dict[str, Any]:
        return service.clear_tunnel_settings()

    @router.get("/validate")
    def validate() -> dict[str, Any]:
        return service.validate()

    # Tunnel

    @router.get("/tunnel/config")
    def tunnel_config() -> dict[str, Any]:
        return service.tunnel_config()

    @router.get("/tunnel/info")
    def tunnel_info() -> dict[str, Any]:
        return service.tunnel_info()

    @router.get("/tunnel/status")
    def tunnel_status() -> dict[str, Any]:
        return service.tunnel_status()

    @router.get("/dns")
    def dns_records() -> dict[str, Any]:
        return service.dns_records()

    @router.get("/analytics")
    def analytics(since: str = "-1440") -> dict[str, Any]:
        return service.analytics(since)

    # Routes; fixed paths before /routes/{project_id}

    @router.get("/routes")
    def list_routes() -> dict[str, Any]:
        return {"routes": [route.to_api() for route in service.routes.list()]}

    @router.get("/routes/mapped")
    def mapped_routes() -> dict[str, Any]:
        mapped = reconciler.mapped_routes()
        return {
            "success": True,
            "routes": [m.to_api() for m in mapped.routes],
            "summary": mapped.summary(),
        }

    @router.get("/routes/orphaned")
    def orphaned_routes() -> dict[str, Any]:
        orphans = reconciler.orphaned_routes()
        return {"success": True, "routes": [m.to_api() for m in orphans], "count": len(orphans)}

    @router.delete("/routes/orphaned")
    def delete_orphans(body: ConfirmBody | None = None) -> dict[str, Any]:
        return reconciler.delete_orphans(body.confirm if body else None).to_api()

    @router.delete("/routes/orphaned/{hostname}")
    def delete_orphan(hostname: str) -> dict[str, Any]:
        return reconciler.delete_orphan(hostname).to_api()

    @router.get("/routes/{project_id}")
    def project_routes(project_id: str) -> dict[str, Any]:
        routes, project_port = reconciler.routes_for_project(project_id)
        return {"routes": [r.to_api() for r in routes], "projectPort": project_port}

    @router.put("/routes/{hostname}/port")
    def update_port(hostname: str, body: PortUpdate) -> dict[str, Any]:
        return workflow.update_port(hostname, body.local_port).to_api()

    @router.put("/routes/{hostname}/websocket")
    def set_websocket(hostname: str, body: FlagUpdate) -> dict[str, Any]:
        return workflow.set_websocket(hostname, body.enabled).to_api()

    @router.put("/routes/{hostname}/protection")
    def set_protection(hostname: str, body: FlagUpdate) -> dict[str, Any]:
        return workflow.set_protection(hostname, body.enabled).to_api()

    # Publishing

    @router.post("/publish")
    def publish(body: PublishRequest) -> dict[str, Any]:
        return workflow.publish(body).to_api()

    @router.delete("/publish/{hostname}")
    def unpublish(hostname: str) -> dict[str, Any]:
        return workflow.unpublish(hostname).to_api()

    @router.post("/sync")
    def sync() -> dict[str, Any]:
        return reconciler.sync().summary()

    @router.post("/restart")
    def restart() -> dict[str, Any]:
        return workflow.restart().to_api()

    @router.post("/check-route/{hostname}")
    def check_route(hostname: str) -> dict[str, Any]:
        return workflow.check_route(hostname).to_api()

    # Identity provider

    @router.get("/identity/settings")
    def get_identity_settings() -> dict[str, Any]:
        return service.identity_settings()

    @router.post("/identity/settings")
    def save_identity_settings(body: IdentitySettingsUpdate) -> dict[str, Any]:
        return service.save_identity_settings(body)

    @router.delete("/identity/settings")
    def clear_identity_settings() -> dict[str, Any]:
        return service.clear_identity_settings()

    @router.post("/identity/validate")
    def validate_identity() -> dict[str, Any]:
        return service.validate_identity()

    @router.get("/identity/outposts")
    def identity_outposts() -> dict[str, Any]:
        return service.identity_outposts()

    return router


def create_app(service: PublisherService | None = None, prefix: str = "") -> FastAPI:
    """Application factory; builds a default service from the environment."""
    service = service or PublisherService()
    app = FastAPI(title="route-publisher")
    app.state.service = service
    install_error_handlers(app)
    app.include_router(create_router(service), prefix=prefix)
    return app
