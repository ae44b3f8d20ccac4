"""Route Publisher - publish local services through a Cloudflare tunnel."""

from .api import create_app, create_router

# Common utilities
from .common.exceptions import (
    IngressBusyError,
    NotConfiguredError,
    NotFoundError,
    RoutePublisherError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from .common.logging import get_logger, setup_logging
from .config import IdentitySettings, PublisherConfig, TunnelSettings
from .daemon import DaemonController
from .dns import DnsRecordManager
from .identity import ProtectionManager
from .ingress import CatchAllRule, HostRule, IngressAccessor, IngressRules
from .inventory import Project, ProjectInventory, SocketInspector, StaticProjectSource
from .matching import MatchMethod, RouteMatch, classify
from .reconcile import ReconciliationEngine
from .results import PartialFailureWarning
from .service import PublisherService
from .store import (
    InMemoryRouteStore,
    InMemorySettingsStore,
    JsonFileRouteStore,
    JsonFileSettingsStore,
    Route,
    RouteStatus,
)
from .upstream import AuthentikClient, CloudflareClient
from .workflow import PublicationWorkflow, PublishRequest

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Composition
    "PublisherService",
    "create_app",
    "create_router",
    # Workflows
    "PublicationWorkflow",
    "PublishRequest",
    "ReconciliationEngine",
    "classify",
    "MatchMethod",
    "RouteMatch",
    # Components
    "CloudflareClient",
    "AuthentikClient",
    "IngressAccessor",
    "IngressRules",
    "HostRule",
    "CatchAllRule",
    "DnsRecordManager",
    "ProtectionManager",
    "DaemonController",
    "ProjectInventory",
    "Project",
    "StaticProjectSource",
    "SocketInspector",
    # Records and settings
    "Route",
    "RouteStatus",
    "InMemoryRouteStore",
    "JsonFileRouteStore",
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
    "TunnelSettings",
    "IdentitySettings",
    "PublisherConfig",
    "PartialFailureWarning",
    # Exceptions
    "RoutePublisherError",
    "NotConfiguredError",
    "NotFoundError",
    "ValidationError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "IngressBusyError",
    # Logging
    "get_logger",
    "setup_logging",
]
