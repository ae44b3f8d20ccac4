"""Local record stores for routes and provider settings."""

from .models import Route, RouteStatus
from .routes import InMemoryRouteStore, JsonFileRouteStore, RouteStore
from .settings import InMemorySettingsStore, JsonFileSettingsStore

__all__ = [
    "Route",
    "RouteStatus",
    "RouteStore",
    "InMemoryRouteStore",
    "JsonFileRouteStore",
    "InMemorySettingsStore",
    "JsonFileSettingsStore",
]
