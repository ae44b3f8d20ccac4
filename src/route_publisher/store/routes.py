"""Route store: the local record of published routes, keyed by hostname."""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

from ..common.exceptions import NotFoundError, ValidationError
from ..common.logging import get_logger
from .models import Route, RouteStatus, utcnow

logger = get_logger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "hostname", "created_at"})


class RouteStore(Protocol):
    """Keyed CRUD access to routes."""

    def get(self, hostname: str) -> Route | None: ...

    def find(self, **filters: Any) -> Route | None: ...

    def create(self, route: Route) -> Route: ...

    def update(self, hostname: str, /, **changes: Any) -> Route: ...

    def delete(self, hostname: str) -> Route: ...

    def upsert(self, route: Route) -> Route: ...

    def list(
        self,
        project_id: str | None = None,
        local_port: int | None = None,
        status: RouteStatus | None = None,
    ) -> list[Route]: ...


class InMemoryRouteStore:
    """Thread-safe in-memory route store.

    ``mutations`` counts writes that actually changed a record, which lets
    callers check that a reconciliation pass was a no-op.
    """

    def __init__(self, routes: list[Route] | None = None):
        self._routes: dict[str, Route] = {}
        self._lock = threading.RLock()
        self.mutations = 0
        for route in routes or []:
            self._routes[route.hostname] = route

    @staticmethod
    def _key(hostname: str) -> str:
        return hostname.strip().lower()

    def _changed(self) -> None:
        self.mutations += 1

    def get(self, hostname: str) -> Route | None:
        with self._lock:
            return self._routes.get(self._key(hostname))

    def find(self, **filters: Any) -> Route | None:
        """Return the first route whose attributes equal every filter."""
        with self._lock:
            for route in self._routes.values():
                if all(getattr(route, k) == v for k, v in filters.items()):
                    return route
        return None

    def create(self, route: Route) -> Route:
        """Add a route.

        Raises:
            ValidationError: If the hostname is already stored
        """
        with self._lock:
            if route.hostname in self._routes:
                raise ValidationError(f"Hostname {route.hostname} is already published")
            self._routes[route.hostname] = route
            self._changed()
        logger.debug("Stored route", hostname=route.hostname, status=route.status.value)
        return route

    def update(self, hostname: str, /, **changes: Any) -> Route:
        """Apply field changes; a change set that alters nothing is a no-op.

        Raises:
            NotFoundError: If no route has that hostname
            ValidationError: For immutable fields or values the model rejects
        """
        bad = _IMMUTABLE_FIELDS.intersection(changes)
        if bad:
            raise ValidationError(f"Cannot update immutable fields: {', '.join(sorted(bad))}")
        unknown = set(changes) - set(Route.model_fields)
        if unknown:
            raise ValidationError(f"Unknown route fields: {', '.join(sorted(unknown))}")

        with self._lock:
            current = self._routes.get(self._key(hostname))
            if current is None:
                raise NotFoundError(f"Route {hostname} not found")

            data = current.model_dump()
            if all(data.get(k) == v for k, v in changes.items()):
                return current

            data.update(changes)
            data["updated_at"] = utcnow()
            try:
                updated = Route.model_validate(data)
            except ValueError as e:
                raise ValidationError(str(e)) from e

            self._routes[current.hostname] = updated
            self._changed()
            return updated

    def delete(self, hostname: str) -> Route:
        with self._lock:
            route = self._routes.pop(self._key(hostname), None)
            if route is None:
                raise NotFoundError(f"Route {hostname} not found")
            self._changed()
        logger.debug("Deleted route", hostname=route.hostname)
        return route

    def upsert(self, route: Route) -> Route:
        with self._lock:
            if route.hostname in self._routes:
                changes = route.model_dump(exclude=set(_IMMUTABLE_FIELDS) | {"updated_at"})
                return self.update(route.hostname, **changes)
            return self.create(route)

    def list(
        self,
        project_id: str | None = None,
        local_port: int | None = None,
        status: RouteStatus | None = None,
    ) -> list[Route]:
        """List routes newest first, optionally filtered."""
        with self._lock:
            routes = list(self._routes.values())

        if project_id is not None:
            routes = [r for r in routes if r.project_id == project_id]
        if local_port is not None:
            routes = [r for r in routes if r.local_port == local_port]
        if status is not None:
            routes = [r for r in routes if r.status == status]

        return sorted(routes, key=lambda r: r.created_at, reverse=True)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {"routes": [r.model_dump(mode="json") for r in self._routes.values()]}

    def load_dict(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._routes = {}
            for raw in data.get("routes", []):
                route = Route.model_validate(raw)
                self._routes[route.hostname] = route


class JsonFileRouteStore(InMemoryRouteStore):
    """Route store persisted as one JSON document, rewritten on every change."""

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self.load_dict(json.loads(self.path.read_text(encoding="utf-8") or "{}"))
            logger.info("Loaded route store", path=str(self.path), routes=len(self.list()))

    def _changed(self) -> None:
        super()._changed()
        self._save()

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self.to_dict(), handle, indent=2)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
