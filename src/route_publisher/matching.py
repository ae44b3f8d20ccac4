"""Matching published routes to local projects.

Each heuristic is a pure function ``(route, snapshot) -> (project, method)``
or None. :func:`classify` tries them in order and the first hit wins; a
route no heuristic claims is orphaned. Order encodes confidence: a port
declared in a project manifest is the source of truth and beats everything.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from .inventory.projects import Project, ProjectPortMap
from .inventory.sockets import LiveSocketMap
from .store.models import Route


class MatchMethod(str, Enum):
    DECLARED_PORT = "claude-md-port"
    PROJECT_ID = "projectId"
    SUBDOMAIN = "subdomain"
    PORT_CWD = "port-cwd"
    PORT_PATH = "port-path"


@dataclass
class InventorySnapshot:
    """Everything the heuristics look at, captured once per pass."""

    port_map: ProjectPortMap
    sockets: LiveSocketMap = field(default_factory=dict)
    projects_root: Path | None = None
    cwd_lookup: Callable[[int], Path | None] = lambda _pid: None


class RouteMatch(BaseModel):
    project: Project | None = None
    method: MatchMethod | None = None
    orphaned: bool = True
    port_active: bool = False
    port_process: str | None = None
    configured_port: int | None = None


Match = tuple[Project, MatchMethod]
Heuristic = Callable[[Route, InventorySnapshot], Match | None]


def normalize_name(name: str) -> str:
    return name.lower().replace("-", "").replace("_", "")


def match_declared_port(route: Route, snapshot: InventorySnapshot) -> Match | None:
    project = snapshot.port_map.project_for_port(route.local_port)
    if project is None:
        return None
    return project, MatchMethod.DECLARED_PORT


def match_project_id(route: Route, snapshot: InventorySnapshot) -> Match | None:
    if not route.project_id:
        return None
    wanted = route.project_id.lower()
    project = snapshot.port_map.projects_by_name.get(wanted)
    if project is None:
        project = next(
            (p for p in snapshot.port_map.projects_by_name.values() if p.id == route.project_id),
            None,
        )
    if project is None:
        return None
    return project, MatchMethod.PROJECT_ID


def match_subdomain(route: Route, snapshot: InventorySnapshot) -> Match | None:
    subdomain = normalize_name(route.subdomain)
    if not subdomain:
        return None
    for key in sorted(snapshot.port_map.projects_by_name):
        name = normalize_name(key)
        if name and (subdomain == name or name in subdomain or subdomain in name):
            return snapshot.port_map.projects_by_name[key], MatchMethod.SUBDOMAIN
    return None


def match_process_cwd(route: Route, snapshot: InventorySnapshot) -> Match | None:
    """Match through the working directory of the process listening on the port."""
    listener = snapshot.sockets.get(route.local_port)
    if listener is None or listener.pid is None:
        return None
    cwd = snapshot.cwd_lookup(listener.pid)
    if cwd is None:
        return None

    project = snapshot.port_map.projects_by_path.get(str(cwd))
    if project is not None:
        return project, MatchMethod.PORT_CWD

    if snapshot.projects_root is None:
        return None
    try:
        relative = cwd.relative_to(snapshot.projects_root)
    except ValueError:
        return None
    if not relative.parts:
        return None
    project = snapshot.port_map.projects_by_name.get(relative.parts[0].lower())
    if project is None:
        return None
    return project, MatchMethod.PORT_PATH


DEFAULT_HEURISTICS: tuple[Heuristic, ...] = (
    match_declared_port,
    match_project_id,
    match_subdomain,
    match_process_cwd,
)


def classify(
    route: Route,
    snapshot: InventorySnapshot,
    heuristics: Sequence[Heuristic] = DEFAULT_HEURISTICS,
) -> RouteMatch:
    """Run the heuristics in order and describe the route's project link."""
    listener = snapshot.sockets.get(route.local_port)
    declared = snapshot.port_map.project_for_port(route.local_port)
    result = RouteMatch(
        port_active=listener is not None,
        port_process=listener.process_name if listener else None,
        configured_port=declared.port if declared else None,
    )

    for heuristic in heuristics:
        match = heuristic(route, snapshot)
        if match is not None:
            project, method = match
            return result.model_copy(update={"project": project, "method": method, "orphaned": False})

    return result
