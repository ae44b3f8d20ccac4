"""Discovery of local projects and their declared ports.

A project declares its port in a manifest file at its root (``CLAUDE.md`` by
default) with a line such as ``**Port:** 3000`` or ``Port: 3000``. Projects
come from two places: a project source (for instance the application
database) and the directories directly under the projects root.
"""

import re
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from ..common.logging import get_logger
from ..common.utils import MAX_PORT, MIN_PORT

logger = get_logger(__name__)

_BOLD_PORT = re.compile(r"\*\*Port:\*\*\s*(\d+)")
_PLAIN_PORT = re.compile(r"^Port:\s*(\d+)", re.MULTILINE)


class Project(BaseModel):
    """A local project known to the inventory."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    name: str = Field(min_length=1)
    path: Path | None = None
    port: int | None = Field(default=None, ge=MIN_PORT, le=MAX_PORT)
    source: str = "database"

    @property
    def key(self) -> str:
        return self.name.lower()


class ProjectSource(Protocol):
    """Anything that can list the projects the application knows about."""

    def list_projects(self) -> list[Project]: ...


class StaticProjectSource:
    """Project source backed by a fixed list."""

    def __init__(self, projects: list[Project] | None = None):
        self._projects = list(projects or [])

    def list_projects(self) -> list[Project]:
        return list(self._projects)


def parse_declared_port(content: str) -> int | None:
    """Extract the port from manifest text; bold form wins over plain."""
    for pattern in (_BOLD_PORT, _PLAIN_PORT):
        match = pattern.search(content)
        if match:
            port = int(match.group(1))
            if MIN_PORT <= port <= MAX_PORT:
                return port
            return None
    return None


def read_declared_port(project_path: Path, manifest_name: str = "CLAUDE.md") -> int | None:
    """Read a project's declared port; None if the manifest is missing or unreadable."""
    manifest = Path(project_path) / manifest_name
    try:
        content = manifest.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return parse_declared_port(content)


class ProjectPortMap(BaseModel):
    """Bidirectional declared-port map plus name and path indexes.

    A read-only snapshot valid for one reconciliation pass.
    """

    by_port: dict[int, Project] = Field(default_factory=dict)
    by_name: dict[str, int] = Field(default_factory=dict)
    projects_by_name: dict[str, Project] = Field(default_factory=dict)
    projects_by_path: dict[str, Project] = Field(default_factory=dict)

    def project_for_port(self, port: int) -> Project | None:
        return self.by_port.get(port)

    def port_for_project(self, name: str) -> int | None:
        return self.by_name.get(name.lower())


class ProjectInventory:
    """Unions source-known projects with directories under the projects root."""

    def __init__(
        self,
        projects_dir: Path,
        manifest_name: str = "CLAUDE.md",
        source: ProjectSource | None = None,
    ):
        self.projects_dir = Path(projects_dir)
        self.manifest_name = manifest_name
        self.source = source or StaticProjectSource()

    def _filesystem_dirs(self) -> list[Path]:
        try:
            entries = sorted(self.projects_dir.iterdir())
        except OSError as e:
            logger.warning("Cannot list projects root", path=str(self.projects_dir), error=str(e))
            return []
        return [p for p in entries if not p.name.startswith(".") and p.is_dir()]

    def projects(self) -> list[Project]:
        """All known projects with their declared ports, source entries first."""
        found: dict[str, Project] = {}

        for project in self.source.list_projects():
            path = project.path or self.projects_dir / project.name
            port = read_declared_port(path, self.manifest_name)
            if port is None:
                port = read_declared_port(self.projects_dir / project.name, self.manifest_name)
            found.setdefault(
                project.key,
                project.model_copy(update={"path": path, "port": port or project.port}),
            )

        for directory in self._filesystem_dirs():
            if directory.name.lower() in found:
                continue
            found[directory.name.lower()] = Project(
                id=directory.name,
                name=directory.name,
                path=directory,
                port=read_declared_port(directory, self.manifest_name),
                source="filesystem",
            )

        return list(found.values())

    def project_path(self, name: str) -> Path:
        return self.projects_dir / name

    def declared_port(self, name: str) -> int | None:
        return read_declared_port(self.project_path(name), self.manifest_name)

    def port_map(self) -> ProjectPortMap:
        """Build the port map; the first project to declare a port keeps it."""
        port_map = ProjectPortMap()
        for project in self.projects():
            port_map.projects_by_name[project.key] = project
            port_map.projects_by_path[str(project.path)] = project
            if project.port is None:
                continue
            holder = port_map.by_port.get(project.port)
            if holder is not None:
                logger.warning(
                    "Port declared by more than one project",
                    port=project.port,
                    kept=holder.name,
                    ignored=project.name,
                )
                continue
            port_map.by_port[project.port] = project
            port_map.by_name[project.key] = project.port
        return port_map
