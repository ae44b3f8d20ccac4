"""Local project and listening-socket inventory."""

from .devserver import allow_dev_server_host
from .projects import (
    Project,
    ProjectInventory,
    ProjectPortMap,
    ProjectSource,
    StaticProjectSource,
    parse_declared_port,
    read_declared_port,
)
from .sockets import ListeningSocket, LiveSocketMap, SocketInspector

__all__ = [
    "Project",
    "ProjectInventory",
    "ProjectPortMap",
    "ProjectSource",
    "StaticProjectSource",
    "parse_declared_port",
    "read_declared_port",
    "ListeningSocket",
    "LiveSocketMap",
    "SocketInspector",
    "allow_dev_server_host",
]
