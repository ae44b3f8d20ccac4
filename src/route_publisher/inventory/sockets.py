"""Listening sockets on the host and the processes that own them."""

from pathlib import Path

import psutil
from pydantic import BaseModel, ConfigDict

from ..common.logging import get_logger

logger = get_logger(__name__)


class ListeningSocket(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int
    pid: int | None = None
    process_name: str = "unknown"


LiveSocketMap = dict[int, ListeningSocket]


class SocketInspector:
    """Maps listening TCP ports to owning processes via psutil.

    Without enough privileges psutil may hide other users' sockets or pids;
    those ports are still reported, with ``pid`` None.
    """

    def listening(self) -> LiveSocketMap:
        """Snapshot of listening ports at call time; empty when access is denied."""
        try:
            connections = psutil.net_connections(kind="tcp")
        except (psutil.AccessDenied, OSError) as e:
            logger.warning("Cannot inspect listening sockets", error=str(e))
            return {}

        sockets: LiveSocketMap = {}
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            port = conn.laddr.port
            if port in sockets and sockets[port].pid is not None:
                continue
            sockets[port] = ListeningSocket(
                port=port,
                pid=conn.pid,
                process_name=self._process_name(conn.pid),
            )
        return sockets

    @staticmethod
    def _process_name(pid: int | None) -> str:
        if pid is None:
            return "unknown"
        try:
            return psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return "unknown"

    def cwd(self, pid: int) -> Path | None:
        """Current working directory of ``pid``; None if it cannot be read."""
        try:
            return Path(psutil.Process(pid).cwd())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess, OSError):
            return None
