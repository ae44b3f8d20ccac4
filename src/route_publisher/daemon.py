"""Restarting the local tunnel daemon."""

import subprocess
from collections.abc import Callable, Sequence
from typing import Any

from .common.logging import get_logger
from .config import DEFAULT_RESTART_COMMANDS, MANUAL_RESTART_HINT
from .results import RestartResult

logger = get_logger(__name__)

Runner = Callable[..., Any]


class DaemonController:
    """Restarts the tunnel daemon through a ranked list of OS commands.

    Each command is tried in order until one exits 0. When all fail the
    result asks for a manual restart. :meth:`restart` never raises, so
    callers can always report what happened upstream of the restart.
    """

    def __init__(
        self,
        commands: Sequence[tuple[str, Sequence[str]]] | None = None,
        timeout: float = 30.0,
        runner: Runner | None = None,
    ):
        self.commands = [
            (method, list(argv)) for method, argv in (commands or DEFAULT_RESTART_COMMANDS)
        ]
        self.timeout = timeout
        self._runner = runner or subprocess.run

    def _attempt(self, method: str, argv: list[str]) -> str | None:
        """Run one command; return None on success or a failure description."""
        try:
            completed = self._runner(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return f"{method} timed out after {self.timeout:g}s"
        except OSError as e:
            return f"{method} could not run: {e}"

        if completed.returncode == 0:
            return None
        stderr = (completed.stderr or "").strip()
        return f"{method} exited {completed.returncode}" + (f": {stderr}" if stderr else "")

    def restart(self) -> RestartResult:
        failures: list[str] = []
        for method, argv in self.commands:
            logger.debug("Restarting tunnel daemon", method=method)
            failure = self._attempt(method, argv)
            if failure is None:
                logger.info("Tunnel daemon restarted", method=method)
                return RestartResult(method=method, success=True)
            logger.warning("Tunnel daemon restart attempt failed", method=method, error=failure)
            failures.append(failure)

        message = f"Please restart cloudflared manually: {MANUAL_RESTART_HINT}"
        logger.warning("Tunnel daemon needs a manual restart", attempts=failures)
        return RestartResult(method="manual", success=False, message=message)
