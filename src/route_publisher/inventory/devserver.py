"""Allowing a published hostname in a project's Vite dev server config.

Vite rejects requests whose Host header is not listed in
``server.allowedHosts``; a freshly published hostname has to be added there
before the route works end to end.
"""

import re
from pathlib import Path

from ..common.logging import get_logger
from ..results import StepResult

logger = get_logger(__name__)

CONFIG_NAMES = ("vite.config.js", "vite.config.ts")

_ALLOWED_HOSTS = re.compile(r"allowedHosts:\s*\[([^\]]*)\]")
_SERVER_BLOCK = re.compile(r"server:\s*\{([^}]*)\}", re.DOTALL)
_CONFIG_OPEN = re.compile(r"(defineConfig\(\{|export default \{)")


def find_dev_server_config(project_path: Path) -> Path | None:
    for name in CONFIG_NAMES:
        candidate = Path(project_path) / name
        if candidate.is_file():
            return candidate
    return None


def add_allowed_host(content: str, hostname: str) -> str | None:
    """Return updated config text, the same text if present, or None if no spot fits."""
    if f"'{hostname}'" in content or f'"{hostname}"' in content:
        return content

    match = _ALLOWED_HOSTS.search(content)
    if match:
        existing = match.group(1).strip().rstrip(",")
        hosts = f"{existing}, '{hostname}'" if existing else f"'{hostname}'"
        return content[: match.start()] + f"allowedHosts: [{hosts}]" + content[match.end() :]

    match = _SERVER_BLOCK.search(content)
    if match:
        body = match.group(1).rstrip()
        separator = "" if not body.strip() or body.endswith(",") else ","
        updated = f"server: {{{body}{separator}\n    allowedHosts: ['{hostname}'],\n  }}"
        return content[: match.start()] + updated + content[match.end() :]

    match = _CONFIG_OPEN.search(content)
    if match:
        insert = f"\n  server: {{\n    allowedHosts: ['{hostname}'],\n  }},"
        return content[: match.end()] + insert + content[match.end() :]

    return None


def allow_dev_server_host(project_path: Path, hostname: str) -> StepResult:
    """Add ``hostname`` to the project's Vite ``allowedHosts``; never raises."""
    config_path = find_dev_server_config(project_path)
    if config_path is None:
        return StepResult(success=False, message="No vite.config.js or vite.config.ts found")

    try:
        content = config_path.read_text(encoding="utf-8")
        updated = add_allowed_host(content, hostname)
        if updated is None:
            return StepResult(
                success=False,
                message="Could not find a place to add allowedHosts",
            )
        if updated == content:
            return StepResult(success=True, message="Hostname already in allowedHosts")
        config_path.write_text(updated, encoding="utf-8")
    except OSError as e:
        logger.error("Failed to update dev server config", path=str(config_path), error=str(e))
        return StepResult(success=False, message=str(e))

    logger.info("Added hostname to dev server allowedHosts", path=str(config_path), hostname=hostname)
    return StepResult(success=True, message=f"Added {hostname} to allowedHosts", value=str(config_path))
