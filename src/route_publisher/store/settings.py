"""Persistence for tunnel and identity provider settings."""

import json
import threading
from pathlib import Path
from typing import Any

from ..common.logging import get_logger
from ..config import IdentitySettings, TunnelSettings

logger = get_logger(__name__)


class InMemorySettingsStore:
    """Holds the single tunnel settings record and identity settings record.

    The ``tunnel`` and ``identity`` methods are the settings providers handed
    to the upstream clients; they return a fresh copy on every call.
    """

    def __init__(
        self,
        tunnel: TunnelSettings | None = None,
        identity: IdentitySettings | None = None,
    ):
        self._lock = threading.Lock()
        self._tunnel = tunnel or TunnelSettings()
        self._identity = identity or IdentitySettings()

    def tunnel(self) -> TunnelSettings:
        with self._lock:
            return self._tunnel.model_copy()

    def identity(self) -> IdentitySettings:
        with self._lock:
            return self._identity.model_copy()

    def save_tunnel(self, settings: TunnelSettings) -> TunnelSettings:
        with self._lock:
            self._tunnel = settings.model_copy()
        self._persist()
        logger.info("Saved tunnel settings", tunnel_id=settings.tunnel_id, zone=settings.zone_name)
        return settings

    def save_identity(self, settings: IdentitySettings) -> IdentitySettings:
        with self._lock:
            self._identity = settings.model_copy()
        self._persist()
        logger.info("Saved identity settings", api_url=settings.api_url)
        return settings

    def clear_tunnel(self) -> None:
        """Forget credentials but keep nothing half-configured."""
        with self._lock:
            self._tunnel = TunnelSettings(default_subdomain=self._tunnel.default_subdomain)
        self._persist()

    def clear_identity(self) -> None:
        with self._lock:
            self._identity = IdentitySettings()
        self._persist()

    def _persist(self) -> None:
        """Hook for durable subclasses."""

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "tunnel": self._tunnel.model_dump(mode="json"),
                "identity": self._identity.model_dump(mode="json"),
            }


class JsonFileSettingsStore(InMemorySettingsStore):
    """Settings persisted to a JSON file (mode 0600, it holds API tokens)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        tunnel = identity = None
        if self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            tunnel = TunnelSettings.model_validate(data.get("tunnel") or {})
            identity = IdentitySettings.model_validate(data.get("identity") or {})
        super().__init__(tunnel, identity)

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        self.path.chmod(0o600)
