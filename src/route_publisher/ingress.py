"""Tunnel ingress rules and serialized access to the ingress document.

The upstream store holds the whole ingress list as one document with no
version token, so every mutation is a read-modify-write. ``IngressAccessor``
funnels all of them through one lock and ``IngressRules`` keeps the
hostname-less catch-all rule pinned to the end of the list.
"""

import threading
from _thread import LockType
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import IngressBusyError, ValidationError
from .common.logging import get_logger
from .upstream import CloudflareClient

logger = get_logger(__name__)

DEFAULT_CATCH_ALL_SERVICE = "http_status:404"


class CatchAllRule(BaseModel):
    """Hostname-less rule handling unmatched traffic."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["catch_all"] = "catch_all"
    service: str = DEFAULT_CATCH_ALL_SERVICE
    origin_request: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_upstream(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data["service"] = self.service
        if self.origin_request:
            data["originRequest"] = dict(self.origin_request)
        return data


class HostRule(BaseModel):
    """Hostname to local origin mapping."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["host"] = "host"
    hostname: str = Field(min_length=1)
    service: str = Field(min_length=1)
    path: str | None = None
    websocket: bool = False
    origin_request: dict[str, Any] = Field(
        default_factory=dict, description="originRequest keys other than websocket"
    )
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_upstream(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data["hostname"] = self.hostname
        if self.path:
            data["path"] = self.path
        data["service"] = self.service
        origin = dict(self.origin_request)
        if self.websocket:
            origin["websocket"] = True
        if origin:
            data["originRequest"] = origin
        return data

    def with_service(self, service: str) -> "HostRule":
        return self.model_copy(update={"service": service})

    def with_websocket(self, enabled: bool) -> "HostRule":
        return self.model_copy(update={"websocket": enabled})

    def origin(self) -> tuple[str, int] | None:
        """Parse ``(host, port)`` out of the service URL.

        A URL without an explicit port gets the scheme default (443 for
        https, 80 otherwise). Non-URL services such as ``http_status:404``
        yield None.
        """
        return parse_origin(self.service)


IngressRule = Annotated[Union[CatchAllRule, HostRule], Field(discriminator="kind")]


def parse_origin(service: str | None) -> tuple[str, int] | None:
    if not service or "://" not in service:
        return None
    parts = urlsplit(service)
    if parts.scheme not in ("http", "https", "ws", "wss", "tcp"):
        return None
    host = parts.hostname or "localhost"
    try:
        port = parts.port
    except ValueError:
        return None
    if port is None:
        port = 443 if parts.scheme in ("https", "wss") else 80
    return host, port


def parse_rule(raw: dict[str, Any]) -> IngressRule:
    """Convert one upstream ingress entry into the tagged representation."""
    known = {"hostname", "service", "path", "originRequest"}
    extra = {k: v for k, v in raw.items() if k not in known}
    origin = dict(raw.get("originRequest") or {})

    if not raw.get("hostname"):
        return CatchAllRule(
            service=raw.get("service") or DEFAULT_CATCH_ALL_SERVICE,
            origin_request=origin,
            extra=extra,
        )

    websocket = bool(origin.pop("websocket", False))
    return HostRule(
        hostname=raw["hostname"],
        service=raw.get("service") or "",
        path=raw.get("path"),
        websocket=websocket,
        origin_request=origin,
        extra=extra,
    )


class IngressRules:
    """Ordered ingress list whose last entry is always the catch-all.

    The catch-all is held apart from the body so no splice can reorder or
    drop it; :attr:`rules` reassembles the list with the catch-all last.
    """

    def __init__(self, rules: list[IngressRule], config_extra: dict[str, Any] | None = None):
        body = list(rules)
        if body and isinstance(body[-1], CatchAllRule):
            self.catch_all: CatchAllRule = body.pop()
            self.repaired = False
        else:
            self.catch_all = CatchAllRule()
            self.repaired = True
        self._body: list[IngressRule] = body
        self._config_extra = dict(config_extra or {})

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "IngressRules":
        raw_rules = config.get("ingress") or []
        extra = {k: v for k, v in config.items() if k != "ingress"}
        rules = cls([parse_rule(r) for r in raw_rules if isinstance(r, dict)], extra)
        if rules.repaired:
            logger.warning("Ingress had no trailing catch-all, appending default")
        return rules

    def to_config(self) -> dict[str, Any]:
        config = dict(self._config_extra)
        config["ingress"] = [rule.to_upstream() for rule in self.rules]
        return config

    @property
    def rules(self) -> list[IngressRule]:
        return [*self._body, self.catch_all]

    @property
    def host_rules(self) -> list[HostRule]:
        return [rule for rule in self._body if isinstance(rule, HostRule)]

    @property
    def hostnames(self) -> set[str]:
        return {rule.hostname.lower() for rule in self.host_rules}

    def _index(self, hostname: str) -> int | None:
        wanted = hostname.lower()
        for i, rule in enumerate(self._body):
            if isinstance(rule, HostRule) and rule.hostname.lower() == wanted:
                return i
        return None

    def find(self, hostname: str) -> HostRule | None:
        index = self._index(hostname)
        if index is None:
            return None
        rule = self._body[index]
        assert isinstance(rule, HostRule)
        return rule

    def add(self, rule: HostRule) -> None:
        """Insert a host rule just before the catch-all.

        Raises:
            ValidationError: If a rule for the hostname already exists
        """
        if self._index(rule.hostname) is not None:
            raise ValidationError(f"Hostname {rule.hostname} is already in the tunnel ingress")
        self._body.append(rule)

    def replace(self, rule: HostRule) -> bool:
        """Swap the rule with the same hostname in place; False if absent."""
        index = self._index(rule.hostname)
        if index is None:
            return False
        self._body[index] = rule
        return True

    def remove(self, hostname: str) -> bool:
        """Drop every rule for ``hostname``; False (no-op) if none existed."""
        wanted = hostname.lower()
        before = len(self._body)
        self._body = [
            r
            for r in self._body
            if not (isinstance(r, HostRule) and r.hostname.lower() == wanted)
        ]
        return len(self._body) != before

    def __len__(self) -> int:
        return len(self._body) + 1

    def __iter__(self) -> Iterator[IngressRule]:
        return iter(self.rules)


class IngressAccessor:
    """Reads and writes the tunnel's ingress list under a single lock."""

    def __init__(
        self,
        cloudflare: CloudflareClient,
        lock_timeout: float = 30.0,
        lock: LockType | None = None,
    ):
        self._cloudflare = cloudflare
        self._lock_timeout = lock_timeout
        self._lock = lock or threading.Lock()

    def get_ingress(self) -> IngressRules:
        return IngressRules.from_config(self._cloudflare.get_configuration())

    def set_ingress(self, rules: IngressRules) -> None:
        self._cloudflare.put_configuration(rules.to_config())

    @contextmanager
    def edit(self, after_write: Callable[[], Any] | None = None) -> Iterator[IngressRules]:
        """Lock, read, yield for mutation, then write back once if changed.

        An exception inside the block skips the write. ``after_write`` runs
        once the write succeeded, still under the lock, so a local record can
        follow the ingress in the same order across threads.

        Raises:
            IngressBusyError: If the lock is not acquired within lock_timeout
        """
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise IngressBusyError(
                f"Ingress configuration is busy (waited {self._lock_timeout:g}s)"
            )
        try:
            rules = self.get_ingress()
            before = rules.to_config()
            yield rules
            after = rules.to_config()
            if after != before:
                self.set_ingress(rules)
                logger.info("Updated tunnel ingress", rules=len(rules))
            if after_write is not None:
                after_write()
        finally:
            self._lock.release()
