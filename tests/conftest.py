"""Shared pytest fixtures for route publisher tests."""

import copy
import itertools
import json
import subprocess
import threading
import time
from pathlib import Path

import httpx
import pytest

from route_publisher.config import IdentitySettings, PublisherConfig, TunnelSettings
from route_publisher.inventory.sockets import ListeningSocket
from route_publisher.service import PublisherService
from route_publisher.store.routes import InMemoryRouteStore
from route_publisher.store.settings import InMemorySettingsStore

CF_BASE = "https://api.cloudflare.test/client/v4"
AUTH_URL = "https://auth.test"
TUNNEL_PATH = "/accounts/acc-1/cfd_tunnel/tun-1"
ZONE_PATH = "/zones/zone-1"


class FakeUpstream:
    """In-memory tunnel provider and identity provider behind httpx.MockTransport.

    ``fail(method, fragment)`` makes matching requests fail; ``requests``
    records every (method, path) seen.
    """

    def __init__(self):
        self.ingress: list[dict] = [{"service": "http_status:404"}]
        self.config_extra: dict = {"warp-routing": {"enabled": False}}
        self.dns_records: dict[str, dict] = {}
        self.providers: dict[int, dict] = {}
        self.applications: dict[str, dict] = {}
        self.outposts: dict[str, dict] = {
            "outpost-1": {"pk": "outpost-1", "name": "embedded", "providers": [7]}
        }
        self.connections: list[dict] = [
            {"opened_at": "2024-01-01T00:00:00Z", "client_version": "2024.1.0"}
        ]
        self.probe_status = 200
        self.config_delay = 0.0
        self.requests: list[tuple[str, str]] = []
        self.put_count = 0
        self._failures: dict[tuple[str, str], tuple[int, str]] = {}
        self._ids = itertools.count(100)
        self._lock = threading.Lock()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, fragment: str, status: int = 500, message: str = "boom") -> None:
        self._failures[(method, fragment)] = (status, message)

    def count(self, method: str, fragment: str) -> int:
        return sum(1 for m, p in self.requests if m == method and fragment in p)

    def hostnames(self) -> list[str]:
        return [r["hostname"] for r in self.ingress if "hostname" in r]

    def add_rule(self, hostname: str, service: str, websocket: bool = False) -> None:
        rule: dict = {"hostname": hostname, "service": service}
        if websocket:
            rule["originRequest"] = {"websocket": True}
        self.ingress.insert(len(self.ingress) - 1, rule)

    def add_dns(self, name: str) -> str:
        record_id = f"rec-{next(self._ids)}"
        self.dns_records[record_id] = {
            "id": record_id,
            "name": name,
            "type": "CNAME",
            "content": "tun-1.cfargotunnel.com",
            "proxied": True,
        }
        return record_id

    # Dispatch

    def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        with self._lock:
            self.requests.append((method, path))
        for (fail_method, fragment), (status, message) in self._failures.items():
            if fail_method == method and fragment in path:
                if request.url.host == "auth.test":
                    return httpx.Response(status, json={"detail": message})
                return self._error(status, message)

        body = json.loads(request.content) if request.content else None
        if request.url.host == "api.cloudflare.test":
            return self._cloudflare(method, path.removeprefix("/client/v4"), request, body)
        if request.url.host == "auth.test":
            return self._authentik(method, path.removeprefix("/api/v3"), body)
        return httpx.Response(self.probe_status)

    @staticmethod
    def _ok(result, **extra) -> httpx.Response:
        return httpx.Response(
            200, json={"success": True, "errors": [], "messages": [], "result": result, **extra}
        )

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(
            status, json={"success": False, "errors": [{"code": 1000, "message": message}]}
        )

    def _cloudflare(self, method, path, request, body) -> httpx.Response:
        if path == TUNNEL_PATH:
            return self._ok({"id": "tun-1", "name": "dev-tunnel", "status": "healthy"})
        if path == f"{TUNNEL_PATH}/configurations":
            if self.config_delay:
                time.sleep(self.config_delay)
            if method == "PUT":
                with self._lock:
                    self.ingress = copy.deepcopy(body["config"]["ingress"])
                    self.config_extra = {
                        k: v for k, v in body["config"].items() if k != "ingress"
                    }
                    self.put_count += 1
                return self._ok({"tunnel_id": "tun-1", "version": self.put_count})
            config = {**self.config_extra, "ingress": copy.deepcopy(self.ingress)}
            return self._ok({"tunnel_id": "tun-1", "config": config})
        if path == f"{TUNNEL_PATH}/connections":
            return self._ok(self.connections)
        if path == ZONE_PATH:
            return self._ok({"id": "zone-1", "name": "example.com", "status": "active"})
        if path == f"{ZONE_PATH}/analytics/dashboard":
            return self._ok({"totals": {"requests": {"all": 42}}, "timeseries": [{"x": 1}]})
        if path == f"{ZONE_PATH}/dns_records":
            return self._dns(method, request, body)
        if path.startswith(f"{ZONE_PATH}/dns_records/") and method == "DELETE":
            record_id = path.rsplit("/", 1)[-1]
            if self.dns_records.pop(record_id, None) is None:
                return self._error(404, "Record not found")
            return self._ok({"id": record_id})
        return self._error(404, f"No route for {method} {path}")

    def _dns(self, method, request, body) -> httpx.Response:
        if method == "POST":
            if any(r["name"] == body["name"] for r in self.dns_records.values()):
                return self._error(400, "An A, AAAA, or CNAME record with that host already exists.")
            record_id = self.add_dns(body["name"])
            return self._ok(self.dns_records[record_id])
        name = request.url.params.get("name")
        records = [
            r for r in self.dns_records.values() if name is None or r["name"] == name
        ]
        return self._ok(records, result_info={"total_count": len(records)})

    def _authentik(self, method, path, body) -> httpx.Response:
        if path == "/core/users/me/":
            return httpx.Response(200, json={"username": "akadmin", "email": "admin@example.com"})
        if path == "/providers/proxy/" and method == "POST":
            pk = next(self._ids)
            self.providers[pk] = {"pk": pk, **body}
            return httpx.Response(201, json=self.providers[pk])
        if path.startswith("/providers/proxy/") and method == "DELETE":
            pk = int(path.strip("/").rsplit("/", 1)[-1])
            if self.providers.pop(pk, None) is None:
                return httpx.Response(404, json={"detail": "Not found."})
            return httpx.Response(204)
        if path == "/core/applications/" and method == "POST":
            if body["slug"] in self.applications:
                return httpx.Response(400, json={"detail": "slug already exists"})
            app = {"pk": f"app-{next(self._ids)}", **body}
            self.applications[body["slug"]] = app
            return httpx.Response(201, json=app)
        if path.startswith("/core/applications/") and method == "DELETE":
            slug = path.strip("/").rsplit("/", 1)[-1]
            if self.applications.pop(slug, None) is None:
                return httpx.Response(404, json={"detail": "Not found."})
            return httpx.Response(204)
        if path == "/outposts/instances/":
            return httpx.Response(200, json={"results": list(self.outposts.values())})
        if path.startswith("/outposts/instances/"):
            outpost = self.outposts.get(path.strip("/").rsplit("/", 1)[-1])
            if outpost is None:
                return httpx.Response(404, json={"detail": "Not found."})
            if method == "PATCH":
                outpost["providers"] = body["providers"]
            return httpx.Response(200, json=outpost)
        return httpx.Response(404, json={"detail": f"No route for {method} {path}"})


class FakeRunner:
    """Stands in for subprocess.run; each method name maps to a return code."""

    def __init__(self, returncodes: dict[str, int] | None = None):
        self.returncodes = returncodes or {}
        self.calls: list[list[str]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        code = self.returncodes.get(argv[0], 0)
        return subprocess.CompletedProcess(argv, code, "", "" if code == 0 else "failed")


class FakeSockets:
    """Socket inspector with fixed listeners and process working directories."""

    def __init__(self):
        self.sockets: dict[int, ListeningSocket] = {}
        self.cwds: dict[int, Path] = {}

    def listen(self, port: int, pid: int, name: str = "node", cwd: Path | None = None) -> None:
        self.sockets[port] = ListeningSocket(port=port, pid=pid, process_name=name)
        if cwd is not None:
            self.cwds[pid] = cwd

    def listening(self) -> dict[int, ListeningSocket]:
        return dict(self.sockets)

    def cwd(self, pid: int) -> Path | None:
        return self.cwds.get(pid)


@pytest.fixture
def upstream():
    """Fake tunnel and identity providers."""
    return FakeUpstream()


@pytest.fixture
def http_client(upstream):
    client = httpx.Client(transport=upstream.transport())
    yield client
    client.close()


@pytest.fixture
def tunnel_settings():
    return TunnelSettings(
        api_token="cf-secret-token",
        account_id="acc-1",
        tunnel_id="tun-1",
        tunnel_name="dev-tunnel",
        zone_id="zone-1",
        zone_name="example.com",
        configured=True,
    )


@pytest.fixture
def identity_settings():
    return IdentitySettings(
        api_url=AUTH_URL,
        api_token="ak-secret-token",
        outpost_id="outpost-1",
        configured=True,
    )


@pytest.fixture
def settings_store(tunnel_settings, identity_settings):
    return InMemorySettingsStore(tunnel_settings, identity_settings)


@pytest.fixture
def projects_dir(tmp_path):
    """Projects root with two projects declaring ports and one without.

    Returns:
        Path: projects root (webapp -> 3000, api-server -> 8080, notes)
    """
    root = tmp_path / "Projects"
    (root / "webapp").mkdir(parents=True)
    (root / "webapp" / "CLAUDE.md").write_text("# Webapp\n\n**Port:** 3000\n")
    (root / "api-server").mkdir()
    (root / "api-server" / "CLAUDE.md").write_text("Port: 8080\n")
    (root / "notes").mkdir()
    (root / ".hidden").mkdir()
    return root


@pytest.fixture
def config(projects_dir):
    return PublisherConfig(
        projects_dir=projects_dir,
        api_base_url=CF_BASE,
        lock_timeout=5,
        restart_commands=[("systemctl", ["systemctl", "restart", "cloudflared"])],
    )


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def sockets():
    return FakeSockets()


@pytest.fixture
def route_store():
    return InMemoryRouteStore()


@pytest.fixture
def service(config, route_store, settings_store, http_client, runner, sockets):
    """Fully wired publisher against the fake upstream."""
    return PublisherService(
        config,
        route_store,
        settings_store,
        http_client=http_client,
        runner=runner,
        sockets=sockets,
    )
