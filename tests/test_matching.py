"""Tests for route-to-project matching heuristics."""

from pathlib import Path

import pytest

from route_publisher.inventory import ListeningSocket, Project, ProjectPortMap
from route_publisher.matching import (
    InventorySnapshot,
    MatchMethod,
    classify,
    match_declared_port,
    match_process_cwd,
    match_subdomain,
    normalize_name,
)
from route_publisher.store.models import Route

ROOT = Path("/home/dev/Projects")


def make_route(subdomain="app", port=3000, project_id=None):
    return Route(
        hostname=f"{subdomain}.example.com",
        subdomain=subdomain,
        local_port=port,
        service=f"http://localhost:{port}",
        project_id=project_id,
    )


def make_snapshot(*projects, sockets=None, cwds=None):
    port_map = ProjectPortMap()
    for project in projects:
        port_map.projects_by_name[project.key] = project
        port_map.projects_by_path[str(project.path)] = project
        if project.port is not None and project.port not in port_map.by_port:
            port_map.by_port[project.port] = project
            port_map.by_name[project.key] = project.port
    cwds = cwds or {}
    return InventorySnapshot(
        port_map=port_map,
        sockets=sockets or {},
        projects_root=ROOT,
        cwd_lookup=cwds.get,
    )


@pytest.fixture
def webapp():
    return Project(id="webapp", name="webapp", path=ROOT / "webapp", port=3000)


@pytest.fixture
def dashboard():
    return Project(id="db-42", name="My_Dashboard", path=ROOT / "My_Dashboard", port=5173)


class TestHeuristics:
    """Test individual heuristics."""

    def test_normalize_name(self):
        assert normalize_name("My_Dash-Board") == "mydashboard"

    def test_declared_port(self, webapp):
        snapshot = make_snapshot(webapp)
        assert match_declared_port(make_route(port=3000), snapshot) == (
            webapp,
            MatchMethod.DECLARED_PORT,
        )
        assert match_declared_port(make_route(port=3001), snapshot) is None

    def test_subdomain_substring_both_ways(self, dashboard):
        snapshot = make_snapshot(dashboard)
        assert match_subdomain(make_route("mydashboard-staging", 1), snapshot)[0] == dashboard
        assert match_subdomain(make_route("dash", 1), snapshot)[0] == dashboard
        assert match_subdomain(make_route("unrelated", 1), snapshot) is None

    def test_process_cwd_exact(self, webapp):
        sockets = {4000: ListeningSocket(port=4000, pid=11, process_name="node")}
        snapshot = make_snapshot(webapp, sockets=sockets, cwds={11: ROOT / "webapp"})
        assert match_process_cwd(make_route("x", 4000), snapshot) == (webapp, MatchMethod.PORT_CWD)

    def test_process_cwd_inside_project(self, webapp):
        sockets = {4000: ListeningSocket(port=4000, pid=11)}
        snapshot = make_snapshot(webapp, sockets=sockets, cwds={11: ROOT / "webapp" / "frontend"})
        assert match_process_cwd(make_route("x", 4000), snapshot) == (webapp, MatchMethod.PORT_PATH)

    def test_process_cwd_outside_root(self, webapp):
        sockets = {4000: ListeningSocket(port=4000, pid=11)}
        snapshot = make_snapshot(webapp, sockets=sockets, cwds={11: Path("/tmp")})
        assert match_process_cwd(make_route("x", 4000), snapshot) is None

    def test_process_cwd_unreadable(self, webapp):
        sockets = {4000: ListeningSocket(port=4000, pid=11)}
        snapshot = make_snapshot(webapp, sockets=sockets)
        assert match_process_cwd(make_route("x", 4000), snapshot) is None


class TestClassify:
    """Test precedence and orphan detection."""

    def test_declared_port_beats_project_id(self, webapp, dashboard):
        snapshot = make_snapshot(webapp, dashboard)
        match = classify(make_route("other", 3000, project_id="My_Dashboard"), snapshot)
        assert match.project == webapp
        assert match.method is MatchMethod.DECLARED_PORT
        assert match.configured_port == 3000

    def test_declared_port_beats_subdomain(self, webapp, dashboard):
        """Port 3000 is webapp's even though the name points at the dashboard."""
        snapshot = make_snapshot(webapp, dashboard)
        assert match_subdomain(make_route("mydashboard", 3000), snapshot)[0] == dashboard

        match = classify(make_route("mydashboard", 3000), snapshot)
        assert match.project == webapp
        assert match.method is MatchMethod.DECLARED_PORT
        assert not match.orphaned

    def test_project_id_by_name_or_id(self, dashboard):
        snapshot = make_snapshot(dashboard)
        by_name = classify(make_route("zzz", 1, project_id="my_dashboard"), snapshot)
        by_id = classify(make_route("zzz", 1, project_id="db-42"), snapshot)
        assert by_name.method is MatchMethod.PROJECT_ID
        assert by_id.project == dashboard

    def test_project_id_beats_subdomain(self, webapp, dashboard):
        snapshot = make_snapshot(webapp, dashboard)
        match = classify(make_route("webapp", 1, project_id="My_Dashboard"), snapshot)
        assert match.project == dashboard
        assert match.method is MatchMethod.PROJECT_ID

    def test_subdomain_beats_process_cwd(self, webapp, dashboard):
        sockets = {4000: ListeningSocket(port=4000, pid=11)}
        snapshot = make_snapshot(webapp, dashboard, sockets=sockets, cwds={11: ROOT / "webapp"})
        match = classify(make_route("mydashboard", 4000), snapshot)
        assert match.method is MatchMethod.SUBDOMAIN

    def test_orphan_reports_port_activity(self, webapp):
        sockets = {4000: ListeningSocket(port=4000, pid=11, process_name="python")}
        match = classify(make_route("zzz", 4000), make_snapshot(webapp, sockets=sockets))
        assert match.orphaned
        assert match.project is None
        assert match.port_active
        assert match.port_process == "python"

    def test_custom_heuristic_order(self, webapp):
        snapshot = make_snapshot(webapp)
        match = classify(make_route("webapp", 3000), snapshot, heuristics=[match_subdomain])
        assert match.method is MatchMethod.SUBDOMAIN

    def test_no_heuristics_means_orphaned(self, webapp):
        assert classify(make_route(port=3000), make_snapshot(webapp), heuristics=[]).orphaned
