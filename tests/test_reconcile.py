"""Tests for reconciliation against the tunnel ingress and local projects."""

import pytest

from route_publisher.common.exceptions import NotFoundError, ValidationError
from route_publisher.reconcile import MISSING_FROM_INGRESS
from route_publisher.store import Route, RouteStatus
from route_publisher.workflow import PublishRequest


def stored_route(hostname, port, **extra):
    return Route(
        hostname=hostname,
        subdomain=hostname.split(".")[0],
        local_port=port,
        service=f"http://localhost:{port}",
        **extra,
    )


class TestSync:
    """Test mirroring the tunnel ingress into the store."""

    def test_creates_records_for_unknown_rules(self, service, upstream, route_store):
        upstream.add_rule("webapp.example.com", "http://localhost:3000", websocket=True)
        upstream.add_rule("misc.example.com", "http://127.0.0.1:9000")
        record_id = upstream.add_dns("webapp.example.com")

        result = service.reconciler.sync()

        assert result.success
        assert [e.action for e in result.synced] == ["created", "created"]
        webapp = route_store.get("webapp.example.com")
        assert webapp.status is RouteStatus.ACTIVE
        assert webapp.project_id == "webapp"
        assert webapp.websocket_enabled
        assert webapp.dns_record_id == record_id
        assert webapp.description == "Linked to webapp (port 3000)"

        misc = route_store.get("misc.example.com")
        assert misc.local_host == "127.0.0.1"
        assert misc.project_id is None
        assert misc.description == "Imported from tunnel"

    def test_skips_catch_all_and_non_url_services(self, service, upstream):
        upstream.add_rule("status.example.com", "http_status:503")
        result = service.reconciler.sync()

        reasons = [e.reason for e in result.skipped]
        assert "catch-all rule" in reasons
        assert any("Unsupported service" in r for r in reasons)
        assert result.synced == []

    def test_updates_changed_rules(self, service, upstream, route_store):
        route_store.create(stored_route("app.example.com", 3000, status=RouteStatus.ERROR))
        upstream.add_rule("app.example.com", "http://localhost:8080")

        result = service.reconciler.sync()

        assert [e.action for e in result.synced] == ["updated"]
        route = route_store.get("app.example.com")
        assert route.local_port == 8080
        assert route.project_id == "api-server"
        assert route.status is RouteStatus.ACTIVE

    def test_keeps_project_id_without_port_match(self, service, upstream, route_store):
        route_store.create(stored_route("app.example.com", 4000, project_id="custom"))
        upstream.add_rule("app.example.com", "http://localhost:4001")

        service.reconciler.sync()
        assert route_store.get("app.example.com").project_id == "custom"

    def test_disables_routes_missing_from_ingress(self, service, route_store):
        route_store.create(stored_route("gone.example.com", 3000, status=RouteStatus.ACTIVE))

        result = service.reconciler.sync()

        assert [e.action for e in result.synced] == ["disabled"]
        route = route_store.get("gone.example.com")
        assert route.status is RouteStatus.DISABLED
        assert route.error_message == MISSING_FROM_INGRESS

    def test_second_run_changes_nothing(self, service, upstream, route_store):
        upstream.add_rule("webapp.example.com", "http://localhost:3000")
        route_store.create(stored_route("gone.example.com", 3000))

        service.reconciler.sync()
        mutations = route_store.mutations
        second = service.reconciler.sync()

        assert route_store.mutations == mutations
        assert second.mutations == 0
        assert [e.action for e in second.synced] == ["unchanged"]
        assert route_store.get("gone.example.com").status is RouteStatus.DISABLED

    def test_rule_reappearing_reactivates(self, service, upstream, route_store):
        route_store.create(stored_route("app.example.com", 3000))
        service.reconciler.sync()
        upstream.add_rule("app.example.com", "http://localhost:3000")

        service.reconciler.sync()
        route = route_store.get("app.example.com")
        assert route.status is RouteStatus.ACTIVE
        assert route.error_message is None

    def test_dns_lookup_failure_is_a_warning(self, service, upstream, route_store):
        upstream.add_rule("app.example.com", "http://localhost:3000")
        upstream.fail("GET", "/dns_records", message="zone locked")

        result = service.reconciler.sync()
        assert [w.step for w in result.warnings] == ["dns"]
        assert route_store.get("app.example.com").dns_record_id is None

    def test_summary(self, service, upstream):
        upstream.add_rule("webapp.example.com", "http://localhost:3000")
        summary = service.reconciler.sync().summary()

        assert summary["synced"] == 1
        assert summary["changed"] == 1
        assert summary["details"]["synced"][0]["localPort"] == 3000
        assert summary["details"]["synced"][0]["projectId"] == "webapp"


class TestMappedRoutes:
    """Test route classification views."""

    @pytest.fixture
    def routes(self, route_store, sockets):
        route_store.create(stored_route("webapp.example.com", 3000))
        route_store.create(stored_route("stray.example.com", 4000))
        route_store.create(stored_route("old.example.com", 4500))
        sockets.listen(4000, pid=42, name="python")
        return route_store

    def test_mapped_routes(self, service, routes):
        mapped = service.reconciler.mapped_routes()

        assert mapped.summary() == {"total": 3, "linked": 1, "orphaned": 2, "portsActive": 1}
        by_host = {m.route.hostname: m.to_api() for m in mapped.routes}
        webapp = by_host["webapp.example.com"]
        assert webapp["project"]["name"] == "webapp"
        assert webapp["matchMethod"] == "claude-md-port"
        assert webapp["isOrphaned"] is False
        assert webapp["configuredPort"] == 3000

        stray = by_host["stray.example.com"]
        assert stray["project"] is None
        assert stray["portActive"] is True
        assert stray["portProcess"] == "python"

    def test_process_cwd_links_route(self, service, routes, sockets, projects_dir):
        sockets.listen(4500, pid=43, cwd=projects_dir / "notes" / "site")
        orphaned = {m.route.hostname for m in service.reconciler.orphaned_routes()}
        assert orphaned == {"stray.example.com"}

    def test_routes_for_project(self, service, route_store):
        route_store.create(stored_route("a.example.com", 3000))
        route_store.create(stored_route("b.example.com", 5000, project_id="webapp"))
        route_store.create(stored_route("c.example.com", 8080))

        routes, declared_port = service.reconciler.routes_for_project("webapp")
        assert declared_port == 3000
        assert {r.hostname for r in routes} == {"a.example.com", "b.example.com"}

    def test_routes_for_project_without_manifest(self, service, route_store):
        routes, declared_port = service.reconciler.routes_for_project("notes")
        assert routes == []
        assert declared_port is None


class TestOrphanCleanup:
    """Test single and bulk orphan deletion."""

    def publish(self, service, subdomain, port):
        service.workflow.publish(
            PublishRequest(subdomain=subdomain, local_port=port, enable_protection=False)
        )

    def test_delete_orphan(self, service, upstream, route_store):
        self.publish(service, "stray", 4000)
        result = service.reconciler.delete_orphan("stray.example.com")

        assert result.record_deleted
        assert result.ingress_removed
        assert upstream.hostnames() == []
        assert route_store.list() == []

    def test_delete_orphan_refuses_linked_route(self, service, upstream):
        self.publish(service, "shop", 3000)
        with pytest.raises(ValidationError, match="linked to webapp"):
            service.reconciler.delete_orphan("shop.example.com")
        assert upstream.hostnames() == ["shop.example.com"]

    def test_delete_orphan_unknown(self, service):
        with pytest.raises(NotFoundError):
            service.reconciler.delete_orphan("nope.example.com")

    @pytest.mark.parametrize("confirm", [False, None, "true", 1])
    def test_delete_orphans_requires_confirmation(self, service, upstream, confirm):
        with pytest.raises(ValidationError, match="Confirmation required"):
            service.reconciler.delete_orphans(confirm)
        assert upstream.requests == []

    def test_delete_orphans_nothing_to_do(self, service, upstream, runner):
        self.publish(service, "shop", 3000)
        calls = len(runner.calls)

        result = service.reconciler.delete_orphans(True)
        assert result.message == "No orphaned routes found"
        assert result.deleted == []
        assert len(runner.calls) == calls

    def test_delete_orphans_batches_upstream_writes(self, service, upstream, runner, route_store):
        self.publish(service, "shop", 3000)
        self.publish(service, "stray", 4000)
        self.publish(service, "older", 4500)
        puts, calls = upstream.put_count, len(runner.calls)

        result = service.reconciler.delete_orphans(True)

        assert sorted(result.deleted) == ["older.example.com", "stray.example.com"]
        assert result.message == "Deleted 2 orphaned route(s)"
        assert result.restart.success
        assert upstream.put_count == puts + 1
        assert len(runner.calls) == calls + 1
        assert upstream.hostnames() == ["shop.example.com"]
        assert [r.hostname for r in route_store.list()] == ["shop.example.com"]
        assert len(upstream.dns_records) == 1

    def test_delete_orphans_collects_dns_warnings(self, service, upstream):
        self.publish(service, "stray", 4000)
        upstream.fail("DELETE", "/dns_records/", message="dns down")

        result = service.reconciler.delete_orphans(True)
        assert result.deleted == ["stray.example.com"]
        assert [w.step for w in result.warnings] == ["dns"]
