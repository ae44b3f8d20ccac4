"""SSO reverse-proxy protection for published hostnames.

Protection for one hostname is a proxy provider, an application that uses
it, and the provider's membership in an outpost. The three are managed as
one unit: :meth:`ProtectionManager.enable` either returns all ids or leaves
nothing behind, and never raises because a route works without protection.
"""

from typing import Any

from .common.exceptions import RoutePublisherError
from .common.logging import get_logger
from .config import IdentitySettingsProvider
from .results import PartialFailureWarning, ProtectionResult
from .upstream import AuthentikClient

logger = get_logger(__name__)


def app_slug_for(hostname: str) -> str:
    return hostname.replace(".", "-").lower()


class ProtectionManager:
    """Creates and removes provider/application pairs per hostname."""

    def __init__(self, authentik: AuthentikClient, settings_provider: IdentitySettingsProvider):
        self._authentik = authentik
        self._settings_provider = settings_provider

    @property
    def available(self) -> bool:
        return self._settings_provider().is_active

    def _create_provider(self, hostname: str, origin_url: str) -> dict[str, Any]:
        return self._authentik.call(
            "/providers/proxy/",
            "POST",
            {
                "name": f"Proxy - {hostname}",
                "external_host": f"https://{hostname}",
                "internal_host": origin_url,
                "internal_host_ssl_validation": False,
                "mode": "forward_single",
                "authorization_flow": None,
                "access_token_validity": "hours=24",
            },
        )

    def _create_application(self, hostname: str, provider_pk: Any) -> dict[str, Any]:
        return self._authentik.call(
            "/core/applications/",
            "POST",
            {
                "name": hostname,
                "slug": app_slug_for(hostname),
                "provider": provider_pk,
                "meta_launch_url": f"https://{hostname}",
                "meta_description": f"Published route {hostname}",
                "policy_engine_mode": "any",
            },
        )

    def _bind_to_outpost(self, outpost_id: str, provider_pk: Any) -> None:
        path = f"/outposts/instances/{outpost_id}/"
        outpost = self._authentik.call(path) or {}
        providers = list(outpost.get("providers") or [])
        if provider_pk not in providers:
            providers.append(provider_pk)
        self._authentik.call(path, "PATCH", {"providers": providers})

    def enable(self, hostname: str, origin_url: str) -> ProtectionResult:
        """Protect ``hostname``; returns a disabled result on any failure.

        Objects created before a failing step are deleted again so no
        provider or application is left orphaned upstream.
        """
        settings = self._settings_provider()
        if not settings.is_active:
            logger.debug("Identity protection not active, skipping", hostname=hostname)
            return ProtectionResult.disabled()

        provider_pk = app_slug = None
        try:
            provider = self._create_provider(hostname, origin_url)
            provider_pk = provider["pk"]
            logger.info("Created proxy provider", hostname=hostname, provider_id=provider_pk)

            app = self._create_application(hostname, provider_pk)
            app_slug = app["slug"]
            logger.info("Created application", hostname=hostname, app_id=app["pk"], slug=app_slug)

            if settings.outpost_id:
                self._bind_to_outpost(settings.outpost_id, provider_pk)
                logger.info("Bound provider to outpost", outpost_id=settings.outpost_id)

            return ProtectionResult(
                enabled=True,
                app_id=str(app["pk"]),
                app_slug=app_slug,
                provider_id=str(provider_pk),
            )
        except (RoutePublisherError, KeyError, TypeError) as e:
            logger.error("Failed to set up identity protection", hostname=hostname, error=str(e))
            cleanup = self.disable(
                app_slug,
                str(provider_pk) if provider_pk is not None else None,
            )
            for warning in cleanup:
                logger.warning("Protection cleanup incomplete", hostname=hostname, detail=warning.message)
            return ProtectionResult.disabled(error=str(e))

    def disable(
        self, app_slug: str | None, provider_id: str | None, hostname: str | None = None
    ) -> list[PartialFailureWarning]:
        """Delete the application (by slug), then the provider; tolerate either failing."""
        warnings: list[PartialFailureWarning] = []

        if app_slug:
            try:
                self._authentik.call(f"/core/applications/{app_slug}/", "DELETE")
                logger.info("Deleted application", slug=app_slug)
            except RoutePublisherError as e:
                logger.warning("Failed to delete application", slug=app_slug, error=str(e))
                warnings.append(
                    PartialFailureWarning(
                        step="protection.application", message=str(e), hostname=hostname
                    )
                )

        if provider_id:
            try:
                self._authentik.call(f"/providers/proxy/{provider_id}/", "DELETE")
                logger.info("Deleted proxy provider", provider_id=provider_id)
            except RoutePublisherError as e:
                logger.warning("Failed to delete provider", provider_id=provider_id, error=str(e))
                warnings.append(
                    PartialFailureWarning(
                        step="protection.provider", message=str(e), hostname=hostname
                    )
                )

        return warnings
