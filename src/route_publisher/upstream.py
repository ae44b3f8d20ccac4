"""Authenticated JSON clients for the tunnel provider and identity provider.

Both clients load their settings on every call so that a settings change is
picked up by the next request, and both translate every failure into
:class:`UpstreamError` carrying the provider's own message. Nothing here
retries; retry policy belongs to the caller.
"""

from typing import Any

import httpx

from .common.exceptions import UpstreamError, UpstreamTimeoutError, ValidationError
from .common.logging import get_logger
from .config import (
    IdentitySettings,
    IdentitySettingsProvider,
    PublisherConfig,
    TunnelSettings,
    TunnelSettingsProvider,
)

logger = get_logger(__name__)


class ApiClient:
    """Thin wrapper over ``httpx.Client`` with bearer auth and bounded timeouts."""

    def __init__(self, http_client: httpx.Client | None = None, timeout: float = 15.0):
        self._client = http_client or httpx.Client()
        self._timeout = float(timeout)

    @property
    def timeout(self) -> float:
        return self._timeout

    def send(
        self,
        method: str,
        url: str,
        *,
        token: str | None = None,
        body: Any | None = None,
        params: dict[str, Any] | None = None,
        follow_redirects: bool = True,
    ) -> httpx.Response:
        """Send one request; transport failures become UpstreamError."""
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return self._client.request(
                method,
                url,
                headers=headers,
                json=body,
                params=params,
                timeout=self._timeout,
                follow_redirects=follow_redirects,
            )
        except httpx.TimeoutException as e:
            logger.warning("Upstream request timed out", method=method, url=url)
            raise UpstreamTimeoutError(
                f"Request to {url} timed out after {self._timeout:g}s"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Upstream request failed", method=method, url=url, error=str(e))
            raise UpstreamError(f"Request to {url} failed: {e}") from e

    def head_status(self, url: str) -> int:
        """Return the status code of a HEAD request without following redirects."""
        response = self.send("HEAD", url, follow_redirects=False)
        return response.status_code

    def close(self) -> None:
        self._client.close()


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class CloudflareClient:
    """Client for the tunnel provider's control-plane API (v4 envelope)."""

    def __init__(
        self,
        settings_provider: TunnelSettingsProvider,
        api: ApiClient,
        base_url: str,
    ):
        self._settings_provider = settings_provider
        self._api = api
        self._base_url = base_url.rstrip("/")

    def settings(self) -> TunnelSettings:
        """Load tunnel settings, failing fast with NotConfiguredError."""
        return self._settings_provider().require()

    def call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        params: dict[str, Any] | None = None,
        settings: TunnelSettings | None = None,
    ) -> dict[str, Any]:
        """Call an API endpoint and return the decoded envelope.

        Args:
            endpoint: Path relative to the API base, or an absolute URL
            method: HTTP method
            body: JSON body
            params: Query parameters
            settings: Explicit settings to use instead of the stored ones
                (used to validate credentials before saving them)

        Raises:
            NotConfiguredError: If stored settings are incomplete
            UpstreamError: On transport failure or ``success: false``
        """
        active = settings if settings is not None else self.settings()
        url = endpoint if endpoint.startswith("http") else f"{self._base_url}{endpoint}"

        response = self._api.send(method, url, token=active.api_token, body=body, params=params)
        data = _json_or_none(response)

        if not response.is_success or not isinstance(data, dict) or not data.get("success"):
            errors = data.get("errors", []) if isinstance(data, dict) else []
            message = f"API error: {response.status_code}"
            if errors and isinstance(errors[0], dict) and errors[0].get("message"):
                message = errors[0]["message"]
            logger.warning(
                "Tunnel provider call failed",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
                error=message,
            )
            raise UpstreamError(message, status_code=response.status_code, errors=errors)

        return data

    def _tunnel_path(self, suffix: str = "", settings: TunnelSettings | None = None) -> str:
        active = settings or self.settings()
        return f"/accounts/{active.account_id}/cfd_tunnel/{active.tunnel_id}{suffix}"

    def get_configuration(self) -> dict[str, Any]:
        """Return the tunnel's remote configuration document."""
        data = self.call(self._tunnel_path("/configurations"))
        result = data.get("result") or {}
        return result.get("config") or {}

    def put_configuration(self, config: dict[str, Any]) -> dict[str, Any]:
        return self.call(self._tunnel_path("/configurations"), "PUT", {"config": config})

    def tunnel_info(self, settings: TunnelSettings | None = None) -> dict[str, Any]:
        data = self.call(self._tunnel_path(settings=settings), settings=settings)
        return data.get("result") or {}

    def tunnel_connections(self) -> list[dict[str, Any]]:
        data = self.call(self._tunnel_path("/connections"))
        return data.get("result") or []

    def zone_info(self, settings: TunnelSettings | None = None) -> dict[str, Any]:
        active = settings or self.settings()
        data = self.call(f"/zones/{active.zone_id}", settings=settings)
        return data.get("result") or {}

    def analytics(self, since: str = "-1440") -> dict[str, Any]:
        active = self.settings()
        data = self.call(
            f"/zones/{active.zone_id}/analytics/dashboard",
            params={"since": since, "continuous": "true"},
        )
        result = data.get("result") or {}
        return {
            "totals": result.get("totals") or {},
            "timeseries": result.get("timeseries") or [],
        }


class AuthentikClient:
    """Client for the identity provider's REST API (``/api/v3``)."""

    def __init__(self, settings_provider: IdentitySettingsProvider, api: ApiClient):
        self._settings_provider = settings_provider
        self._api = api

    def settings(self) -> IdentitySettings:
        return self._settings_provider().require()

    def call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
        *,
        settings: IdentitySettings | None = None,
    ) -> Any:
        """Call an identity API endpoint and return the decoded JSON (or None).

        Raises:
            NotConfiguredError: If identity settings are incomplete
            UpstreamError: On transport failure or non-2xx status
        """
        active = settings if settings is not None else self.settings()
        url = f"{active.api_url}/api/v3{endpoint}"

        response = self._api.send(method, url, token=active.api_token, body=body)
        if not response.is_success:
            data = _json_or_none(response)
            detail = data.get("detail") if isinstance(data, dict) else None
            message = f"Identity API error: {response.status_code} - {detail or response.text}"
            logger.warning(
                "Identity provider call failed",
                method=method,
                endpoint=endpoint,
                status=response.status_code,
            )
            raise UpstreamError(message, status_code=response.status_code)

        return _json_or_none(response)

    def whoami(self, settings: IdentitySettings | None = None) -> dict[str, Any]:
        return self.call("/core/users/me/", settings=settings) or {}

    def list_outposts(self) -> list[dict[str, Any]]:
        data = self.call("/outposts/instances/") or {}
        return data.get("results") or []


def build_clients(
    config: PublisherConfig,
    tunnel_settings: TunnelSettingsProvider,
    identity_settings: IdentitySettingsProvider,
    http_client: httpx.Client | None = None,
) -> tuple[ApiClient, CloudflareClient, AuthentikClient]:
    """Wire the shared transport and both provider clients."""
    api = ApiClient(http_client, timeout=config.request_timeout)
    cloudflare = CloudflareClient(tunnel_settings, api, config.api_base_url)
    authentik = AuthentikClient(identity_settings, api)
    return api, cloudflare, authentik


def validate_tunnel_credentials(
    cloudflare: CloudflareClient, settings: TunnelSettings
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Check candidate credentials against the tunnel and zone they name.

    Returns:
        ``(tunnel, zone)`` as reported by the provider

    Raises:
        ValidationError: If the token cannot read the tunnel or the zone
    """
    try:
        tunnel = cloudflare.tunnel_info(settings=settings)
    except UpstreamError as e:
        raise ValidationError(f"Invalid configuration: {e.message}") from e
    try:
        zone = cloudflare.zone_info(settings=settings)
    except UpstreamError as e:
        raise ValidationError(f"Invalid zone: {e.message}") from e
    return tunnel, zone


def validate_identity_credentials(
    authentik: AuthentikClient, settings: IdentitySettings
) -> dict[str, Any]:
    """Return the identity provider's view of the token's user.

    Raises:
        ValidationError: If the provider rejects the token
    """
    try:
        return authentik.whoami(settings=settings)
    except UpstreamError as e:
        raise ValidationError(f"Failed to validate identity provider API: {e.message}") from e
