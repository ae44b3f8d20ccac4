"""Exception hierarchy for route publishing and reconciliation."""

from typing import Any


class RoutePublisherError(Exception):
    """Base exception for all route publisher errors."""

    code = "error"


class NotConfiguredError(RoutePublisherError):
    """Raised when tunnel or identity settings are missing or incomplete.

    Callers surface this as a setup prompt rather than a generic failure.
    """

    code = "not_configured"

    def __init__(self, service: str, missing: list[str] | None = None):
        self.service = service
        self.missing = list(missing or [])
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"{service.capitalize()} is not configured{detail}")


class NotFoundError(RoutePublisherError):
    """Raised when a route, hostname, ingress rule or project is absent."""

    code = "not_found"


class ValidationError(RoutePublisherError):
    """Raised for bad ports, duplicate hostnames or invalid flags."""

    code = "validation_error"


class UpstreamError(RoutePublisherError):
    """Raised when a tunnel, DNS or identity provider call fails.

    Carries the provider's own error message. Never retried here.
    """

    code = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.errors = list(errors or [])
        super().__init__(message)


class UpstreamTimeoutError(UpstreamError):
    """Raised when an upstream call exceeds its timeout."""

    code = "upstream_timeout"


class IngressBusyError(UpstreamError):
    """Raised when the ingress lock cannot be acquired in time."""

    code = "ingress_busy"
