"""Common utilities and shared functionality."""

from .exceptions import (
    IngressBusyError,
    NotConfiguredError,
    NotFoundError,
    RoutePublisherError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from .logging import get_logger, setup_logging
from .utils import (
    MAX_PORT,
    MIN_PORT,
    mask_sensitive_data,
    normalize_subdomain,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
)

__all__ = [
    # Exceptions
    "RoutePublisherError",
    "NotConfiguredError",
    "NotFoundError",
    "ValidationError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "IngressBusyError",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "normalize_subdomain",
    "mask_sensitive_data",
    "sanitize_log_data",
    "MIN_PORT",
    "MAX_PORT",
]
