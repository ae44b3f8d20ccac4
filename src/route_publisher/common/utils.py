"""Validation and redaction helpers shared by every component."""

import re
from typing import Any

MIN_PORT = 1
MAX_PORT = 65535

# One DNS label: lowercase letters, digits and inner hyphens, 63 chars max.
_DNS_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")

_SECRET_MARKERS = (
    "token",
    "password",
    "secret",
    "authorization",
)


def validate_port(port: Any, port_name: str = "Port") -> int:
    """Coerce ``port`` to an int in 1-65535.

    Numeric strings are accepted because request bodies and ``.env`` files
    carry ports as text. Booleans are rejected even though they are ints.

    Raises:
        ValueError: naming ``port_name`` and the allowed range
    """
    if isinstance(port, str) and port.strip().isdigit():
        port = int(port.strip())
    valid = isinstance(port, int) and not isinstance(port, bool) and MIN_PORT <= port <= MAX_PORT
    if not valid:
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")
    return int(port)


def validate_non_empty_string(value: str | None, field_name: str) -> str:
    """Return ``value`` stripped, or raise ValueError when it is blank."""
    stripped = (value or "").strip()
    if not stripped:
        raise ValueError(f"{field_name} cannot be empty")
    return stripped


def normalize_subdomain(subdomain: str) -> str:
    """Lowercase a subdomain and check every dotted label is a valid DNS label."""
    value = validate_non_empty_string(subdomain, "Subdomain").lower().strip(".")
    if not all(_DNS_LABEL.match(label) for label in value.split(".")):
        raise ValueError(
            f"Invalid subdomain '{subdomain}': labels may contain only "
            "letters, digits and inner hyphens"
        )
    return value


def mask_sensitive_data(value: str | None, mask_char: str = "*", show_chars: int = 4) -> str:
    """Hide all but the last ``show_chars`` characters of a credential.

    >>> mask_sensitive_data("secret123456")
    '********3456'
    """
    if not value:
        return "<None>"
    hidden = max(len(value) - show_chars, 0)
    visible = value[hidden:] if hidden else ""
    return mask_char * (hidden or len(value)) + visible


def is_sensitive_key(key: Any) -> bool:
    """True for keys that name a credential. ``has_*`` flags are never sensitive."""
    lowered = str(key).lower()
    if lowered.startswith("has_"):
        return False
    return any(marker in lowered for marker in _SECRET_MARKERS)


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with credential values masked, recursing into dicts."""
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
