"""Utility functions for the SSH tunnel."""

from typing import Any

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "passphrase",
        "secret",
    }
)


def validate_port(port: int, port_name: str = "Port", allow_zero: bool = False) -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages
        allow_zero: Accept 0 (let the OS pick an ephemeral port)

    Raises:
        ValueError: If port is not in valid range
    """
    low = 0 if allow_zero else MIN_PORT
    if isinstance(port, bool) or not isinstance(port, int) or not (low <= port <= MAX_PORT):
        raise ValueError(f"{port_name} must be between {low} and {MAX_PORT}")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def format_address(host: str, port: int) -> str:
    """Render a host/port pair, bracketing IPv6 literals."""
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def mask_sensitive_data(
    value: str | None, mask_char: str = "*", show_chars: int = 0
) -> str:
    """Mask sensitive data for logging.

    Args:
        value: Sensitive string to mask (e.g., password, passphrase)
        mask_char: Character to use for masking
        show_chars: Number of characters to show at the end

    Returns:
        Masked string safe for logging
    """
    if not value:
        return "<None>"

    if len(value) <= show_chars:
        return mask_char * len(value)

    masked_length = len(value) - show_chars
    return mask_char * masked_length + value[len(value) - show_chars :]


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    """Sanitize dictionary data for safe logging by masking sensitive fields.

    Args:
        data: Dictionary potentially containing sensitive data

    Returns:
        Sanitized dictionary safe for logging
    """
    sanitized = {}
    for key, value in data.items():
        if any(field in key.lower() for field in SENSITIVE_FIELDS):
            sanitized[key] = mask_sensitive_data(str(value) if value else None)
        else:
            sanitized[key] = value

    return sanitized
