"""Host and forward spec validation utilities."""

from typing import Final

from sshore.models import TunnelDirection, TunnelSpec

# Characters that could enable shell or option injection in a host name
SUSPICIOUS_CHARS: Final[list[str]] = [
    "/", "\\", ";", "&", "|", "$", "`", " ", "\n", "\r", "\x00",
]


def validate_host(host: str) -> str:
    """Validate a host name.

    Args:
        host: The host name to validate

    Returns:
        Validated host name

    Raises:
        ValueError: If host name is invalid
    """
    if not host:
        raise ValueError("Host cannot be empty")

    if len(host) > 253:
        raise ValueError(f"Host name too long: {len(host)} chars")

    if host.startswith("-"):
        raise ValueError(f"Host cannot start with '-': {host!r}")

    for char in SUSPICIOUS_CHARS:
        if char in host:
            raise ValueError(f"Host contains invalid characters: {host!r}")

    return host


def validate_port(value: str | int, spec: str = "") -> int:
    """Parse and range-check a TCP port (1-65535).

    Raises:
        ValueError: If the value is not an integer in range
    """
    context = f" in forward spec '{spec}'" if spec else ""
    try:
        port = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid port '{value}'{context}") from e
    if not 1 <= port <= 65535:
        raise ValueError(f"Port {port} out of valid range (1-65535){context}")
    return port


def parse_forward_spec(
    spec: str,
    direction: TunnelDirection = TunnelDirection.LOCAL,
    persist: bool = False,
) -> TunnelSpec:
    """Parse an OpenSSH style forward spec.

    Accepts ``port:host:hostport`` or ``bind_address:port:host:hostport``.

    Args:
        spec: Forward spec from the command line
        direction: Local (-L) or remote (-R) forward
        persist: Reconnect automatically when the forward is lost

    Returns:
        Parsed TunnelSpec

    Raises:
        ValueError: If the spec is malformed
    """
    if not spec:
        raise ValueError("Forward spec cannot be empty")

    parts = spec.split(":")
    if len(parts) == 3:
        bind_address = "127.0.0.1"
        bind_port, target_host, target_port = parts
    elif len(parts) == 4:
        bind_address, bind_port, target_host, target_port = parts
        validate_host(bind_address)
    else:
        raise ValueError(
            f"Invalid forward spec '{spec}': expected "
            "[bind_address:]port:host:hostport"
        )

    try:
        validate_host(target_host)
    except ValueError as e:
        raise ValueError(f"Invalid host in forward spec '{spec}': {e}") from e

    return TunnelSpec(
        direction=direction,
        bind_address=bind_address,
        bind_port=validate_port(bind_port, spec),
        target_host=target_host,
        target_port=validate_port(target_port, spec),
        persist=persist,
    )
