"""Utility functions for aioradiocast."""

from __future__ import annotations

import socket

# Never contacted; only used to pick the outgoing interface.
ROUTE_PROBE_ADDRESS = ("8.8.8.8", 80)


def get_local_ip() -> str | None:
    """Return the address of the interface used for outgoing traffic, or None offline."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(ROUTE_PROBE_ADDRESS)
            address: str = sock.getsockname()[0]
    except OSError:
        return None
    return address


def listener_url(host: str, port: int, path: str) -> str:
    """Build the URL listeners tune into, resolving wildcard hosts to a reachable address."""
    if host in ("", "0.0.0.0"):
        host = get_local_ip() or "127.0.0.1"
    return f"http://{host}:{port}{path}"
