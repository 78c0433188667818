"""Address helpers for talkback endpoints and delivery origins."""

from __future__ import annotations

import socket
from typing import Optional, Tuple
from urllib.parse import urlsplit

from .errors import DispatchError


def get_local_ip() -> str:
    """Return the first non-loopback IPv4 address, or ``127.0.0.1``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only selects the outbound interface.
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def talkback_endpoint(port: int, host: Optional[str] = None) -> str:
    """URL workers use to send step results back to this orchestrator."""
    return f"http://{host or get_local_ip()}:{port}"


def host_and_port(url: str) -> Tuple[str, int]:
    """Split ``scheme://host:port`` into its host and port.

    Raises:
        DispatchError: If ``url`` has no host or no valid port.
    """
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        port = parts.port
    except ValueError as e:
        raise DispatchError(f"Invalid URL: {url}") from e
    if not hostname or port is None:
        raise DispatchError(f"Invalid URL: {url}")
    return hostname, port
