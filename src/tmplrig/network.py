"""Network helpers - free ports, endpoints and listening-address discovery."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass
from typing import Optional

LOOPBACK = "127.0.0.1"

# Kestrel prints one of these per bound address once the OS has picked a port
_LISTENING_RE = re.compile(r"Now listening on:\s*(?P<url>(?:https?)://\S+)", re.IGNORECASE)


@dataclass
class ServiceEndpoint:
    """A local server's network endpoint."""
    host: str
    port: int
    path: str = "/"
    scheme: str = "http"

    @property
    def url(self) -> str:
        path = self.path if self.path.startswith("/") else "/" + self.path
        return f"{self.scheme}://{self.host}:{self.port}{path}"


def find_available_port(host: str = LOOPBACK) -> int:
    """Let the OS pick a free TCP port by binding port 0, then release it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def parse_listening_url(line: str) -> Optional[str]:
    """Return the URL announced by a ``Now listening on: <url>`` log line."""
    match = _LISTENING_RE.search(line or "")
    if not match:
        return None
    return match.group("url").rstrip("/")
