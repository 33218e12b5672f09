"""A generated application running as a child process.

The application is started with port 0 so the OS picks its ports; the
actual addresses are read back from the ``Now listening on: <url>`` lines
it prints during startup.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from threading import Event, Lock
from typing import TYPE_CHECKING, Any, Optional

import httpx

from .config import HarnessConfig
from .errors import ReadinessTimeout
from .network import parse_listening_url
from .process import ProcessRun
from .retry import retry_async

if TYPE_CHECKING:
    from playwright.sync_api import Page

logger = logging.getLogger("tmplrig.app")


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";")[0].strip().lower()


def _matches(response: httpx.Response, status: int, content_type: Optional[str]) -> bool:
    if response.status_code != status:
        return False
    return content_type is None or _media_type(response) == content_type.lower()


def _describe(response: httpx.Response) -> str:
    media_type = _media_type(response)
    return f"status {response.status_code}" + (f" ({media_type})" if media_type else "")


class LiveApplication:
    """Handle to a running generated application."""

    def __init__(
        self,
        output: logging.Logger,
        http_attempts: int = 10,
        http_interval: float = 0.5,
        startup_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.output = output
        self.http_attempts = http_attempts
        self.http_interval = http_interval
        self.startup_timeout = startup_timeout
        self._transport = transport
        self._lock = Lock()
        self._urls: list[str] = []
        self._http_ready = Event()
        self.process: Optional[ProcessRun] = None
        self.environment: dict[str, str] = {}

    @classmethod
    def start(
        cls,
        output: logging.Logger,
        working_directory: str | Path,
        dll_path: str | Path,
        environment: Optional[dict[str, str]] = None,
        config: Optional[HarnessConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "LiveApplication":
        """Run ``<dotnet> <dll_path>`` in ``working_directory``."""
        config = config or HarnessConfig()
        app = cls(
            output,
            http_attempts=config.http_attempts,
            http_interval=config.http_interval,
            startup_timeout=config.startup_timeout,
            transport=transport,
        )
        app.environment = dict(environment or {})
        output.info(f"Running ASP.NET application {dll_path}...")
        app.process = ProcessRun.start(
            output,
            working_directory,
            config.dotnet_path,
            [str(dll_path)],
            env=app.environment,
            on_line=app._on_line,
        )
        return app

    def _on_line(self, stream: str, line: str) -> None:
        url = parse_listening_url(line)
        if not url:
            return
        with self._lock:
            if url not in self._urls:
                self._urls.append(url)
        if url.startswith("http://"):
            self._http_ready.set()

    @property
    def listening_urls(self) -> list[str]:
        with self._lock:
            return list(self._urls)

    @property
    def listening_uri(self) -> str:
        """The application's plain-HTTP address; waits for startup."""
        return self.wait_for_listening_uri()

    def wait_for_listening_uri(self, timeout: Optional[float] = None) -> str:
        timeout = self.startup_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while not self._http_ready.wait(0.1):
            if self.process is None or self.process.has_exited:
                raise ReadinessTimeout(
                    "Application exited before reporting a listening address\n" + self._diagnostics()
                )
            if time.monotonic() >= deadline:
                raise ReadinessTimeout(
                    f"Application didn't report an http listening address within {timeout}s\n"
                    + self._diagnostics()
                )
        return next(u for u in self.listening_urls if u.startswith("http://"))

    def _diagnostics(self) -> str:
        return self.process.formatted_output() if self.process else "(not started)"

    # ------------------------------------------------------------------
    # HTTP assertions
    # ------------------------------------------------------------------

    def url_for(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.listening_uri + path

    async def assert_ok(self, path: str) -> httpx.Response:
        return await self.assert_status(path, 200)

    async def assert_not_found(self, path: str) -> httpx.Response:
        return await self.assert_status(path, 404)

    async def assert_status(self, path: str, status: int, content_type: Optional[str] = None) -> httpx.Response:
        """GET ``path`` until it answers ``status`` (and ``content_type``, media type only).

        Raises AssertionError when attempts run out.
        """
        base = await asyncio.to_thread(self.wait_for_listening_uri)
        url = base + (path if path.startswith("/") else "/" + path)
        headers = {"Accept": content_type} if content_type else None

        async with httpx.AsyncClient(timeout=5.0, transport=self._transport, trust_env=False) as client:

            async def request() -> httpx.Response:
                return await client.get(url, headers=headers)

            def report(attempt: int, response: Any, error: Optional[BaseException]) -> None:
                got = _describe(response) if response is not None else type(error).__name__
                self.output.debug(f"GET {url}: {got} (attempt {attempt}/{self.http_attempts})")

            outcome = await retry_async(
                request,
                attempts=self.http_attempts,
                delay=self.http_interval,
                predicate=lambda response: _matches(response, status, content_type),
                retry_on=(httpx.TransportError,),
                on_failure=report,
            )

        if not outcome.succeeded:
            expected = f"{status} ({content_type})" if content_type else str(status)
            last = (
                _describe(outcome.value) if outcome.value is not None
                else f"{type(outcome.error).__name__}: {outcome.error}"
            )
            raise AssertionError(
                f"Expected {expected} from GET {url}, got {last} after {outcome.attempts} attempts.\n"
                + self._diagnostics()
            )
        return outcome.value

    def visit_in_browser(self, page: "Page") -> None:
        self.output.info(f"Visiting {self.listening_uri} in the browser")
        page.goto(self.listening_uri)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def has_exited(self) -> bool:
        return self.process is None or self.process.has_exited

    def close(self) -> None:
        if self.process is not None:
            self.process.kill()

    def __enter__(self) -> "LiveApplication":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
