"""Shared browser-automation driver server.

One driver process serves every browser test of a run. It is started
lazily by the first test that needs it and torn down when the interpreter
exits (or when the owning context shuts down).
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Callable, Optional

import httpx

from .config import HarnessConfig
from .errors import ReadinessTimeout
from .network import LOOPBACK, ServiceEndpoint, find_available_port
from .process import ProcessRun
from .retry import retry
from .tracking import ensure_tracking_dir, remove_tracking_file, write_tracking_file

logger = logging.getLogger("tmplrig.driver")


@dataclass
class AutomationDriver:
    """A running driver server."""
    endpoint: ServiceEndpoint
    process: ProcessRun
    tracking_file: Optional[Path] = None
    _closed: bool = field(default=False, repr=False)

    @property
    def uri(self) -> str:
        return self.endpoint.url

    @property
    def ws_endpoint(self) -> str:
        """Websocket address a browser-automation client connects to."""
        return f"ws://{self.endpoint.host}:{self.endpoint.port}/"

    @property
    def pid(self) -> int:
        return self.process.pid

    def close(self) -> None:
        """Kill the process tree and delete the tracking file (idempotent)."""
        if self._closed:
            return
        self._closed = True
        try:
            self.process.kill()
        except OSError as e:
            logger.warning(f"Error stopping driver process {self.process.pid}: {e}")
        remove_tracking_file(self.tracking_file)


class DriverLauncher:
    """Single-flight factory for the shared :class:`AutomationDriver`.

    Concurrent first callers wait on the same in-flight creation instead of
    starting duplicate servers. A failed creation is reported to every
    waiter and the next call tries again.
    """

    def __init__(
        self,
        config: HarnessConfig,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._transport = transport
        self._sleep = sleep
        self._lock = Lock()
        self._instance: Optional[AutomationDriver] = None
        self._pending: Optional[Future] = None

    @property
    def instance(self) -> Optional[AutomationDriver]:
        return self._instance

    def get_instance(self, output: Optional[logging.Logger] = None) -> AutomationDriver:
        with self._lock:
            if self._instance is not None:
                return self._instance
            owner = self._pending is None
            if owner:
                self._pending = Future()
            future = self._pending

        if not owner:
            return future.result()

        try:
            driver = self._create(output or logger)
        except BaseException as e:
            with self._lock:
                self._pending = None
            future.set_exception(e)
            raise

        with self._lock:
            self._instance = driver
            self._pending = None
        future.set_result(driver)
        return driver

    async def get_instance_async(self, output: Optional[logging.Logger] = None) -> AutomationDriver:
        return await asyncio.to_thread(self.get_instance, output)

    def shutdown(self) -> None:
        with self._lock:
            driver, self._instance = self._instance, None
        if driver is not None:
            atexit.unregister(driver.close)
            driver.close()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _create(self, output: logging.Logger) -> AutomationDriver:
        # Checked before launch: every driver process must be tracked
        tracking_dir = ensure_tracking_dir(self.config.tracking_dir)

        port = find_available_port()
        endpoint = ServiceEndpoint(host=LOOPBACK, port=port, path=self.config.driver_health_path)
        command = self.config.driver_command.format(port=port)

        logger.info(f"Starting automation driver on port {port}: {command}")
        process = ProcessRun.start_via_shell(output, Path.cwd(), command)

        try:
            pid_file = write_tracking_file(tracking_dir, process.pid, output)
        except BaseException:
            process.kill()
            raise

        driver = AutomationDriver(endpoint=endpoint, process=process, tracking_file=pid_file)
        atexit.register(driver.close)

        try:
            self._wait_until_ready(driver, output)
        except BaseException:
            atexit.unregister(driver.close)
            driver.close()
            raise
        logger.info(f"Automation driver ready at {driver.uri} (pid {driver.pid})")
        return driver

    def _wait_until_ready(self, driver: AutomationDriver, output: logging.Logger) -> None:
        attempts = self.config.driver_attempts

        with httpx.Client(timeout=1.0, transport=self._transport, trust_env=False) as client:

            def health_status() -> int:
                if driver.process.has_exited:
                    raise ReadinessTimeout(
                        "Automation driver exited before becoming ready\n"
                        + driver.process.formatted_output()
                    )
                return client.get(driver.uri).status_code

            def report(attempt, status, error) -> None:
                detail = f"status {status}" if status is not None else f"{type(error).__name__}"
                output.debug(f"Driver not ready ({detail}), attempt {attempt}/{attempts}")

            outcome = retry(
                health_status,
                attempts=attempts,
                delay=self.config.driver_interval,
                delay_first=True,
                predicate=lambda status: status == 200,
                retry_on=(httpx.HTTPError,),
                on_failure=report,
                sleep=self._sleep,
            )

        if not outcome.succeeded:
            raise ReadinessTimeout(
                f"Failed to launch the automation driver: no HTTP 200 from {driver.uri} "
                f"after {attempts} attempts"
            )
