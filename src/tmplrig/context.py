"""Process-wide harness state for one test run."""

from __future__ import annotations

import logging
from threading import BoundedSemaphore, Lock
from typing import Optional

from .config import HarnessConfig
from .driver import DriverLauncher
from .installer import TemplatePackageInstaller
from .npm import PackageRestorer
from .project import ProjectFactory

logger = logging.getLogger("tmplrig.context")


class HarnessContext:
    """Owns the locks and singletons every test module shares.

    One context exists per run (the ``harness_context`` session fixture or a
    CLI command). Factories created from it share its tool lock, so generator
    and build invocations never overlap across modules.
    """

    def __init__(self, config: Optional[HarnessConfig] = None):
        self.config = config or HarnessConfig()
        self.tool_lock = Lock()
        self.restore_semaphore = BoundedSemaphore(1)
        self.installer = TemplatePackageInstaller(self.config, self.tool_lock)
        self.driver_launcher = DriverLauncher(self.config)
        self.restorer = PackageRestorer(self.config, self.restore_semaphore)
        self._factories: list[ProjectFactory] = []
        self._lock = Lock()

    def new_factory(self) -> ProjectFactory:
        factory = ProjectFactory(self.config, self.installer, self.tool_lock)
        with self._lock:
            self._factories.append(factory)
        return factory

    def close(self) -> None:
        """Dispose leftover factories and stop the automation driver."""
        with self._lock:
            factories, self._factories = self._factories, []
        try:
            for factory in factories:
                factory.dispose()
        finally:
            self.driver_launcher.shutdown()

    def __enter__(self) -> "HarnessContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
