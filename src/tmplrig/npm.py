"""npm restore with retries.

npm installs fail randomly on some CI machines (EPERM while scanning
directories) and are not safe to run in parallel on the same machine, so
every install goes through one semaphore and failed installs are retried
after removing the half-populated ``node_modules``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from threading import BoundedSemaphore
from typing import Optional

from .config import HarnessConfig
from .process import ProcessRun
from .retry import retry

logger = logging.getLogger("tmplrig.npm")


class PackageRestorer:
    """Runs the package manager's install command for generated projects."""

    def __init__(self, config: HarnessConfig, semaphore: Optional[BoundedSemaphore] = None):
        self.config = config
        self.semaphore = semaphore or BoundedSemaphore(1)

    def restore(self, output: logging.Logger, working_directory: Path) -> ProcessRun:
        with self.semaphore:
            output.info(f"Restoring NPM packages in '{working_directory}' using npm...")
            return ProcessRun.run_via_shell(output, working_directory, self.config.npm_command)

    def restore_with_retry(self, output: logging.Logger, working_directory: Path) -> ProcessRun:
        """Install with up to ``restore_attempts`` tries.

        Returns the last result, failing or not; the caller asserts on it.
        """
        attempts = self.config.restore_attempts

        def report(attempt, result: Optional[ProcessRun], error) -> None:
            detail = result.formatted_output() if result is not None else repr(error)
            output.warning(
                f"NPM restore in {working_directory} failed on attempt {attempt} of {attempts}. "
                f"Error was: {detail}"
            )
            self._clean_node_modules(output, Path(working_directory))

        outcome = retry(
            lambda: self.restore(output, working_directory),
            attempts=attempts,
            predicate=lambda result: result.exit_code == 0,
            retry_on=(),
            on_failure=report,
        )
        if not outcome.succeeded:
            output.error(f"Giving up attempting NPM restore in {working_directory} after {outcome.attempts} attempts.")
        return outcome.value

    def run_script(self, output: logging.Logger, working_directory: Path, script: str) -> ProcessRun:
        """Run ``npm run <script>`` (lint, test, ...) once."""
        return ProcessRun.run_via_shell(output, working_directory, f"npm run {script}")

    @staticmethod
    def _clean_node_modules(output: logging.Logger, working_directory: Path) -> None:
        node_modules = working_directory / "node_modules"
        try:
            if node_modules.exists():
                shutil.rmtree(node_modules)
        except OSError:
            output.warning(f"Failed to clean up node_modules folder at {node_modules}.")
