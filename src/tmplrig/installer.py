"""One-time installation of freshly built template packages.

Before any generator call, every previously registered version of the
template packages is removed from the custom hive, the removal is
verified, the packages produced by the current build are installed, and
the installation is verified. This runs once per installer; every factory
access goes through :meth:`TemplatePackageInstaller.ensure_initialized`.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from threading import Lock
from typing import Optional

from .config import HarnessConfig
from .errors import SetupError
from .logs import null_output
from .process import ProcessRun

logger = logging.getLogger("tmplrig.installer")

PACKAGE_PATTERN = "*.nupkg"


def no_templates_matched(template_name: str) -> str:
    return f"No templates matched the input template name: {template_name}."


class TemplatePackageInstaller:
    """Resets the generator's custom hive to the packages from this build."""

    def __init__(self, config: HarnessConfig, tool_lock: Optional[Lock] = None):
        self.config = config
        self.tool_lock = tool_lock or Lock()
        self._setup_lock = Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def custom_hive_path(self) -> Path:
        return Path(self.config.custom_hive_path)

    @property
    def working_directory(self) -> Path:
        path = Path(self.config.output_base_path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def ensure_initialized(self, output: logging.Logger) -> None:
        """Run the installation exactly once; later calls return immediately.

        A failed installation leaves the flag unset so that the next test
        sees the same setup error instead of running against stale templates.
        """
        with self._setup_lock:
            if self._initialized:
                return
            if self.custom_hive_path.exists():
                shutil.rmtree(self.custom_hive_path)
            self.install_template_packages(output)
            self._initialized = True

    def run_new(self, output: logging.Logger, arguments: list[str], assert_success: bool) -> ProcessRun:
        """Run ``<dotnet> new <arguments>`` against the custom hive."""
        with self.tool_lock:
            run = ProcessRun.start(
                output,
                self.working_directory,
                self.config.dotnet_path,
                ["new", *arguments, "--debug:custom-hive", str(self.custom_hive_path)],
            )
            run.wait_for_exit(assert_success=assert_success)
            return run

    def install_template_packages(self, output: logging.Logger) -> None:
        for package_name in self.config.template_packages:
            # Expected to fail when the package wasn't installed; the
            # verification below is what decides.
            self.run_new(null_output(), ["--uninstall", package_name], assert_success=False)

        for template in self.config.templates_absent_after_uninstall:
            self.verify_cannot_find_template(output, template)

        built = self.find_built_packages()
        packages = [p for p in built if self._is_template_package(p)]
        if len(packages) != self.config.expected_package_count:
            listing = "\n".join(str(p) for p in built) or "(none)"
            raise SetupError(
                f"Expected {self.config.expected_package_count} template packages in "
                f"{self.config.package_dir}, found {len(packages)}. Built packages:\n{listing}"
            )

        for package_path in packages:
            output.info(f"Installing templates package {package_path}...")
            self.run_new(output, ["--install", str(package_path)], assert_success=True)

        for template in self.config.templates_present_after_install:
            self.verify_can_find_template(output, template)

    def find_built_packages(self) -> list[Path]:
        package_dir = Path(self.config.package_dir)
        if not package_dir.is_dir():
            return []
        return sorted(package_dir.glob(PACKAGE_PATTERN))

    def _is_template_package(self, path: Path) -> bool:
        name = path.name.lower()
        return any(name.startswith(t.lower()) for t in self.config.template_packages)

    def verify_can_find_template(self, output: logging.Logger, template_name: str) -> None:
        run = self.run_new(output, [], assert_success=False)
        if f" {template_name} " not in run.output:
            raise SetupError(f"Couldn't find {template_name} as an option in {run.output}.")

    def verify_cannot_find_template(self, output: logging.Logger, template_name: str) -> None:
        run = self.run_new(output, [template_name], assert_success=False)
        if no_templates_matched(template_name) not in run.error:
            raise SetupError(
                f"Failed to uninstall previous templates. The template '{template_name}' could still be found."
            )
