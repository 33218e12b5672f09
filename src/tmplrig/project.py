"""Generated projects and the factory that hands them out to tests."""

from __future__ import annotations

import logging
import shutil
import time
import uuid
from pathlib import Path
from threading import Lock
from typing import Callable, Optional, Sequence

from .app_process import LiveApplication
from .config import HarnessConfig
from .errors import CleanupError, SetupError
from .installer import TemplatePackageInstaller
from .process import ProcessRun
from .retry import retry

logger = logging.getLogger("tmplrig.project")

MIGRATIONS_DIR = "Data/Migrations"

EMPTY_MIGRATION = """protected override void Up(MigrationBuilder migrationBuilder)
        {

        }

        protected override void Down(MigrationBuilder migrationBuilder)
        {

        }"""


def _remove_newlines(text: str) -> str:
    return text.replace("\n", "").replace("\r", "")


def new_project_guid() -> str:
    return uuid.uuid4().hex[:6]


class Project:
    """One generated project on disk.

    Every generator, build, publish and migration call holds the shared tool
    lock for its whole duration; running two of them at once corrupts the
    template engine's caches.
    """

    def __init__(
        self,
        config: HarnessConfig,
        tool_lock: Lock,
        output: logging.Logger,
        project_guid: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.tool_lock = tool_lock
        self.output = output
        self.project_guid = project_guid or new_project_guid()
        self.project_name = f"{config.project_name_prefix}.{self.project_guid}"
        self.output_dir = Path(config.output_base_path) / self.project_name
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"Project({self.project_name!r})"

    @property
    def build_dir(self) -> Path:
        return self.output_dir / "bin" / "Debug" / self.config.target_framework

    @property
    def publish_dir(self) -> Path:
        return self.output_dir / "bin" / "Release" / self.config.target_framework / "publish"

    @property
    def harness_directory(self) -> Path:
        """Where generator commands run from (never inside the project)."""
        path = Path(self.config.output_base_path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _hive_arguments(self) -> list[str]:
        return ["--debug:custom-hive", str(self.config.custom_hive_path)]

    def _run_tool(
        self,
        working_directory: Path,
        arguments: Sequence[str],
        assert_success: bool,
    ) -> ProcessRun:
        with self.tool_lock:
            run = ProcessRun.start(self.output, working_directory, self.config.dotnet_path, arguments)
            run.wait_for_exit(assert_success=assert_success)
            return run

    # ------------------------------------------------------------------
    # Tool invocations
    # ------------------------------------------------------------------

    def run_new(
        self,
        template: str,
        auth: Optional[str] = None,
        language: Optional[str] = None,
        use_local_db: bool = False,
        no_https: bool = False,
        assert_success: bool = False,
    ) -> ProcessRun:
        args = ["new", template, *self._hive_arguments()]
        if auth:
            args += ["--auth", auth]
        if language:
            args += ["-lang", language]
        if use_local_db:
            args.append("--use-local-db")
        if no_https:
            args.append("--no-https")
        args += ["-o", str(self.output_dir)]
        return self._run_tool(self.harness_directory, args, assert_success)

    def run_raw(self, arguments: str | Sequence[str], assert_success: bool = False) -> ProcessRun:
        """Run a verbatim generator command line such as ``new webapi -o .``."""
        if isinstance(arguments, str):
            arguments = arguments.split()
        args = [*arguments, *self._hive_arguments(), "-o", str(self.output_dir)]
        return self._run_tool(self.harness_directory, args, assert_success)

    def run_build(self, assert_success: bool = False) -> ProcessRun:
        self.output.info("Building ASP.NET application...")
        return self._run_tool(self.output_dir, ["build", "-c", "Debug"], assert_success)

    def run_publish(self, assert_success: bool = False) -> ProcessRun:
        self.output.info("Publishing ASP.NET application...")
        # The runtime store isn't published alongside the app
        args = ["publish", "-c", "Release", "-p:PublishWithAspNetCoreTargetManifest=false"]
        return self._run_tool(self.output_dir, args, assert_success)

    def run_ef_create_migration(self, migration_name: str, assert_success: bool = False) -> ProcessRun:
        if not self.config.ef_tool_path:
            raise SetupError("No migration tool configured. Set TMPLRIG_EF_TOOL_PATH to the dotnet-ef assembly.")
        args = [self.config.ef_tool_path, "--verbose", "--no-build", "migrations", "add", migration_name]
        return self._run_tool(self.output_dir, args, assert_success)

    # ------------------------------------------------------------------
    # File assertions
    # ------------------------------------------------------------------

    def assert_empty_migration(self, migration: str) -> None:
        migrations_dir = self.output_dir / MIGRATIONS_DIR
        candidates: list[Path] = []
        if migrations_dir.is_dir():
            candidates = sorted(
                p for p in migrations_dir.iterdir() if p.is_file() and p.name.endswith(f"{migration}.cs")
            )
        assert candidates, f"No migration named {migration} in {migrations_dir}"

        # Checkouts may have normalized line endings either way
        contents = candidates[0].read_text(encoding="utf-8")
        assert _remove_newlines(EMPTY_MIGRATION) in _remove_newlines(contents), (
            f"Migration {candidates[0].name} is not empty. Regenerate the template's migrations.\n{contents}"
        )

    def assert_file_exists(self, path: str, should_exist: bool = True) -> None:
        exists = (self.output_dir / path).is_file()
        if should_exist:
            assert exists, f"Expected file to exist, but it doesn't: {path}"
        else:
            assert not exists, f"Expected file not to exist, but it does: {path}"

    def assert_directory_exists(self, path: str, should_exist: bool = True) -> None:
        exists = (self.output_dir / path).is_dir()
        if should_exist:
            assert exists, f"Expected directory to exist, but it doesn't: {path}"
        else:
            assert not exists, f"Expected directory not to exist, but it does: {path}"

    def read_file(self, path: str) -> str:
        self.assert_file_exists(path, should_exist=True)
        return (self.output_dir / path).read_text(encoding="utf-8")

    # ------------------------------------------------------------------
    # Running the application
    # ------------------------------------------------------------------

    def start_built_project(self, **kwargs) -> LiveApplication:
        environment = {
            "ASPNETCORE_URLS": "http://127.0.0.1:0;https://127.0.0.1:0",
            "ASPNETCORE_ENVIRONMENT": "Development",
        }
        return LiveApplication.start(
            self.output,
            self.output_dir,
            self.build_dir / f"{self.project_name}.dll",
            environment,
            config=self.config,
            **kwargs,
        )

    def start_published_project(self, **kwargs) -> LiveApplication:
        environment = {"ASPNETCORE_URLS": "http://127.0.0.1:0;https://127.0.0.1:0"}
        return LiveApplication.start(
            self.output,
            self.publish_dir,
            f"{self.project_name}.dll",
            environment,
            config=self.config,
            **kwargs,
        )

    def start_app(self, publish: bool = False, **kwargs) -> LiveApplication:
        return self.start_published_project(**kwargs) if publish else self.start_built_project(**kwargs)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def delete_output_directory(self) -> bool:
        """Remove the project directory; returns False if it could not be removed."""
        attempts = self.config.delete_attempts

        def remove() -> None:
            if self.output_dir.exists():
                shutil.rmtree(self.output_dir)

        def report(attempt, _value, error) -> None:
            remaining = attempts - attempt
            if remaining > 0:
                logger.warning(
                    f"Failed to delete directory {self.output_dir} because of error {error}. "
                    f"Will try again {remaining} more time(s)."
                )
            else:
                logger.error(
                    f"Giving up trying to delete directory {self.output_dir} after {attempts} attempts.",
                    exc_info=error,
                )

        outcome = retry(
            remove,
            attempts=attempts,
            delay=self.config.delete_interval,
            retry_on=(OSError,),
            on_failure=report,
            sleep=self._sleep,
        )
        return outcome.succeeded

    def dispose(self) -> None:
        self.delete_output_directory()


class ProjectFactory:
    """Creates projects for one test module and deletes them afterwards."""

    def __init__(
        self,
        config: HarnessConfig,
        installer: TemplatePackageInstaller,
        tool_lock: Lock,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.installer = installer
        self.tool_lock = tool_lock
        self._sleep = sleep
        self._lock = Lock()
        self._projects: dict[str, Project] = {}
        self._uncached: list[Project] = []

    @property
    def projects(self) -> list[Project]:
        with self._lock:
            return [*self._projects.values(), *self._uncached]

    def _new_project(self, output: logging.Logger) -> Project:
        return Project(self.config, self.tool_lock, output, sleep=self._sleep)

    def get_or_create(self, key: str, output: logging.Logger) -> Project:
        """Return the project cached under ``key``, creating it on first use."""
        self.installer.ensure_initialized(output)
        with self._lock:
            project = self._projects.get(key)
            if project is None:
                project = self._new_project(output)
                self._projects[key] = project
                logger.debug(f"Created {project.project_name} for key {key!r}")
            return project

    def create(self, output: logging.Logger) -> Project:
        self.installer.ensure_initialized(output)
        project = self._new_project(output)
        with self._lock:
            self._uncached.append(project)
        return project

    def dispose(self) -> None:
        """Delete every project; collected errors are raised together."""
        with self._lock:
            projects = [*self._projects.values(), *self._uncached]
            self._projects.clear()
            self._uncached.clear()

        errors: list[Exception] = []
        for project in projects:
            try:
                project.dispose()
            except Exception as e:
                errors.append(e)
        if errors:
            raise CleanupError(errors)
