"""End-to-end flows for each project template.

Each flow takes a fresh :class:`~tmplrig.project.Project`, generates it,
builds and publishes it, starts both variants and checks them over HTTP. Tool calls
block, so the coroutines push them to worker threads.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Optional

from .app_process import LiveApplication
from .baseline import DEFAULT_IGNORE, IgnoreRules, TemplateBaseline, verify_file_set
from .browser import BrowserSession, assert_basic_navigation, is_host_automation_supported
from .npm import PackageRestorer
from .project import Project

if TYPE_CHECKING:
    from .driver import AutomationDriver

logger = logging.getLogger("tmplrig.scenarios")

# Tooling packages a no-auth project must not reference
AUTH_ONLY_REFERENCES = (
    ".db",
    "Microsoft.EntityFrameworkCore.Tools",
    "Microsoft.VisualStudio.Web.CodeGeneration.Design",
    "Microsoft.EntityFrameworkCore.Tools.DotNet",
    "Microsoft.Extensions.SecretManager.Tools",
)

NPM_TESTED_TEMPLATES = ("react", "reactredux")


def assert_no_auth_references(project_file_contents: str) -> None:
    for reference in AUTH_ONLY_REFERENCES:
        assert reference not in project_file_contents, f"Unexpected reference to {reference}"


async def publish_and_build(project: Project) -> None:
    # Publish first: it writes to bin/Release/<fw>/publish, which a later
    # Debug build leaves alone. The other order breaks the build output.
    await asyncio.to_thread(project.run_publish, True)
    await asyncio.to_thread(project.run_build, True)


@asynccontextmanager
async def running(start: Callable[[], LiveApplication]) -> AsyncIterator[LiveApplication]:
    """Start an application and kill it on exit, both off the event loop."""
    app = await asyncio.to_thread(start)
    try:
        yield app
    finally:
        await asyncio.to_thread(app.close)


async def _check_both_variants(project: Project, ok_paths: tuple[str, ...], not_found_paths: tuple[str, ...] = ()) -> None:
    for publish in (False, True):
        async with running(lambda: project.start_app(publish=publish)) as app:
            for path in ok_paths:
                await app.assert_ok(path)
            for path in not_found_paths:
                await app.assert_not_found(path)


async def empty_web(project: Project) -> None:
    await asyncio.to_thread(project.run_new, "web", assert_success=True)
    await publish_and_build(project)
    await _check_both_variants(project, ("/",))


async def web_api(project: Project) -> None:
    await asyncio.to_thread(project.run_new, "webapi", assert_success=True)
    await publish_and_build(project)
    await _check_both_variants(project, ("/api/values",), not_found_paths=("/",))


async def mvc_no_auth(project: Project, language: Optional[str] = None) -> None:
    await asyncio.to_thread(project.run_new, "mvc", language=language, assert_success=True)

    project.assert_directory_exists("Areas", False)
    project.assert_directory_exists("Extensions", False)
    project.assert_file_exists("urlRewrite.config", False)
    project.assert_file_exists("Controllers/AccountController.cs", False)

    extension = "fsproj" if language == "F#" else "csproj"
    assert_no_auth_references(project.read_file(f"{project.project_name}.{extension}"))

    await publish_and_build(project)
    await _check_both_variants(project, ("/", "/Home/Privacy"))


async def mvc_individual_auth(project: Project, use_local_db: bool = False) -> None:
    await asyncio.to_thread(
        project.run_new, "mvc", auth="Individual", use_local_db=use_local_db, assert_success=True
    )

    project.assert_directory_exists("Extensions", False)
    project.assert_file_exists("urlRewrite.config", False)
    project.assert_file_exists("Controllers/AccountController.cs", False)

    contents = project.read_file(f"{project.project_name}.csproj")
    if not use_local_db:
        assert ".db" in contents

    await publish_and_build(project)
    await asyncio.to_thread(project.run_ef_create_migration, "mvc", True)
    project.assert_empty_migration("mvc")

    await _check_both_variants(project, ("/", "/Identity/Account/Login", "/Home/Privacy"))


async def razor_pages_no_auth(project: Project) -> None:
    await asyncio.to_thread(project.run_new, "razor", assert_success=True)

    project.assert_file_exists("Pages/Shared/_LoginPartial.cshtml", False)
    assert_no_auth_references(project.read_file(f"{project.project_name}.csproj"))

    await publish_and_build(project)
    await _check_both_variants(project, ("/", "/Privacy"))


async def razor_pages_individual_auth(project: Project, use_local_db: bool = False) -> None:
    await asyncio.to_thread(
        project.run_new, "razor", auth="Individual", use_local_db=use_local_db, assert_success=True
    )

    project.assert_file_exists("Pages/Shared/_LoginPartial.cshtml", True)
    contents = project.read_file(f"{project.project_name}.csproj")
    if not use_local_db:
        assert ".db" in contents

    await publish_and_build(project)
    await asyncio.to_thread(project.run_ef_create_migration, "razorpages", True)
    project.assert_empty_migration("razorpages")

    await _check_both_variants(project, ("/", "/Identity/Account/Login", "/Privacy"))


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> dict[str, Any]:
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = value
    return target


def update_published_settings(project: Project) -> Path:
    """Make the published app sign tokens with the development key."""
    settings = json.loads(project.read_file("appsettings.json"))
    development = json.loads(project.read_file("appsettings.Development.json"))

    identity = settings.setdefault("IdentityServer", {})
    _deep_merge(identity, development.get("IdentityServer", {}))
    _deep_merge(identity, {"Key": {"FilePath": "./tempkey.json"}})

    target = project.publish_dir / "appsettings.json"
    target.write_text(json.dumps(settings, indent=2), encoding="utf-8")
    return target


def _browse(app: LiveApplication, driver: "AutomationDriver", project_guid: str, visit_fetch_data: bool) -> None:
    # Playwright's sync API must not run on the event loop's thread
    with BrowserSession.connect(driver) as session:
        page = session.new_page()
        app.visit_in_browser(page)
        assert_basic_navigation(page, project_guid, visit_fetch_data=visit_fetch_data)


async def spa_template(
    project: Project,
    template: str,
    restorer: PackageRestorer,
    driver: Optional["AutomationDriver"] = None,
    use_local_db: bool = False,
    uses_auth: bool = False,
) -> None:
    """Generate, restore, lint, test, publish and browse a SPA template."""
    await asyncio.to_thread(
        project.run_new,
        template,
        auth="Individual" if uses_auth else None,
        use_local_db=use_local_db,
        assert_success=True,
    )

    # Restoring up front keeps concurrent builds from running npm in parallel
    client_app = project.output_dir / "ClientApp"
    assert (client_app / "package.json").is_file(), "Missing a package.json"

    contents = project.read_file(f"{project.project_name}.csproj")
    if uses_auth and not use_local_db:
        assert ".db" in contents

    restore = await asyncio.to_thread(restorer.restore_with_retry, project.output, client_app)
    assert restore.exit_code == 0, restore.formatted_output()

    lint = await asyncio.to_thread(restorer.run_script, project.output, client_app, "lint")
    assert lint.exit_code == 0, lint.formatted_output()

    if template in NPM_TESTED_TEMPLATES:
        tests = await asyncio.to_thread(restorer.run_script, project.output, client_app, "test")
        assert tests.exit_code == 0, tests.formatted_output()

    await publish_and_build(project)

    if uses_auth:
        await asyncio.to_thread(project.run_ef_create_migration, template, True)
        project.assert_empty_migration(template)

    browse = driver is not None and is_host_automation_supported()

    async with running(project.start_built_project) as app:
        await app.assert_status("/", 200, "text/html")
        if browse:
            await asyncio.to_thread(_browse, app, driver, project.project_guid, not uses_auth)

    if uses_auth:
        update_published_settings(project)

    async with running(project.start_published_project) as app:
        await app.assert_status("/", 200, "text/html")
        if browse:
            await asyncio.to_thread(_browse, app, driver, project.project_guid, not uses_auth)


def baseline(project: Project, entry: TemplateBaseline, ignore: IgnoreRules = DEFAULT_IGNORE) -> None:
    """Generate with the baseline's arguments and compare the file set."""
    project.run_raw(entry.arguments, assert_success=True)
    verify_file_set(project.output_dir, entry.files, ignore)
