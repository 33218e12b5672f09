"""End-to-end runs of every project template against the real toolchain.

These need the dotnet SDK with freshly built template packages; they are
skipped when ``TMPLRIG_DOTNET_PATH`` (or ``dotnet``) isn't on PATH.
"""

import pytest

from tmplrig import scenarios
from tmplrig.baseline import IgnoreRules, load_baselines
from tmplrig.browser import is_host_automation_supported

pytestmark = pytest.mark.e2e


@pytest.fixture(scope="module")
def driver_or_none(harness_context):
    """The shared automation driver, or None where browsers can't run."""
    if not is_host_automation_supported():
        return None
    return harness_context.driver_launcher.get_instance()


@pytest.mark.asyncio
async def test_empty_web(project_factory, output):
    await scenarios.empty_web(project_factory.get_or_create("web", output))


@pytest.mark.asyncio
async def test_web_api(project_factory, output):
    await scenarios.web_api(project_factory.get_or_create("webapi", output))


@pytest.mark.asyncio
@pytest.mark.parametrize("language", [None, "F#"], ids=["csharp", "fsharp"])
async def test_mvc_no_auth(project_factory, output, language):
    project = project_factory.get_or_create(f"mvcnoauth{language or 'C#'}", output)
    await scenarios.mvc_no_auth(project, language=language)


@pytest.mark.asyncio
@pytest.mark.parametrize("use_local_db", [False, True], ids=["sqlite", "localdb"])
async def test_mvc_individual_auth(project_factory, output, use_local_db):
    project = project_factory.get_or_create(f"mvcindividual{use_local_db}", output)
    await scenarios.mvc_individual_auth(project, use_local_db=use_local_db)


@pytest.mark.asyncio
async def test_razor_pages_no_auth(project_factory, output):
    await scenarios.razor_pages_no_auth(project_factory.get_or_create("razornoauth", output))


@pytest.mark.asyncio
@pytest.mark.parametrize("use_local_db", [False, True], ids=["sqlite", "localdb"])
async def test_razor_pages_individual_auth(project_factory, output, use_local_db):
    project = project_factory.get_or_create(f"razorindividual{use_local_db}", output)
    await scenarios.razor_pages_individual_auth(project, use_local_db=use_local_db)


@pytest.mark.asyncio
@pytest.mark.parametrize("template", ["angular", "react", "reactredux"])
async def test_spa_no_auth(project_factory, harness_context, driver_or_none, output, template):
    project = project_factory.get_or_create(f"{template}noauth", output)
    await scenarios.spa_template(project, template, harness_context.restorer, driver_or_none)


@pytest.mark.asyncio
@pytest.mark.parametrize("template", ["angular", "react"])
@pytest.mark.parametrize("use_local_db", [False, True], ids=["sqlite", "localdb"])
async def test_spa_individual_auth(project_factory, harness_context, driver_or_none, output, template, use_local_db):
    project = project_factory.get_or_create(f"{template}individual{use_local_db}", output)
    await scenarios.spa_template(
        project,
        template,
        harness_context.restorer,
        driver_or_none,
        use_local_db=use_local_db,
        uses_auth=True,
    )


@pytest.mark.parametrize("entry", load_baselines(), ids=lambda entry: entry.test_id)
def test_template_baseline(project_factory, harness_config, output, entry):
    project = project_factory.get_or_create(f"baseline{entry.key}", output)
    scenarios.baseline(project, entry, IgnoreRules.from_config(harness_config))
