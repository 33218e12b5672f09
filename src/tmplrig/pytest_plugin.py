"""pytest fixtures for template end-to-end tests.

Registered through the ``pytest11`` entry point, so installing the package
makes the fixtures available to any test suite.
"""

from __future__ import annotations

import logging
import shutil

import pytest

from .browser import BrowserSession, is_host_automation_supported
from .config import HarnessConfig, load_config
from .context import HarnessContext
from .logs import output_for, setup_logging

logger = logging.getLogger("tmplrig.pytest")


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "e2e: needs the real generator toolchain (skipped when it isn't on PATH)"
    )


def pytest_collection_modifyitems(config, items):
    e2e_items = [item for item in items if item.get_closest_marker("e2e")]
    if not e2e_items:
        return
    dotnet = load_config().dotnet_path
    if shutil.which(dotnet):
        return
    skip = pytest.mark.skip(reason=f"{dotnet} not found on PATH")
    for item in e2e_items:
        item.add_marker(skip)


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    config = load_config()
    log_file = setup_logging(config.log_dir)
    logger.info(f"Harness log: {log_file}")
    return config


@pytest.fixture(scope="session")
def harness_context(harness_config):
    context = HarnessContext(harness_config)
    yield context
    context.close()


@pytest.fixture(scope="module")
def project_factory(harness_context):
    factory = harness_context.new_factory()
    yield factory
    factory.dispose()


@pytest.fixture
def output(request) -> logging.Logger:
    return output_for(request.node.nodeid)


@pytest.fixture(scope="session")
def automation_driver(harness_context):
    if not is_host_automation_supported():
        pytest.skip("Browser automation is disabled on this host")
    return harness_context.driver_launcher.get_instance()


@pytest.fixture
def browser_page(automation_driver):
    with BrowserSession.connect(automation_driver) as session:
        yield session.new_page()
