"""Browser checks for single-page-application templates.

Pages are driven through Playwright connected to the shared automation
driver (``playwright run-server``) rather than a browser launched per test.
"""

from __future__ import annotations

import logging
import os
import re
from typing import TYPE_CHECKING, Optional

from playwright.sync_api import Browser, Page, Playwright, expect, sync_playwright

if TYPE_CHECKING:
    from .driver import AutomationDriver

logger = logging.getLogger("tmplrig.browser")

DEFAULT_TIMEOUT_MS = 10_000


def is_host_automation_supported(env: Optional[dict[str, str]] = None) -> bool:
    """Browser tests can be switched off on machines without a usable browser."""
    value = (env if env is not None else os.environ).get("TMPLRIG_BROWSER_AUTOMATION", "1")
    return value.strip().lower() not in ("0", "false", "no", "off")


class BrowserSession:
    """A Playwright browser connected to a running :class:`AutomationDriver`."""

    def __init__(self, playwright: Playwright, browser: Browser):
        self._playwright = playwright
        self.browser = browser
        self._pages: list[Page] = []

    @classmethod
    def connect(cls, driver: "AutomationDriver", browser_type: str = "chromium") -> "BrowserSession":
        playwright = sync_playwright().start()
        try:
            browser = getattr(playwright, browser_type).connect(driver.ws_endpoint)
        except Exception:
            playwright.stop()
            raise
        logger.info(f"Connected {browser_type} to {driver.ws_endpoint}")
        return cls(playwright, browser)

    def new_page(self, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Page:
        page = self.browser.new_page()
        page.set_default_timeout(timeout_ms)
        self._pages.append(page)
        return page

    def close(self) -> None:
        for page in self._pages:
            if not page.is_closed():
                page.close()
        self._pages.clear()
        try:
            self.browser.close()
        finally:
            self._playwright.stop()

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def wait_for_element(page: Page, selector: str, timeout_ms: Optional[int] = None):
    return page.wait_for_selector(selector, timeout=timeout_ms)


def get_text(page: Page, selector: str) -> str:
    return (page.text_content(selector) or "").strip()


def click_link(page: Page, link_text: str) -> None:
    page.get_by_role("link", name=link_text).first.click()


def wait_for_url(page: Page, fragment: str, timeout_ms: Optional[int] = None) -> None:
    page.wait_for_url(re.compile(re.escape(fragment)), timeout=timeout_ms)


def assert_basic_navigation(page: Page, project_guid: str, visit_fetch_data: bool = True) -> None:
    """Walk the SPA template's home, counter and fetch-data pages."""
    wait_for_element(page, "ul")
    # <title> gets the project guid injected during template execution
    assert project_guid in page.title(), f"Page title {page.title()!r} doesn't contain {project_guid}"
    assert get_text(page, "h1") == "Hello, world!"

    click_link(page, "Counter")
    wait_for_url(page, "counter")
    assert get_text(page, "h1") == "Counter"

    counter = page.locator("h1").locator("xpath=..")
    expect(counter.locator("strong")).to_have_text("0")
    counter.locator("button").click()
    expect(counter.locator("strong")).to_have_text("1")

    if visit_fetch_data:
        click_link(page, "Fetch data")
        wait_for_url(page, "fetch-data")
        assert get_text(page, "h1") == "Weather forecast"

        # Forecasts load asynchronously
        wait_for_element(page, "table>tbody>tr")
        fetch_data = page.locator("h1").locator("xpath=..")
        expect(fetch_data.locator("table tbody tr")).to_have_count(5, timeout=5000)
