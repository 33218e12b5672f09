"""Tests for the Playwright session wrapper (no real browser involved)."""

from unittest import mock

import pytest

from tmplrig import browser
from tmplrig.browser import BrowserSession, is_host_automation_supported


@pytest.mark.parametrize(
    "value, expected",
    [("1", True), ("true", True), ("0", False), ("false", False), ("Off", False), (" no ", False)],
)
def test_host_automation_switch(value, expected):
    assert is_host_automation_supported({"TMPLRIG_BROWSER_AUTOMATION": value}) is expected


def test_host_automation_defaults_to_enabled():
    assert is_host_automation_supported({})


@pytest.fixture
def playwright(monkeypatch):
    pw = mock.MagicMock()
    for browser_type in (pw.chromium, pw.firefox):
        browser_type.connect.return_value.new_page.return_value.is_closed.return_value = False
    starter = mock.MagicMock()
    starter.start.return_value = pw
    monkeypatch.setattr(browser, "sync_playwright", lambda: starter)
    return pw


@pytest.fixture
def driver():
    return mock.Mock(ws_endpoint="ws://127.0.0.1:9323/")


def test_connects_to_driver_endpoint(playwright, driver):
    with BrowserSession.connect(driver) as session:
        page = session.new_page(timeout_ms=2000)

    playwright.chromium.connect.assert_called_once_with("ws://127.0.0.1:9323/")
    page.set_default_timeout.assert_called_once_with(2000)
    page.close.assert_called_once_with()
    session.browser.close.assert_called_once_with()
    playwright.stop.assert_called_once_with()


def test_other_browser_types(playwright, driver):
    BrowserSession.connect(driver, browser_type="firefox").close()
    playwright.firefox.connect.assert_called_once_with(driver.ws_endpoint)


def test_failed_connect_stops_playwright(playwright, driver):
    playwright.chromium.connect.side_effect = RuntimeError("connection refused")
    with pytest.raises(RuntimeError):
        BrowserSession.connect(driver)
    playwright.stop.assert_called_once_with()


def test_closed_pages_are_skipped(playwright, driver):
    session = BrowserSession.connect(driver)
    page = session.new_page()
    page.is_closed.return_value = True
    session.close()
    page.close.assert_not_called()


def test_click_link_uses_first_match():
    page = mock.MagicMock()
    browser.click_link(page, "Counter")
    page.get_by_role.assert_called_once_with("link", name="Counter")
    page.get_by_role.return_value.first.click.assert_called_once_with()


def test_get_text_strips_and_handles_missing():
    page = mock.Mock()
    page.text_content.return_value = "  Hello, world!\n"
    assert browser.get_text(page, "h1") == "Hello, world!"
    page.text_content.return_value = None
    assert browser.get_text(page, "h1") == ""
