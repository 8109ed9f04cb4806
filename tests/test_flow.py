"""End-to-end tests for SystemWebBrowser and the flow helpers."""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import MagicMock
from urllib.parse import urlsplit

import pytest

from loopauth.browser import BrowserLauncher
from loopauth.exceptions import BrowserLaunchError, ContractError, FlowCancelledError
from loopauth.flow import SystemWebBrowser, run_with_timeout, wait_for_callback
from loopauth.loopback import parse_authorization_result
from loopauth.models import AuthorizationError, BrowserOptions

AUTHORIZE = "https://idp.example.com/authorize?client_id=cli&response_type=code"


def _launcher_that_redirects(fake_browser, callback: str) -> MagicMock:
    """A launcher whose 'browser' immediately follows the provider's redirect."""
    launcher = MagicMock(spec=BrowserLauncher)
    launcher.open.side_effect = lambda uri: fake_browser.fetch_later(callback, delay=0.05)
    return launcher


def _assert_port_free(port: int) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind(("127.0.0.1", port))


class TestGetAuthorizationCode:
    def test_success(self, redirect_uri, fake_browser) -> None:
        callback = f"{redirect_uri}?code=abc123&state=xyz"
        launcher = _launcher_that_redirects(fake_browser, callback)
        browser = SystemWebBrowser(launcher=launcher)

        uri = asyncio.run(browser.get_authorization_code(AUTHORIZE, redirect_uri))

        assert uri == callback
        launcher.open.assert_called_once_with(AUTHORIZE)
        fake_browser.join()
        assert fake_browser.threads[0].response.status_code == 200
        _assert_port_free(urlsplit(redirect_uri).port)

    def test_error_callback_is_returned(self, redirect_uri, fake_browser) -> None:
        callback = f"{redirect_uri}?error=access_denied&error_description=User+declined"
        browser = SystemWebBrowser(launcher=_launcher_that_redirects(fake_browser, callback))

        uri = asyncio.run(browser.get_authorization_code(AUTHORIZE, redirect_uri))

        assert uri == callback
        result = parse_authorization_result(uri)
        assert isinstance(result, AuthorizationError)
        assert (result.code, result.description, result.uri) == (
            "access_denied",
            "User declined",
            "none",
        )
        fake_browser.join()
        assert "User declined" in fake_browser.threads[0].response.text

    def test_failure_redirect_option(self, redirect_uri, fake_browser) -> None:
        callback = f"{redirect_uri}?error=access_denied"
        options = BrowserOptions(failure_redirect_format="https://example.com/failed?code={0}")
        browser = SystemWebBrowser(
            options=options, launcher=_launcher_that_redirects(fake_browser, callback)
        )

        asyncio.run(browser.get_authorization_code(AUTHORIZE, redirect_uri))

        fake_browser.join()
        response = fake_browser.threads[0].response
        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/failed?code=access_denied"

    def test_non_loopback_redirect_rejected_before_launch(self) -> None:
        launcher = MagicMock(spec=BrowserLauncher)
        browser = SystemWebBrowser(launcher=launcher)

        with pytest.raises(ContractError):
            asyncio.run(browser.get_authorization_code(AUTHORIZE, "https://example.com/cb"))
        launcher.open.assert_not_called()

    def test_non_http_authorization_uri_rejected_before_binding(self, redirect_uri) -> None:
        launcher = MagicMock(spec=BrowserLauncher)
        browser = SystemWebBrowser(launcher=launcher)

        with pytest.raises(ContractError, match="HTTP/HTTPS"):
            asyncio.run(browser.get_authorization_code("file:///etc/passwd", redirect_uri))
        launcher.open.assert_not_called()
        _assert_port_free(urlsplit(redirect_uri).port)

    def test_launch_failure_releases_port(self, redirect_uri) -> None:
        launcher = MagicMock(spec=BrowserLauncher)
        launcher.open.side_effect = BrowserLaunchError("no browser")
        browser = SystemWebBrowser(launcher=launcher)

        with pytest.raises(BrowserLaunchError):
            asyncio.run(browser.get_authorization_code(AUTHORIZE, redirect_uri))
        _assert_port_free(urlsplit(redirect_uri).port)

    def test_cancel(self, redirect_uri) -> None:
        browser = SystemWebBrowser(launcher=MagicMock(spec=BrowserLauncher))

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.1, cancel.set)
            await browser.get_authorization_code(AUTHORIZE, redirect_uri, cancel)

        with pytest.raises(FlowCancelledError):
            asyncio.run(scenario())
        _assert_port_free(urlsplit(redirect_uri).port)


class TestSyncWrapper:
    def test_sync_success(self, redirect_uri, fake_browser) -> None:
        callback = f"{redirect_uri}?code=sync"
        browser = SystemWebBrowser(launcher=_launcher_that_redirects(fake_browser, callback))

        assert browser.get_authorization_code_sync(AUTHORIZE, redirect_uri, timeout=10) == callback

    def test_sync_timeout(self, redirect_uri) -> None:
        browser = SystemWebBrowser(launcher=MagicMock(spec=BrowserLauncher))

        with pytest.raises(FlowCancelledError):
            browser.get_authorization_code_sync(AUTHORIZE, redirect_uri, timeout=0.1)
        _assert_port_free(urlsplit(redirect_uri).port)


class TestUpdateRedirectUri:
    def test_fills_in_port(self) -> None:
        uri = SystemWebBrowser(launcher=MagicMock()).update_redirect_uri("http://127.0.0.1/cb")
        assert urlsplit(uri).port

    def test_rejects_non_loopback(self) -> None:
        with pytest.raises(ContractError):
            SystemWebBrowser(launcher=MagicMock()).update_redirect_uri("http://example.com/cb")


class TestWaitForCallback:
    def test_reports_bound_uri(self, fake_browser) -> None:
        bound: list[str] = []

        def on_listening(uri: str) -> None:
            bound.append(uri)
            fake_browser.fetch_later(f"{uri}?code=1", delay=0.05)

        uri = asyncio.run(wait_for_callback("http://127.0.0.1:0/cb", on_listening=on_listening))

        assert len(bound) == 1
        assert urlsplit(bound[0]).port > 0
        assert uri == f"{bound[0]}?code=1"


class TestRunWithTimeout:
    def test_returns_result(self) -> None:
        async def work(cancel: asyncio.Event) -> str:
            return "done"

        assert run_with_timeout(work, 5) == "done"

    @pytest.mark.parametrize("timeout", [None, 0])
    def test_no_timeout_never_sets_event(self, timeout) -> None:
        async def work(cancel: asyncio.Event) -> bool:
            await asyncio.sleep(0.05)
            return cancel.is_set()

        assert run_with_timeout(work, timeout) is False

    def test_timeout_sets_event(self) -> None:
        async def work(cancel: asyncio.Event) -> bool:
            await asyncio.wait_for(cancel.wait(), timeout=5)
            return cancel.is_set()

        assert run_with_timeout(work, 0.05) is True
