"""Shared test fixtures for loopauth.

Provides reusable fixtures for isolated config environments, output state,
CLI invocation, and talking to a live loopback listener the way a browser
following the provider's redirect would.
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Iterator

import httpx
import pytest

from loopauth.output import OutputFormat, OutputManager, reset_output, set_output
from loopauth.redirect import get_free_tcp_port


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points the XDG base directories at subdirectories of tmp_path, clears
    all LOOPAUTH_* environment variables, and changes the working
    directory to tmp_path.
    """
    monkeypatch.setattr("loopauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ["LOOPAUTH_REDIRECT_URI", "LOOPAUTH_TIMEOUT"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> Iterator[OutputManager]:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Loopback helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """A TCP port on 127.0.0.1 that was free a moment ago."""
    return get_free_tcp_port()


@pytest.fixture
def redirect_uri(free_port: int) -> str:
    """A loopback redirect URI with a fixed free port and a callback path."""
    return f"http://127.0.0.1:{free_port}/callback"


class FakeBrowser:
    """Plays the browser arriving at the loopback listener after the provider's redirect.

    Requests never follow redirects, so tests can inspect ``Location``.
    """

    def __init__(self) -> None:
        self.threads: list[threading.Thread] = []

    async def fetch(self, url: str) -> httpx.Response:
        """GET *url* from a worker thread so the event loop keeps running."""
        return await asyncio.to_thread(self.get, url)

    @staticmethod
    def get(url: str) -> httpx.Response:
        return httpx.get(url, follow_redirects=False, timeout=5.0, trust_env=False)

    def fetch_later(self, url: str, delay: float = 0.2) -> threading.Thread:
        """GET *url* from a daemon thread after *delay* seconds.

        The response (or transport error) is stored on the returned thread
        as ``thread.response`` / ``thread.error``.
        """

        def _run() -> None:
            time.sleep(delay)
            try:
                thread.response = self.get(url)  # type: ignore[attr-defined]
            except httpx.HTTPError as exc:
                thread.error = exc  # type: ignore[attr-defined]

        thread = threading.Thread(target=_run, daemon=True)
        thread.response = None  # type: ignore[attr-defined]
        thread.error = None  # type: ignore[attr-defined]
        self.threads.append(thread)
        thread.start()
        return thread

    def join(self) -> None:
        for thread in self.threads:
            thread.join(timeout=10)


@pytest.fixture
def fake_browser() -> Iterator[FakeBrowser]:
    browser = FakeBrowser()
    yield browser
    browser.join()
