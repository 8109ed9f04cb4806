"""Open a URL in the user's default web browser without touching our stdio.

Launching "the default browser" differs per platform in one way that
matters to a CLI: whether the spawned process inherits the caller's
standard streams. Windows ``ShellExecute`` and macOS ``open`` detach the
browser, so they are invoked directly. On Linux and the BSDs the
desktop "open" utilities (``xdg-open`` and friends) keep the inherited
descriptors, and browsers such as Chromium then print to them -- straight
into a host that is parsing our stdout. Those utilities are therefore
spawned with stdin/stdout/stderr on :data:`subprocess.DEVNULL` in a new
session.

Each mechanism is a *probe*: a callable that returns a
:class:`BrowserCommand` when the mechanism is available, or ``None``.
:class:`BrowserLauncher` walks the platform's probes in order and runs the
first hit.
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence
from urllib.parse import urlsplit

from loopauth.exceptions import BrowserLaunchError, ContractError

logger = logging.getLogger(__name__)

ExecutableLocator = Callable[[str], Optional[str]]
"""Resolve an executable name to a path on ``PATH``, or ``None``."""

UNIX_OPEN_UTILITIES: tuple[tuple[str, ...], ...] = (
    ("xdg-open",),
    ("gnome-open",),
    ("kfmclient", "exec"),
)
"""Desktop "open" utilities tried on Linux/BSD, in preference order."""


@dataclass(frozen=True)
class BrowserCommand:
    """A concrete way to open a URL, produced by a successful probe.

    Attributes:
        name: Short label used in log messages.
        argv: Program and leading arguments; the URL is appended.
            Empty when ``shell_execute`` is set.
        redirect_streams: Send the child's stdio to ``DEVNULL``.
        shell_execute: Use :func:`os.startfile` (Windows ShellExecute).
    """

    name: str
    argv: tuple[str, ...] = ()
    redirect_streams: bool = False
    shell_execute: bool = False


BrowserProbe = Callable[[ExecutableLocator], Optional[BrowserCommand]]


def shell_execute_probe(locate: ExecutableLocator) -> Optional[BrowserCommand]:
    """Windows: ShellExecute through :func:`os.startfile`."""
    if not hasattr(os, "startfile"):
        return None
    return BrowserCommand(name="shell-execute", shell_execute=True)


def executable_probe(*argv: str, redirect_streams: bool = True) -> BrowserProbe:
    """Build a probe that succeeds when ``argv[0]`` is found on ``PATH``."""

    def probe(locate: ExecutableLocator) -> Optional[BrowserCommand]:
        path = locate(argv[0])
        if path is None:
            return None
        return BrowserCommand(
            name=argv[0],
            argv=(path, *argv[1:]),
            redirect_streams=redirect_streams,
        )

    probe.__name__ = f"{argv[0]}_probe"
    return probe


def default_probes(platform: Optional[str] = None) -> tuple[BrowserProbe, ...]:
    """Return the ordered probes for *platform* (default: :data:`sys.platform`)."""
    platform = platform or sys.platform
    if platform == "win32":
        return (shell_execute_probe,)
    if platform == "darwin":
        return (executable_probe("open", redirect_streams=False),)
    return tuple(executable_probe(*utility) for utility in UNIX_OPEN_UTILITIES)


class LaunchState(str, enum.Enum):
    """Where a :class:`BrowserLauncher` is in its one-shot lifecycle."""

    NOT_STARTED = "not_started"
    SEARCHING = "searching"
    LAUNCHED = "launched"
    FAILED = "failed"


@dataclass
class BrowserLauncher:
    """Open URLs in the default web browser using the first available probe.

    The launcher does not track the browser after it is spawned; it only
    guarantees the process was started.

    Args:
        probes: Ordered mechanisms to try. Defaults to
            :func:`default_probes` for the running platform.
        locate: Executable locator. Defaults to :func:`shutil.which`.

    Example::

        BrowserLauncher().open("https://login.example.com/authorize?...")
    """

    probes: Sequence[BrowserProbe] = field(default_factory=default_probes)
    locate: ExecutableLocator = shutil.which
    state: LaunchState = field(default=LaunchState.NOT_STARTED, init=False)
    command: Optional[BrowserCommand] = field(default=None, init=False)

    def find_command(self) -> BrowserCommand:
        """Run the probes in order and return the first mechanism found.

        Raises:
            BrowserLaunchError: If every probe comes back empty.
        """
        self.state = LaunchState.SEARCHING
        for probe in self.probes:
            command = probe(self.locate)
            if command is not None:
                logger.debug("Using %s to open the browser", command.name)
                return command
        self.state = LaunchState.FAILED
        raise BrowserLaunchError("Failed to locate a utility to launch the default web browser.")

    def open(self, uri: str) -> None:
        """Open *uri* in the default web browser.

        Raises:
            ContractError: If *uri* is not ``http``/``https``; raised before
                any probe runs.
            BrowserLaunchError: If no mechanism is available or the
                mechanism could not be started.
        """
        scheme = urlsplit(uri).scheme.lower()
        if scheme not in ("http", "https"):
            raise ContractError(f"Can only open HTTP/HTTPS URIs, got: {uri}")

        command = self.find_command()
        try:
            _spawn(command, uri)
        except OSError as exc:
            self.state = LaunchState.FAILED
            raise BrowserLaunchError(
                f"Failed to launch the default web browser with {command.name}: {exc}"
            ) from exc
        self.command = command
        self.state = LaunchState.LAUNCHED


def _spawn(command: BrowserCommand, uri: str) -> None:
    if command.shell_execute:
        os.startfile(uri)  # type: ignore[attr-defined]
        return
    if command.redirect_streams:
        subprocess.Popen(
            [*command.argv, uri],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    else:
        subprocess.Popen([*command.argv, uri])


def open_browser(uri: str) -> None:
    """Open *uri* with a default :class:`BrowserLauncher`."""
    BrowserLauncher().open(uri)
