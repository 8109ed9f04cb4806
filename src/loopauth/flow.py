"""The loopback redirect leg of the OAuth2 Authorization Code flow.

:class:`SystemWebBrowser` ties the pieces together for a native client
that already has an authorization URL (built by the OAuth layer with the
redirect URI from :meth:`~SystemWebBrowser.update_redirect_uri`):

1. Validate both URIs -- nothing is bound or spawned for a bad one.
2. Bind the loopback listener on the redirect URI.
3. Open the authorization URL in the default browser.
4. Wait for the provider's redirect or the cancel event, whichever is first.
5. Return the callback URI; the listener is closed on every path.

The returned URI is the raw callback. An OAuth ``error`` in its query is
still a successful interception -- the user has already been shown the
failure page -- so classifying it is left to the caller, e.g. with
:func:`~loopauth.loopback.parse_authorization_result`.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlsplit

from loopauth.browser import BrowserLauncher
from loopauth.exceptions import ContractError
from loopauth.loopback import LoopbackInterceptor
from loopauth.models import BrowserOptions
from loopauth.redirect import require_loopback, update_redirect_uri

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SystemWebBrowser:
    """Run the browser side of an authorization request through the system browser.

    Args:
        options: Response template overrides shown in the browser tab.
        launcher: Browser launcher. Defaults to a platform
            :class:`~loopauth.browser.BrowserLauncher`.
        ssl_context: Server-side TLS context for ``https`` redirect URIs.
    """

    def __init__(
        self,
        options: Optional[BrowserOptions] = None,
        launcher: Optional[BrowserLauncher] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.options = options or BrowserOptions()
        self.launcher = launcher or BrowserLauncher()
        self.ssl_context = ssl_context

    def update_redirect_uri(self, uri: str) -> str:
        """Return *uri* with a free port substituted when it has none.

        Call this before building the authorization URL so the provider and
        the listener agree on the port.

        Raises:
            ContractError: If *uri* is not a loopback HTTP(S) URI.
        """
        return update_redirect_uri(uri)

    async def get_authorization_code(
        self,
        authorization_uri: str,
        redirect_uri: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Open the browser at *authorization_uri* and capture the redirect.

        Args:
            authorization_uri: The provider's authorization URL, fully built.
            redirect_uri: Loopback URI the provider redirects to. It should
                already carry a port (see :meth:`update_redirect_uri`).
            cancel: Event that abandons the wait when set.

        Returns:
            The full callback URI, including its query string.

        Raises:
            ContractError: For a non-loopback redirect URI or a non-HTTP(S)
                authorization URI, before any resource is allocated.
            ListenerError: If the listener cannot be bound.
            BrowserLaunchError: If no browser can be launched.
            FlowCancelledError: If *cancel* is set before the callback.
        """
        require_loopback(redirect_uri)
        if urlsplit(authorization_uri).scheme.lower() not in ("http", "https"):
            raise ContractError(f"Can only open HTTP/HTTPS URIs, got: {authorization_uri}")

        async with LoopbackInterceptor(redirect_uri, self.options, self.ssl_context) as listener:
            logger.debug("Opening browser at %s", authorization_uri)
            self.launcher.open(authorization_uri)
            return await listener.wait(cancel)

    def get_authorization_code_sync(
        self,
        authorization_uri: str,
        redirect_uri: str,
        timeout: Optional[float] = None,
    ) -> str:
        """Blocking wrapper around :meth:`get_authorization_code`.

        Args:
            timeout: Seconds to wait for the callback. ``None`` or ``0``
                waits indefinitely.

        Raises:
            FlowCancelledError: If the timeout elapses first.
        """
        return run_with_timeout(
            lambda cancel: self.get_authorization_code(authorization_uri, redirect_uri, cancel),
            timeout,
        )


async def wait_for_callback(
    redirect_uri: str,
    cancel: Optional[asyncio.Event] = None,
    options: Optional[BrowserOptions] = None,
    on_listening: Optional[Callable[[str], None]] = None,
) -> str:
    """Listen on *redirect_uri* without opening a browser.

    Used when the authorization URL is opened some other way, for example
    printed for the user to paste into a browser themselves.
    *on_listening* is called with the bound redirect URI once the socket is
    ready, which matters when *redirect_uri* has port ``0``.
    """
    async with LoopbackInterceptor(redirect_uri, options) as listener:
        if on_listening is not None:
            on_listening(listener.redirect_uri)
        return await listener.wait(cancel)


def run_with_timeout(
    coro_factory: Callable[[asyncio.Event], Awaitable[T]],
    timeout: Optional[float],
) -> T:
    """Run ``coro_factory(cancel_event)`` to completion, setting the event after *timeout*.

    ``None`` or ``0`` never sets the event.
    """

    async def _main() -> T:
        cancel = asyncio.Event()
        timer = None
        if timeout:
            timer = asyncio.get_running_loop().call_later(timeout, cancel.set)
        try:
            return await coro_factory(cancel)
        finally:
            if timer is not None:
                timer.cancel()

    return asyncio.run(_main())
