"""Single-request loopback listener racing the callback against cancellation.

:class:`LoopbackInterceptor` owns one listening socket for the lifetime of
an ``async with`` block. Inside it, :meth:`~LoopbackInterceptor.wait`
accepts connections with :meth:`asyncio.loop.sock_accept` while watching an
:class:`asyncio.Event`; whichever finishes first decides the outcome and
the other task is cancelled and awaited before ``wait`` returns. An
accepted connection is served by
:class:`~loopauth.loopback.handler.CallbackRequestHandler` on a worker
thread, since :mod:`http.server` handlers are blocking.

Leaving the ``async with`` block always closes the listening socket, so a
cancelled, failed, or completed flow never leaves the port bound.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import socketserver
import ssl
from http.server import HTTPServer
from typing import Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from loopauth.exceptions import FlowCancelledError, ListenerError
from loopauth.loopback.handler import CallbackRequestHandler
from loopauth.models import BrowserOptions
from loopauth.redirect import listen_address, listener_prefix, replace_port, require_loopback

logger = logging.getLogger(__name__)


class CallbackServer(HTTPServer):
    """An :class:`HTTPServer` that is accepted from asyncio, one connection at a time.

    Never run ``serve_forever`` on it: :class:`LoopbackInterceptor` accepts
    on the non-blocking socket and hands each connection to
    :meth:`finish_request` itself.
    """

    request_queue_size = 1
    allow_reuse_port = False

    def __init__(
        self,
        address: tuple[str, int],
        family: socket.AddressFamily,
        scheme: str,
        prefix_path: str,
        options: BrowserOptions,
    ) -> None:
        self.address_family = family
        self.scheme = scheme
        self.prefix_path = prefix_path
        self.options = options
        self.netloc = ""
        self.intercepted_uri: Optional[str] = None
        super().__init__(address, CallbackRequestHandler)

    def server_bind(self) -> None:
        # HTTPServer.server_bind resolves the FQDN of the bind address,
        # which can stall on a reverse DNS lookup.
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host
        self.server_port = port


class LoopbackInterceptor:
    """Listen on a loopback redirect URI and capture exactly one callback.

    Construction only validates; the socket is bound by :meth:`start` (or on
    entering ``async with``) and released by :meth:`close` (or on exit).

    Args:
        listen_uri: Loopback ``http``/``https`` URI. Port ``0`` or no port
            binds an ephemeral port; read it back from :attr:`redirect_uri`.
        options: Response template overrides. Defaults to the built-in pages.
        ssl_context: Server-side TLS context, required for ``https`` URIs.

    Raises:
        ContractError: If *listen_uri* is not an HTTP(S) loopback URI.

    Example::

        async with LoopbackInterceptor("http://127.0.0.1:0/callback") as listener:
            print("redirect to", listener.redirect_uri)
            callback_uri = await listener.wait(cancel_event)
    """

    def __init__(
        self,
        listen_uri: str,
        options: Optional[BrowserOptions] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self._parts = require_loopback(listen_uri)
        self._options = options or BrowserOptions()
        self._ssl_context = ssl_context
        self._server: Optional[CallbackServer] = None
        self._connection: Optional[socket.socket] = None

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """The bound port. Only meaningful while listening."""
        if self._server is None:
            raise ListenerError("Listener is not running")
        return self._server.server_address[1]

    @property
    def redirect_uri(self) -> str:
        """The listen URI with the actually bound port filled in."""
        if self._server is None:
            return urlunsplit(self._parts)
        return urlunsplit(replace_port(self._parts, self.port))

    @property
    def prefix(self) -> str:
        """The ``scheme://host:port/path/`` prefix requests are matched against."""
        return listener_prefix(urlsplit(self.redirect_uri))

    def start(self) -> None:
        """Bind and start listening.

        Raises:
            ListenerError: If the address cannot be bound or an ``https``
                URI was given without an SSL context.
        """
        if self._server is not None:
            return
        scheme = self._parts.scheme.lower()
        if scheme == "https" and self._ssl_context is None:
            raise ListenerError("An SSL context is required to listen on an https redirect URI")

        address = listen_address(self._parts)
        prefix_path = urlsplit(listener_prefix(self._parts)).path
        try:
            server = CallbackServer(
                (address.host, address.port),
                address.family,
                scheme,
                prefix_path,
                self._options,
            )
        except OSError as exc:
            raise ListenerError(
                f"Cannot listen on {address.host}:{address.port}: {exc}"
            ) from exc
        server.socket.setblocking(False)
        self._server = server
        server.netloc = urlsplit(self.redirect_uri).netloc.rpartition("@")[2]
        logger.debug("Listening for callback on %s", self.prefix)

    def close(self) -> None:
        """Stop listening and release the socket. Safe to call repeatedly."""
        server, self._server = self._server, None
        if server is not None:
            server.server_close()
            logger.debug("Listener closed")

    async def __aenter__(self) -> LoopbackInterceptor:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        self.close()

    async def wait(self, cancel: Optional[asyncio.Event] = None) -> str:
        """Wait for the callback request and return its full URI.

        Requests outside the redirect path are answered with ``404`` and do
        not end the wait. The first request under the path is answered with
        the configured page or redirect, whether or not it carries an OAuth
        ``error``.

        Args:
            cancel: Event that aborts the wait when set. ``None`` waits
                until a callback arrives or the calling task is cancelled.

        Raises:
            FlowCancelledError: If *cancel* is set before a callback arrives.
            ListenerError: If the listener is not running or accept fails.
        """
        self._running_server()
        while True:
            conn, client_address = await self._accept(cancel)
            uri = await self._serve_until_cancelled(conn, client_address, cancel)
            if uri is not None:
                return uri

    async def _accept(
        self, cancel: Optional[asyncio.Event]
    ) -> tuple[socket.socket, tuple[str, int]]:
        server = self._running_server()
        loop = asyncio.get_running_loop()
        accept_task = asyncio.ensure_future(loop.sock_accept(server.socket))
        tasks = {accept_task}
        if cancel is not None:
            tasks.add(asyncio.ensure_future(cancel.wait()))

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await _discard(task for task in tasks if not task.done())

        # A connection that raced in alongside the cancel signal still wins.
        if accept_task.done() and not accept_task.cancelled():
            try:
                conn, client_address = accept_task.result()
            except OSError as exc:
                raise ListenerError(f"Failed to accept callback connection: {exc}") from exc
            logger.debug("Accepted connection from %s:%s", *client_address[:2])
            return conn, client_address

        logger.debug("Cancelled while waiting for the callback")
        raise FlowCancelledError("Cancelled while waiting for the authorization callback")

    async def _serve_until_cancelled(
        self,
        conn: socket.socket,
        client_address: tuple[str, int],
        cancel: Optional[asyncio.Event],
    ) -> Optional[str]:
        """Serve *conn* on a worker thread while still watching *cancel*.

        A connection that stays silent (a browser preconnect, say) must not
        hold off cancellation until the read timeout: when *cancel* fires
        first the connection is shut down, which unblocks the handler, and
        the thread is awaited before returning.
        """
        self._connection = conn
        serve_task = asyncio.ensure_future(asyncio.to_thread(self._serve, conn, client_address))
        tasks = {serve_task}
        if cancel is not None:
            tasks.add(asyncio.ensure_future(cancel.wait()))

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await _discard(task for task in tasks if task is not serve_task and not task.done())
            if not serve_task.done():
                self._abort_connection()
                await asyncio.wait({serve_task})

        # A request fully answered before the cancel signal still wins.
        uri = serve_task.result()
        if uri is None and cancel is not None and cancel.is_set():
            logger.debug("Cancelled while a connection was open")
            raise FlowCancelledError("Cancelled while waiting for the authorization callback")
        return uri

    def _abort_connection(self) -> None:
        conn = self._connection
        if conn is None:
            return
        try:
            conn.shutdown(socket.SHUT_RDWR)
        except OSError as exc:
            # The handler already closed it.
            logger.debug("Connection already closed: %s", exc)

    def _serve(self, conn: socket.socket, client_address: tuple[str, int]) -> Optional[str]:
        """Handle one connection on a worker thread; return the URI if it was the callback."""
        server = self._running_server()
        conn.setblocking(True)
        server.intercepted_uri = None
        try:
            if self._ssl_context is not None:
                conn = self._ssl_context.wrap_socket(conn, server_side=True)
                self._connection = conn
            server.finish_request(conn, client_address)
        except OSError as exc:
            # Includes ssl.SSLError: a client that drops or botches the
            # handshake does not end the flow.
            logger.warning("Error while serving %s: %s", client_address[0], exc)
        finally:
            self._connection = None
            server.shutdown_request(conn)
        return server.intercepted_uri

    def _running_server(self) -> CallbackServer:
        if self._server is None:
            raise ListenerError("Listener is not running")
        return self._server


async def _discard(tasks: Iterable[asyncio.Future]) -> None:
    """Cancel the still-pending losers of a race and wait for them to finish."""
    pending = list(tasks)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.wait(pending)


async def intercept(
    listen_uri: str,
    cancel: Optional[asyncio.Event] = None,
    options: Optional[BrowserOptions] = None,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> str:
    """Listen on *listen_uri*, serve one callback, and return its full URI.

    The listener is closed before this coroutine returns or raises.

    Raises:
        ContractError: If *listen_uri* is not a loopback HTTP(S) URI; raised
            before any socket is bound.
        ListenerError: If the listener cannot be bound.
        FlowCancelledError: If *cancel* is set first.
    """
    async with LoopbackInterceptor(listen_uri, options, ssl_context) as interceptor:
        return await interceptor.wait(cancel)
