"""Loopback redirect URI validation and ephemeral port assignment.

RFC 8252 native clients register a redirect URI on the loopback interface
and may leave the port open so the client can pick any free one at run
time. This module holds the URI-level rules shared by
:mod:`loopauth.loopback` and :mod:`loopauth.flow`:

* :func:`require_loopback` -- reject anything that is not an
  ``http``/``https`` URI on ``localhost`` or a loopback IP.
* :func:`update_redirect_uri` -- substitute a free port when the URI has
  none (or port ``0``), leaving every other component untouched.
* :func:`listener_prefix` -- the ``scheme://host:port/path/`` prefix the
  listener matches requests against.
* :func:`find_redirect_uri` / :func:`apply_redirect_uri` -- read and
  rewrite the ``redirect_uri`` parameter of an authorization URL.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import NamedTuple, Optional
from urllib.parse import SplitResult, parse_qsl, urlencode, urlsplit, urlunsplit

from loopauth.exceptions import ContractError

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = ("http", "https")

REDIRECT_URI_PARAMETER = "redirect_uri"


class ListenAddress(NamedTuple):
    """Where the listener binds, derived from a loopback redirect URI."""

    host: str
    port: int
    family: socket.AddressFamily


def is_loopback_host(host: str | None) -> bool:
    """Return True for ``localhost`` or any IPv4/IPv6 loopback address."""
    if not host:
        return False
    if host.lower() == "localhost":
        return True
    try:
        return ipaddress.ip_address(host.strip("[]")).is_loopback
    except ValueError:
        return False


def require_loopback(uri: str) -> SplitResult:
    """Parse *uri* and check that it is an HTTP(S) loopback URI.

    Returns:
        The parsed URI.

    Raises:
        ContractError: If the scheme is not ``http``/``https``, the host is
            not a loopback address, or the port is malformed.
    """
    parts = urlsplit(uri)
    if parts.scheme.lower() not in _HTTP_SCHEMES:
        raise ContractError(f"Redirect URI must use http or https: {uri}")
    if not is_loopback_host(parts.hostname):
        raise ContractError(f"Only localhost is supported as a redirect URI: {uri}")
    try:
        parts.port
    except ValueError as exc:
        raise ContractError(f"Invalid port in redirect URI {uri}: {exc}") from None
    return parts


def listen_address(parts: SplitResult) -> ListenAddress:
    """Map a parsed loopback URI to the socket address the listener binds.

    ``localhost`` binds ``127.0.0.1``; an IPv6 literal binds with
    ``AF_INET6``. A missing port maps to ``0``.
    """
    host = parts.hostname or "127.0.0.1"
    if host.lower() == "localhost":
        host = "127.0.0.1"
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return ListenAddress(host, parts.port or 0, family)


def get_free_tcp_port(host: str = "127.0.0.1") -> int:
    """Find a free TCP port on the given loopback host.

    The port is free at the time of the call; another process may still
    take it before the listener binds.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def replace_port(parts: SplitResult, port: int) -> SplitResult:
    """Return *parts* with the port in the netloc replaced, host spelling kept."""
    userinfo, at, hostport = parts.netloc.rpartition("@")
    if hostport.startswith("["):
        host = hostport[: hostport.index("]") + 1]
    else:
        host = hostport.split(":", 1)[0]
    return parts._replace(netloc=f"{userinfo}{at}{host}:{port}")


def update_redirect_uri(uri: str) -> str:
    """Return *uri* with a free ephemeral port if it has none.

    A URI with an explicit nonzero port is returned unchanged.

    Raises:
        ContractError: If *uri* is not an HTTP(S) loopback URI.
    """
    parts = require_loopback(uri)
    if parts.port:
        return uri
    port = get_free_tcp_port(listen_address(parts).host)
    logger.debug("Assigned free port %d to redirect URI %s", port, uri)
    return urlunsplit(replace_port(parts, port))


def listener_prefix(parts: SplitResult) -> str:
    """Return ``scheme://host[:port]/path/`` for *parts*.

    Query and fragment are dropped and the path always ends with ``/``, so
    ``http://127.0.0.1:8400/cb`` matches ``/cb/`` and anything below it as
    well as ``/cb`` itself.
    """
    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"
    _, _, hostport = parts.netloc.rpartition("@")
    return urlunsplit((parts.scheme.lower(), hostport, path, "", ""))


def find_redirect_uri(authorization_uri: str) -> Optional[str]:
    """Return the ``redirect_uri`` query parameter of an authorization URL, if any."""
    for key, value in parse_qsl(urlsplit(authorization_uri).query, keep_blank_values=True):
        if key == REDIRECT_URI_PARAMETER and value:
            return value
    return None


def apply_redirect_uri(authorization_uri: str, redirect_uri: str) -> str:
    """Set the ``redirect_uri`` query parameter of *authorization_uri*.

    Other parameters keep their order; an existing ``redirect_uri`` is
    replaced in place, otherwise it is appended.
    """
    parts = urlsplit(authorization_uri)
    params = parse_qsl(parts.query, keep_blank_values=True)
    replaced = False
    for index, (key, _) in enumerate(params):
        if key == REDIRECT_URI_PARAMETER:
            params[index] = (key, redirect_uri)
            replaced = True
    if not replaced:
        params.append((REDIRECT_URI_PARAMETER, redirect_uri))
    return urlunsplit(parts._replace(query=urlencode(params)))
