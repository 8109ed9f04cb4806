"""Loopback listener that captures the OAuth2 redirect callback.

Binds a single-use HTTP listener on a loopback redirect URI, races the
first matching request against a cancel event, answers the browser with a
success or failure page (or redirect), and returns the full callback URI.

Exports:
    :class:`LoopbackInterceptor` -- the listener as an async context manager.
    :func:`intercept` -- bind, wait for one callback, and close.
    :func:`parse_authorization_result` -- classify a returned callback URI.
    :func:`render_response` -- the page/redirect chosen for a result.

See Also:
    :mod:`loopauth.flow` for the composition with the browser launcher.
"""

from loopauth.loopback.handler import (
    CallbackResponse,
    parse_authorization_result,
    parse_query,
    render_response,
)
from loopauth.loopback.interceptor import LoopbackInterceptor, intercept

__all__ = [
    "CallbackResponse",
    "LoopbackInterceptor",
    "intercept",
    "parse_authorization_result",
    "parse_query",
    "render_response",
]
