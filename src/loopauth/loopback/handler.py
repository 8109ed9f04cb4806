"""Callback classification, response rendering, and the HTTP request handler.

The provider redirects the browser to the loopback listener with either an
authorization response (``?code=...&state=...``) or an error response
(``?error=...&error_description=...&error_uri=...``, RFC 6749 §4.1.2.1).
The presence of ``error`` is the only thing that decides which page the
user sees; validating ``code`` or the error vocabulary belongs to the
OAuth layer that consumes the returned URI.
"""

from __future__ import annotations

import html
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Any, NamedTuple, Optional
from urllib.parse import parse_qsl, quote, urlsplit

from loopauth.loopback.templates import DEFAULT_FAILURE_HTML_FORMAT, DEFAULT_SUCCESS_HTML
from loopauth.models import (
    AuthorizationError,
    AuthorizationResult,
    AuthorizationSuccess,
    BrowserOptions,
)

logger = logging.getLogger(__name__)

ERROR_CODE_PARAMETER = "error"
ERROR_DESCRIPTION_PARAMETER = "error_description"
ERROR_URI_PARAMETER = "error_uri"

UNKNOWN_ERROR_CODE = "unknown"
UNKNOWN_ERROR_DESCRIPTION = "Unknown error."
UNKNOWN_ERROR_URI = "none"

# A client that connects but never finishes its request must not pin the
# worker thread forever.
REQUEST_READ_TIMEOUT = 10.0

# Upper bound on a POST body read off the socket before answering.
MAX_DRAINED_BODY = 64 * 1024


class CallbackResponse(NamedTuple):
    """What to send back to the browser: a status, extra headers, and a body."""

    status: HTTPStatus
    headers: dict[str, str]
    body: bytes


def parse_query(query: str) -> dict[str, str]:
    """Parse a query string into a mapping with lower-cased keys.

    Blank values are kept (``?error=`` still means "error present") and the
    first occurrence of a repeated key wins.
    """
    params: dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        params.setdefault(key.lower(), value)
    return params


def classify_callback(uri: str, params: dict[str, str]) -> AuthorizationResult:
    """Decide success vs. error from already-parsed query parameters.

    Args:
        uri: The full callback URI, carried by the success variant.
        params: Lower-cased query parameters from :func:`parse_query`.
    """
    if ERROR_CODE_PARAMETER not in params:
        return AuthorizationSuccess(uri=uri)
    return AuthorizationError(
        code=_or_default(params.get(ERROR_CODE_PARAMETER), UNKNOWN_ERROR_CODE),
        description=_or_default(
            params.get(ERROR_DESCRIPTION_PARAMETER), UNKNOWN_ERROR_DESCRIPTION
        ),
        uri=_or_default(params.get(ERROR_URI_PARAMETER), UNKNOWN_ERROR_URI),
    )


def parse_authorization_result(uri: str) -> AuthorizationResult:
    """Classify an intercepted callback URI.

    This is the helper callers use on the URI returned by
    :func:`~loopauth.loopback.intercept` to find out whether the provider
    reported an error.
    """
    return classify_callback(uri, parse_query(urlsplit(uri).query))


def _or_default(value: Optional[str], default: str) -> str:
    if value is None or not value.strip():
        return default
    return value


def render_response(result: AuthorizationResult, options: BrowserOptions) -> CallbackResponse:
    """Pick the redirect or HTML page for *result*.

    A configured redirect always wins over configured HTML. Error fields are
    HTML-escaped before substitution into a page and percent-encoded before
    substitution into a redirect URL.
    """
    if isinstance(result, AuthorizationError):
        if options.failure_redirect_format is not None:
            location = options.failure_redirect_format.format(
                *(quote(field, safe="") for field in _error_fields(result))
            )
            return _redirect(location)
        page_format = options.failure_response_html_format or DEFAULT_FAILURE_HTML_FORMAT
        page = page_format.format(*(html.escape(field) for field in _error_fields(result)))
        return _page(page)

    if options.success_redirect is not None:
        return _redirect(options.success_redirect)
    return _page(options.success_response_html or DEFAULT_SUCCESS_HTML)


def _error_fields(result: AuthorizationError) -> tuple[str, str, str]:
    return result.code, result.description, result.uri


def _redirect(location: str) -> CallbackResponse:
    return CallbackResponse(HTTPStatus.FOUND, {"Location": location}, b"")


def _page(text: str) -> CallbackResponse:
    return CallbackResponse(
        HTTPStatus.OK,
        {"Content-Type": "text/html; charset=utf-8"},
        text.encode("utf-8"),
    )


class CallbackRequestHandler(BaseHTTPRequestHandler):
    """Serve one callback request on behalf of a :class:`CallbackServer`.

    GET, HEAD and POST are all accepted; HEAD gets the headers only.

    The server supplies ``prefix_path``, ``scheme``, ``netloc`` and
    ``options``. A request under the prefix is answered with the rendered
    page or redirect and its full URI recorded in
    ``server.intercepted_uri``; anything else gets ``404`` and leaves the
    server waiting.
    """

    timeout = REQUEST_READ_TIMEOUT
    server_version = "loopauth"

    def do_GET(self) -> None:
        self._handle()

    def do_HEAD(self) -> None:
        self._handle(send_body=False)

    def do_POST(self) -> None:
        self._drain_body()
        self._handle()

    def _handle(self, send_body: bool = True) -> None:
        self.close_connection = True
        uri = self._request_uri()
        parts = urlsplit(uri)
        if not self._matches_prefix(parts.path):
            logger.warning("Ignoring request outside the redirect path: %s", parts.path)
            self.send_error(HTTPStatus.NOT_FOUND)
            return

        result = classify_callback(uri, parse_query(parts.query))
        logger.debug("Intercepted %s %s callback on %s", self.command, result.kind, parts.path)
        response = render_response(result, self.server.options)  # type: ignore[attr-defined]

        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        if send_body:
            self.wfile.write(response.body)
        self.wfile.flush()

        self.server.intercepted_uri = uri  # type: ignore[attr-defined]

    def _drain_body(self) -> None:
        # The result is read from the URI only; a posted body is discarded.
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        if length > 0:
            self.rfile.read(min(length, MAX_DRAINED_BODY))

    def _request_uri(self) -> str:
        if self.path.lower().startswith(("http://", "https://")):
            return self.path
        host = self.headers.get("Host") or self.server.netloc  # type: ignore[attr-defined]
        return f"{self.server.scheme}://{host}{self.path}"  # type: ignore[attr-defined]

    def _matches_prefix(self, path: str) -> bool:
        prefix: str = self.server.prefix_path  # type: ignore[attr-defined]
        return path.startswith(prefix) or path == prefix.rstrip("/")

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)
