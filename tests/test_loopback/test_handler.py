"""Tests for callback classification and response rendering."""

from __future__ import annotations

from http import HTTPStatus

import pytest

from loopauth.loopback import parse_authorization_result, parse_query, render_response
from loopauth.loopback.handler import classify_callback
from loopauth.loopback.templates import DEFAULT_FAILURE_HTML_FORMAT, DEFAULT_SUCCESS_HTML
from loopauth.models import AuthorizationError, AuthorizationSuccess, BrowserOptions


class TestParseQuery:
    def test_keys_are_lower_cased(self) -> None:
        assert parse_query("Error=access_denied&ERROR_DESCRIPTION=nope") == {
            "error": "access_denied",
            "error_description": "nope",
        }

    def test_blank_values_are_kept(self) -> None:
        assert parse_query("error=&state=1") == {"error": "", "state": "1"}

    def test_first_value_wins(self) -> None:
        assert parse_query("code=first&CODE=second")["code"] == "first"

    def test_percent_decoding(self) -> None:
        assert parse_query("error_description=User+declined%21")["error_description"] == "User declined!"


class TestClassifyCallback:
    def test_success_without_error(self) -> None:
        uri = "http://127.0.0.1:8400/callback?code=abc123&state=xyz"
        result = parse_authorization_result(uri)
        assert isinstance(result, AuthorizationSuccess)
        assert result.uri == uri

    def test_error_with_all_fields(self) -> None:
        result = parse_authorization_result(
            "http://127.0.0.1/cb?error=access_denied&error_description=User%20declined"
            "&error_uri=https%3A%2F%2Fidp.example.com%2Fhelp"
        )
        assert result == AuthorizationError(
            code="access_denied",
            description="User declined",
            uri="https://idp.example.com/help",
        )

    def test_error_parameter_name_is_case_insensitive(self) -> None:
        result = parse_authorization_result("http://127.0.0.1/cb?ERROR=server_error")
        assert isinstance(result, AuthorizationError)
        assert result.code == "server_error"

    def test_blank_error_fields_use_placeholders(self) -> None:
        result = parse_authorization_result("http://127.0.0.1/cb?error=&error_description=%20")
        assert result == AuthorizationError(code="unknown", description="Unknown error.", uri="none")

    def test_code_and_error_together_is_error(self) -> None:
        result = classify_callback("u", {"code": "abc", "error": "invalid_scope"})
        assert isinstance(result, AuthorizationError)


class TestRenderResponse:
    def test_default_success_page(self) -> None:
        response = render_response(AuthorizationSuccess(uri="u"), BrowserOptions())
        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Type"].startswith("text/html")
        assert response.body == DEFAULT_SUCCESS_HTML.encode("utf-8")

    def test_default_failure_page_substitutes_fields(self) -> None:
        result = AuthorizationError(code="access_denied", description="User declined", uri="none")
        response = render_response(result, BrowserOptions())
        body = response.body.decode("utf-8")
        assert response.status == HTTPStatus.OK
        assert body == DEFAULT_FAILURE_HTML_FORMAT.format("access_denied", "User declined", "none")
        assert "<dd>access_denied</dd>" in body
        assert "font-family:sans-serif;" in body

    def test_failure_fields_are_html_escaped(self) -> None:
        result = AuthorizationError(code="x", description="<script>alert(1)</script>", uri="none")
        body = render_response(result, BrowserOptions()).body.decode("utf-8")
        assert "<script>" not in body
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body

    def test_custom_success_html(self) -> None:
        options = BrowserOptions(success_response_html="<p>done</p>")
        assert render_response(AuthorizationSuccess(uri="u"), options).body == b"<p>done</p>"

    def test_custom_failure_format(self) -> None:
        options = BrowserOptions(failure_response_html_format="{0}|{1}|{2}")
        result = AuthorizationError(code="a", description="b", uri="c")
        assert render_response(result, options).body == b"a|b|c"

    def test_success_redirect_wins_over_html(self) -> None:
        options = BrowserOptions(
            success_response_html="<p>done</p>",
            success_redirect="https://example.com/signed-in",
        )
        response = render_response(AuthorizationSuccess(uri="u"), options)
        assert response.status == HTTPStatus.FOUND
        assert response.headers == {"Location": "https://example.com/signed-in"}
        assert response.body == b""

    def test_failure_redirect_fields_are_percent_encoded(self) -> None:
        options = BrowserOptions(
            failure_response_html_format="<p>{0}</p>",
            failure_redirect_format="https://example.com/failed?e={0}&d={1}&u={2}",
        )
        result = AuthorizationError(code="access_denied", description="User declined", uri="none")
        response = render_response(result, options)
        assert response.status == HTTPStatus.FOUND
        assert response.headers["Location"] == (
            "https://example.com/failed?e=access_denied&d=User%20declined&u=none"
        )

    def test_success_redirect_ignored_for_errors(self) -> None:
        options = BrowserOptions(success_redirect="https://example.com/ok")
        result = AuthorizationError(code="a", description="b", uri="c")
        assert render_response(result, options).status == HTTPStatus.OK

    def test_bad_failure_format_raises(self) -> None:
        options = BrowserOptions(failure_response_html_format="{3}")
        result = AuthorizationError(code="a", description="b", uri="c")
        with pytest.raises(IndexError):
            render_response(result, options)


class TestBrowserOptions:
    def test_redirect_must_be_http(self) -> None:
        with pytest.raises(ValueError):
            BrowserOptions(success_redirect="javascript:alert(1)")

    def test_frozen(self) -> None:
        options = BrowserOptions()
        with pytest.raises(ValueError):
            options.success_redirect = "https://example.com/"  # type: ignore[misc]
