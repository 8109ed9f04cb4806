"""Canonical Pydantic models shared across all loopauth modules.

This is the single source of truth for data shapes in the project. The
models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`BrowserOptions` and :class:`GlobalConfig`.

**Callback models** -- produced by classifying an intercepted callback URI:
    :class:`AuthorizationSuccess`, :class:`AuthorizationError`, and the
    :data:`AuthorizationResult` union over them.

Configuration models are frozen where a flow takes a snapshot of them, so a
running listener can never observe a half-updated template set.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Response templates ---


class BrowserOptions(BaseModel):
    """Caller overrides for what the browser tab shows after the callback.

    Redirect overrides take precedence over the corresponding HTML override.
    When neither is set, the built-in pages from
    :mod:`loopauth.loopback.templates` are served.

    The failure HTML and failure redirect are format strings with three
    positional fields: ``{0}`` error code, ``{1}`` error description and
    ``{2}`` error URI. Literal braces must be doubled (``{{``).

    Example::

        BrowserOptions(
            success_redirect="https://example.com/signed-in",
            failure_redirect_format="https://example.com/failed?reason={0}",
        )
    """

    model_config = ConfigDict(frozen=True)

    success_response_html: Optional[str] = Field(
        default=None, description="HTML served after a successful callback"
    )
    failure_response_html_format: Optional[str] = Field(
        default=None,
        description="HTML served after an error callback ({0} code, {1} description, {2} uri)",
    )
    success_redirect: Optional[str] = Field(
        default=None, description="URL the browser is redirected to on success"
    )
    failure_redirect_format: Optional[str] = Field(
        default=None,
        description="URL format the browser is redirected to on error ({0}, {1}, {2})",
    )

    @field_validator("success_redirect", "failure_redirect_format")
    @classmethod
    def _check_redirect_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.lower().startswith(("http://", "https://")):
            raise ValueError("redirect overrides must be http:// or https:// URLs")
        return value


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/loopauth/config.json``.

    Loaded and saved by :func:`~loopauth.config.load_global_config` and
    :func:`~loopauth.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by environment variables or CLI
    flags. See :func:`~loopauth.config.resolve_config`.
    """

    browser: BrowserOptions = Field(default_factory=BrowserOptions)
    redirect_uri: str = Field(
        default="http://127.0.0.1/",
        description="Loopback redirect URI; a missing port means 'pick a free one'",
    )
    timeout_seconds: int = Field(
        default=300,
        ge=0,
        description="Seconds to wait for the callback before cancelling (0 = forever)",
    )


# --- Callback classification ---


class AuthorizationSuccess(BaseModel):
    """The callback carried no ``error`` parameter."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["success"] = "success"
    uri: str


class AuthorizationError(BaseModel):
    """The callback carried an ``error`` parameter.

    Blank or missing fields are already replaced with their placeholders
    (``"unknown"``, ``"Unknown error."``, ``"none"``).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    code: str
    description: str
    uri: str


AuthorizationResult = Union[AuthorizationSuccess, AuthorizationError]
