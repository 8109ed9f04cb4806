"""``loopauth config`` -- inspect and edit ``config.json``.

Keys use dot notation over :class:`~loopauth.models.GlobalConfig`, so the
response templates are ``browser.success_response_html``,
``browser.failure_redirect_format`` and so on. Every edit is validated
against the model before the file is rewritten; an invalid value leaves the
file untouched and exits with code 2.
"""

from __future__ import annotations

from typing import Any

import typer

from loopauth.exit_codes import EXIT_INVALID_USAGE
from loopauth.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


def _usage_error(message: str) -> typer.Exit:
    error(message)
    return typer.Exit(code=EXIT_INVALID_USAGE)


def _current_settings() -> dict[str, Any]:
    from loopauth.config import load_global_config

    return load_global_config().model_dump(mode="json")


def _locate(settings: dict[str, Any], key: str) -> tuple[dict[str, Any], str]:
    """Return the section holding the leaf of dotted *key* and the leaf name.

    Only leaves can be addressed; ``browser`` on its own is rejected.
    """
    *sections, leaf = key.split(".")
    node = settings
    for section in sections:
        child = node.get(section)
        if not isinstance(child, dict):
            raise _usage_error(f"Invalid config key: {key}")
        node = child
    if leaf not in node or isinstance(node[leaf], dict):
        raise _usage_error(f"Unknown config key: {key}")
    return node, leaf


def _store(settings: dict[str, Any]) -> None:
    from loopauth.config import save_global_config
    from loopauth.models import GlobalConfig

    try:
        config = GlobalConfig.model_validate(settings)
    except ValueError as exc:
        raise _usage_error(f"Validation error: {exc}") from None
    save_global_config(config)


@config_app.command("show")
def config_show() -> None:
    """Print the stored configuration (defaults filled in).

    Example::

        loopauth --json config show
    """
    from loopauth.config import get_config_dir

    settings = _current_settings()
    info(f"Config directory: {get_config_dir()}")
    format_response(settings)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. 'browser.success_redirect'."),
    value: str = typer.Argument(help="New value."),
) -> None:
    """Change one setting.

    Numeric settings are parsed as integers. Template HTML may be given as
    ``file:/path/page.html``; the file is read each time a flow starts.

    Example::

        loopauth config set redirect_uri http://127.0.0.1:8400/callback
        loopauth config set timeout_seconds 120
        loopauth config set browser.failure_redirect_format "https://example.com/failed?code={0}"
    """
    settings = _current_settings()
    section, leaf = _locate(settings, key)

    new_value: Any = value
    if isinstance(section[leaf], int) and not isinstance(section[leaf], bool):
        try:
            new_value = int(value)
        except ValueError:
            raise _usage_error(f"Expected integer for {key}, got: {value}") from None

    section[leaf] = new_value
    _store(settings)
    success(f"Set {key} = {new_value}")


@config_app.command("unset")
def config_unset(
    key: str = typer.Argument(help="Dotted key of an optional setting."),
) -> None:
    """Clear an optional setting so the built-in page or behaviour applies again.

    Example::

        loopauth config unset browser.success_redirect
    """
    settings = _current_settings()
    section, leaf = _locate(settings, key)
    section[leaf] = None
    _store(settings)
    success(f"Unset {key}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Discard every setting. Asks first unless ``--force`` was given."""
    from loopauth.config import save_global_config
    from loopauth.models import GlobalConfig

    force = bool(ctx.obj and ctx.obj.get("force"))
    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
