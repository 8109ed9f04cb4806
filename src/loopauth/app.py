"""Typer application and CLI entry point for loopauth.

The CLI exposes the loopback flow to shell scripts and to programs in other
languages that would rather spawn a process than link a library:

* ``loopauth authorize URL`` -- open the browser and print the callback URI.
* ``loopauth listen`` -- wait for a callback without opening a browser.
* ``loopauth open URL`` -- open the default browser only.
* ``loopauth redirect-uri [URI]`` -- print a redirect URI with a free port.
* ``loopauth result URI`` -- classify a callback URI as success or error.
* ``loopauth config ...`` -- manage the global config file.

stdout only ever carries the result, so ``CALLBACK=$(loopauth authorize
...)`` works even while the browser writes noise of its own. Errors map to
the exit codes in :mod:`loopauth.exit_codes`.
"""

from __future__ import annotations

import signal
import sys
import traceback
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import typer

from loopauth import __version__
from loopauth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="loopauth",
    help="Capture OAuth2 authorization callbacks on a loopback redirect URI.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# ------------------------------------------------------------------ #
# Sub-command groups
# ------------------------------------------------------------------ #

from loopauth.commands.config import config_app  # noqa: E402

app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"loopauth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~loopauth.output.OutputManager`, routes the
    library loggers to stderr, and stores shared flags in ``ctx.obj``.
    """
    from loopauth.output import OutputFormat, OutputManager, configure_logging, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    configure_logging(output)

    ctx.ensure_object(dict)
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Turn a :class:`~loopauth.exceptions.LoopauthError` into a clean exit."""
    from loopauth.exceptions import (
        BrowserLaunchError,
        FlowCancelledError,
        ListenerError,
        LoopauthError,
    )
    from loopauth.output import error, suggest

    try:
        yield
    except FlowCancelledError:
        error("Timed out waiting for the authorization callback.")
        suggest("Raise --timeout, or pass --timeout 0 to wait indefinitely.")
        raise typer.Exit(code=EXIT_CANCELLED) from None
    except ListenerError as exc:
        error(str(exc))
        suggest("Use --redirect-uri with another port, or leave the port out to pick a free one.")
        raise typer.Exit(code=exc.exit_code) from None
    except BrowserLaunchError as exc:
        error(str(exc))
        suggest("Run 'loopauth listen' and open the authorization URL yourself.")
        raise typer.Exit(code=exc.exit_code) from None
    except LoopauthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _report_callback(callback_uri: str) -> None:
    """Print the callback URI (or JSON) to stdout and flag OAuth errors on stderr."""
    from loopauth.loopback import parse_authorization_result
    from loopauth.models import AuthorizationError
    from loopauth.output import OutputFormat, format_response, get_output, print_data, warning

    result = parse_authorization_result(callback_uri)
    if isinstance(result, AuthorizationError):
        warning(f"Authorization server returned error '{result.code}': {result.description}")

    if get_output().format == OutputFormat.JSON:
        format_response({"callback_uri": callback_uri, "result": result.model_dump()})
    else:
        print_data(callback_uri)


@app.command("authorize")
def authorize_command(
    authorization_url: str = typer.Argument(help="Authorization URL to open in the browser."),
    redirect_uri: Optional[str] = typer.Option(
        None,
        "--redirect-uri",
        "-r",
        help="Loopback redirect URI. Defaults to the URL's redirect_uri parameter.",
    ),
    timeout: Optional[int] = typer.Option(
        None, "--timeout", "-t", min=0, help="Seconds to wait (0 waits forever)."
    ),
) -> None:
    """Open the browser at an authorization URL and print the callback URI.

    The redirect URI is taken from ``--redirect-uri``, then the
    authorization URL's own ``redirect_uri`` parameter, then the config.
    If it has no port, a free one is chosen and the authorization URL is
    rewritten to match.

    Example::

        loopauth authorize "https://idp.example.com/authorize?client_id=cli&response_type=code&redirect_uri=http://127.0.0.1/"
    """
    from loopauth.config import resolve_config
    from loopauth.flow import SystemWebBrowser
    from loopauth.output import debug, info, progress
    from loopauth.redirect import apply_redirect_uri, find_redirect_uri

    with _exit_on_error():
        config = resolve_config(cli_redirect_uri=redirect_uri, cli_timeout=timeout)
        target = redirect_uri or find_redirect_uri(authorization_url) or config.redirect_uri

        browser = SystemWebBrowser(options=config.browser)
        target = browser.update_redirect_uri(target)
        authorization_url = apply_redirect_uri(authorization_url, target)
        debug(f"Redirect URI: {target}")

        info("Opening the browser to continue authorization...")
        progress(f"Waiting for the callback on {target}")
        callback_uri = browser.get_authorization_code_sync(
            authorization_url, target, timeout=config.timeout_seconds
        )
    _report_callback(callback_uri)


@app.command("listen")
def listen_command(
    redirect_uri: Optional[str] = typer.Option(
        None, "--redirect-uri", "-r", help="Loopback redirect URI to listen on."
    ),
    timeout: Optional[int] = typer.Option(
        None, "--timeout", "-t", min=0, help="Seconds to wait (0 waits forever)."
    ),
) -> None:
    """Wait for one callback on a loopback redirect URI without opening a browser.

    The bound redirect URI is printed to stderr as soon as the listener is
    ready, which is useful when the configured URI has no port.
    """
    from loopauth.config import resolve_config
    from loopauth.flow import run_with_timeout, wait_for_callback
    from loopauth.output import info

    with _exit_on_error():
        config = resolve_config(cli_redirect_uri=redirect_uri, cli_timeout=timeout)
        callback_uri = run_with_timeout(
            lambda cancel: wait_for_callback(
                config.redirect_uri,
                cancel,
                config.browser,
                on_listening=lambda uri: info(f"Listening on {uri}"),
            ),
            config.timeout_seconds,
        )
    _report_callback(callback_uri)


@app.command("open")
def open_command(
    url: str = typer.Argument(help="HTTP or HTTPS URL to open."),
) -> None:
    """Open a URL in the default web browser."""
    from loopauth.browser import BrowserLauncher
    from loopauth.output import debug

    with _exit_on_error():
        launcher = BrowserLauncher()
        launcher.open(url)
    if launcher.command is not None:
        debug(f"Launched with {launcher.command.name}")


@app.command("redirect-uri")
def redirect_uri_command(
    uri: Optional[str] = typer.Argument(
        None, help="Loopback redirect URI. Defaults to the configured one."
    ),
) -> None:
    """Print a loopback redirect URI with a free port filled in."""
    from loopauth.config import resolve_config
    from loopauth.output import print_data
    from loopauth.redirect import update_redirect_uri

    with _exit_on_error():
        target = uri or resolve_config().redirect_uri
        print_data(update_redirect_uri(target))


@app.command("result")
def result_command(
    callback_uri: str = typer.Argument(help="Callback URI returned by authorize or listen."),
) -> None:
    """Classify a callback URI as an authorization success or error."""
    from loopauth.loopback import parse_authorization_result
    from loopauth.output import format_response

    format_response(parse_authorization_result(callback_uri).model_dump())


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from loopauth.config import get_data_dir

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = get_data_dir() / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``loopauth`` console script.

    Unhandled :class:`~loopauth.exceptions.LoopauthError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from loopauth.exceptions import LoopauthError
        from loopauth.output import error

        if isinstance(exc, LoopauthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
