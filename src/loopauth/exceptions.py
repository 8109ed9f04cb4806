"""Exception hierarchy for loopauth.

All exceptions inherit from :class:`LoopauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`loopauth.exit_codes`.
The top-level error handler in :func:`loopauth.app.main` catches
``LoopauthError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    LoopauthError (exit 1)
    +-- ContractError       (exit 2, also a ValueError)
    +-- ConfigError         (exit 1)
    +-- ListenerError       (exit 6)
    +-- BrowserLaunchError  (exit 7)
    +-- FlowCancelledError  (exit 130)

An OAuth error returned by the provider is deliberately absent from this
list: the interception itself succeeded, so the callback URI is returned
and the caller decides what the ``error`` parameter means.
"""

from loopauth.exit_codes import (
    EXIT_BROWSER_ERROR,
    EXIT_CANCELLED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_LISTENER_ERROR,
)


class LoopauthError(Exception):
    """Base exception for all loopauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`loopauth.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ContractError(LoopauthError, ValueError):
    """Raised when a caller passes a URI the flow cannot accept.

    Covers non-loopback redirect URIs and non-HTTP(S) browser URIs. Always
    raised before any socket is bound or process spawned.
    """

    exit_code = EXIT_INVALID_USAGE


class ConfigError(LoopauthError):
    """Raised for configuration problems (invalid JSON, unreadable template files)."""

    exit_code = EXIT_GENERIC_FAILURE


class ListenerError(LoopauthError):
    """Raised when the loopback listener cannot be bound (e.g. port in use)."""

    exit_code = EXIT_LISTENER_ERROR


class BrowserLaunchError(LoopauthError):
    """Raised when no utility to launch the default web browser can be found or started."""

    exit_code = EXIT_BROWSER_ERROR


class FlowCancelledError(LoopauthError):
    """Raised when the cancel signal fires before a callback request arrives."""

    exit_code = EXIT_CANCELLED
