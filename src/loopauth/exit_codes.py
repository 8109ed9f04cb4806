"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~loopauth.exceptions.LoopauthError` subclass.
Scripts that wrap ``loopauth authorize`` can inspect the exit code to tell
a cancelled flow from a broken environment without parsing stderr.

Example::

    $ loopauth authorize https://idp.example.com/authorize?... --timeout 60
    $ echo $?
    130   # EXIT_CANCELLED -- nobody called back in time
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""A URI or argument violated the caller contract (e.g. non-loopback redirect)."""

EXIT_LISTENER_ERROR = 6
"""The loopback listener could not be bound or served."""

EXIT_BROWSER_ERROR = 7
"""No mechanism to launch the default web browser was found."""

EXIT_CANCELLED = 130
"""The flow was cancelled (timeout, Ctrl-C) before a callback arrived."""
