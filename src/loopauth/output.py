"""Terminal output for the loopauth CLI.

Two streams, two jobs:

* **stdout** carries the result and nothing else -- the intercepted
  callback URI, or its JSON/plain rendering. Hosts that spawn
  ``loopauth authorize`` read it with ``$(...)``.
* **stderr** carries every diagnostic: status lines, warnings, errors,
  next-step hints, debug traces and library log records.

Colour follows `clig.dev <https://clig.dev/>`_: ``NO_COLOR``,
``TERM=dumb`` and ``--no-color`` turn it off, and ``AUTO`` format only
picks Rich when stdout is an interactive terminal.

:class:`OutputManager` holds the resolved settings; the CLI root callback
installs one with :func:`set_output` and the rest of the code goes through
the module-level shortcuts (:func:`info`, :func:`error`, ...).
"""

from __future__ import annotations

import json
import logging
import os
import sys
from enum import Enum
from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.syntax import Syntax


class OutputFormat(str, Enum):
    """How :meth:`OutputManager.format_response` renders data on stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class OutputManager:
    """Route results to stdout and diagnostics to stderr.

    Args:
        format: Rendering for structured results. ``AUTO`` becomes ``RICH``
            on a colour-capable TTY and ``PLAIN`` otherwise.
        no_color: Disable colour and markup on both streams.
        quiet: Drop status lines, hints and progress. Warnings and errors
            are always shown.
        verbose: Show debug lines.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose

        if format == OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format

        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format == OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    @property
    def stderr_console(self) -> Console:
        """Console shared with the ``loopauth`` log handler."""
        return self._stderr

    # -- stdout ---------------------------------------------------------

    def print_data(self, text: str) -> None:
        """Write *text* to stdout verbatim, one line, no markup."""
        print(text, file=sys.stdout, flush=True)

    def format_response(self, data: Any) -> None:
        """Render a JSON-able result on stdout.

        JSON mode prints indented JSON. Plain mode prints ``key<TAB>value``
        lines, flattening one level of nesting as ``key.sub``. Rich mode
        prints highlighted JSON.
        """
        if self._format == OutputFormat.PLAIN:
            for line in _plain_lines(data):
                self.print_data(line)
            return
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format == OutputFormat.JSON:
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    # -- stderr ---------------------------------------------------------

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, style="green")

    def warning(self, message: str) -> None:
        self._emit(message, label="Warning:", label_style="yellow")

    def error(self, message: str) -> None:
        self._emit(message, label="Error:", label_style="bold red")

    def suggest(self, message: str) -> None:
        """Print a next-step hint such as a flag to retry with."""
        if not self._quiet:
            self._emit(f"→ {message}", style="dim")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._emit(f"[debug] {message}", style="dim")

    def progress(self, message: str) -> None:
        """Status line for interactive sessions only; hidden when piped."""
        if not self._quiet and _is_tty():
            self._emit(message, style="dim")

    def _emit(
        self,
        message: str,
        style: Optional[str] = None,
        label: Optional[str] = None,
        label_style: Optional[str] = None,
    ) -> None:
        if self._no_color:
            text = f"{label} {message}" if label else message
            print(text, file=sys.stderr, flush=True)
            return
        # Messages carry URLs and HTML snippets; keep Rich from parsing them.
        text = escape(message)
        if style:
            text = f"[{style}]{text}[/{style}]"
        if label:
            text = f"[{label_style}]{label}[/{label_style}] {text}"
        self._stderr.print(text, highlight=False)


def _plain_lines(data: Any) -> list[str]:
    if isinstance(data, dict):
        lines = []
        for key, value in data.items():
            if isinstance(value, dict):
                lines.extend(f"{key}.{sub}\t{_plain_value(v)}" for sub, v in value.items())
            else:
                lines.append(f"{key}\t{_plain_value(value)}")
        return lines
    if isinstance(data, list):
        return [str(item) for item in data]
    return [str(data)]


def _plain_value(value: Any) -> str:
    return "" if value is None else str(value)


def _is_tty() -> bool:
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _should_disable_color() -> bool:
    """``NO_COLOR`` (any value, even empty) or ``TERM=dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


def configure_logging(output: OutputManager) -> None:
    """Send ``loopauth.*`` log records to *output*'s stderr console.

    ``DEBUG`` when verbose, ``WARNING`` otherwise. Repeated calls replace
    the handler instead of stacking another one.
    """
    logger = logging.getLogger("loopauth")
    for handler in [h for h in logger.handlers if isinstance(h, RichHandler)]:
        logger.removeHandler(handler)
    logger.addHandler(
        RichHandler(
            console=output.stderr_console,
            show_path=False,
            show_time=False,
            markup=False,
        )
    )
    logger.setLevel(logging.DEBUG if output.is_verbose else logging.WARNING)


# -- global instance ----------------------------------------------------

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed manager, creating a default one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager (tests call this between runs)."""
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def debug(message: str) -> None:
    get_output().debug(message)


def progress(message: str) -> None:
    get_output().progress(message)
