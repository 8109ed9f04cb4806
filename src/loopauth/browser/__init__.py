"""Default web browser launcher.

Exports:
    :class:`BrowserLauncher` -- walks ordered platform probes and spawns
    the first available "open" mechanism.
    :func:`open_browser` -- one-shot convenience wrapper.
    :func:`default_probes` -- the probe order for a platform.
"""

from loopauth.browser.launcher import (
    BrowserCommand,
    BrowserLauncher,
    LaunchState,
    default_probes,
    executable_probe,
    open_browser,
    shell_execute_probe,
)

__all__ = [
    "BrowserCommand",
    "BrowserLauncher",
    "LaunchState",
    "default_probes",
    "executable_probe",
    "open_browser",
    "shell_execute_probe",
]
