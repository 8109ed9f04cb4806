"""Persistent settings for loopauth: where they live and how they combine.

* Settings live in one JSON file, ``config.json``, inside the config
  directory from :func:`get_config_dir` (XDG on Linux/BSD,
  ``~/.loopauth`` elsewhere). Crash logs go under :func:`get_data_dir`.
* :func:`resolve_config` layers CLI flags over ``LOOPAUTH_*`` environment
  variables over the file over the model defaults.
* HTML template overrides may point at a file (``file:/path``) and are
  read when a flow starts (:func:`resolve_template`).

The file is replaced atomically (:func:`_atomic_write`), so an interrupted
``loopauth config set`` leaves either the old or the new file, never half
of one.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from loopauth.exceptions import ConfigError
from loopauth.models import BrowserOptions, GlobalConfig

_APP_NAME = "loopauth"
_CONFIG_FILENAME = "config.json"

ENV_REDIRECT_URI = "LOOPAUTH_REDIRECT_URI"
ENV_TIMEOUT = "LOOPAUTH_TIMEOUT"


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _xdg_dir(env_var: str, *default: str) -> Path:
    """``$env_var/loopauth``, or ``~/<default...>/loopauth`` when unset or empty."""
    root = os.environ.get(env_var) or Path.home().joinpath(*default)
    return Path(root) / _APP_NAME


def _ensure(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json``; created if missing.

    ``$XDG_CONFIG_HOME/loopauth`` (default ``~/.config/loopauth``) on
    Linux/BSD, ``~/.loopauth`` on macOS and Windows.
    """
    if _is_xdg_platform():
        return _ensure(_xdg_dir("XDG_CONFIG_HOME", ".config"))
    return _ensure(Path.home() / f".{_APP_NAME}")


def get_data_dir() -> Path:
    """Directory for crash logs; created if missing.

    ``$XDG_DATA_HOME/loopauth`` (default ``~/.local/share/loopauth``) on
    Linux/BSD, ``~/.loopauth/logs`` elsewhere.
    """
    if _is_xdg_platform():
        return _ensure(_xdg_dir("XDG_DATA_HOME", ".local", "share"))
    return _ensure(Path.home() / f".{_APP_NAME}" / "logs")


# --- Atomic writes ---


def _atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* via a synced sibling temp file and ``os.replace``.

    The temp file is removed if anything fails before the rename.
    """
    _ensure(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Read ``config.json``, or return defaults when there is none yet.

    Raises:
        ConfigError: If the file is not JSON or does not validate as a
            :class:`~loopauth.models.GlobalConfig`.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Write *config* to ``config.json``, replacing the file atomically."""
    data = config.model_dump(mode="json")
    _atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Template sources ---


def resolve_template(value: Optional[str]) -> Optional[str]:
    """Expand a ``file:/path`` template reference into the file's contents.

    Any other value (including ``None``) is returned unchanged.

    Raises:
        ConfigError: If the referenced file is missing or unreadable.
    """
    if value is None or not value.startswith("file:"):
        return value
    path = Path(value[5:]).expanduser()
    if not path.is_file():
        raise ConfigError(f"Template file not found: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read template file {path}: {exc}") from exc


def resolve_browser_options(options: BrowserOptions) -> BrowserOptions:
    """Return a copy of *options* with ``file:`` HTML templates loaded from disk."""
    return options.model_copy(
        update={
            "success_response_html": resolve_template(options.success_response_html),
            "failure_response_html_format": resolve_template(
                options.failure_response_html_format
            ),
        }
    )


# --- Precedence resolution ---


def resolve_config(
    cli_redirect_uri: Optional[str] = None,
    cli_timeout: Optional[int] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_redirect_uri``, ``cli_timeout``)
        2. Environment variables (``LOOPAUTH_REDIRECT_URI``, ``LOOPAUTH_TIMEOUT``)
        3. User config (``~/.config/loopauth/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~loopauth.models.GlobalConfig`, with any
        ``file:`` template references already loaded.

    Raises:
        ConfigError: If ``LOOPAUTH_TIMEOUT`` is not a non-negative integer
            or a template file cannot be read.
    """
    config = load_global_config()
    updates: dict[str, object] = {}

    env_redirect = os.environ.get(ENV_REDIRECT_URI)
    if env_redirect:
        updates["redirect_uri"] = env_redirect

    env_timeout = os.environ.get(ENV_TIMEOUT)
    if env_timeout:
        try:
            timeout = int(env_timeout)
        except ValueError:
            raise ConfigError(
                f"{ENV_TIMEOUT} must be an integer number of seconds, got: {env_timeout}"
            ) from None
        if timeout < 0:
            raise ConfigError(f"{ENV_TIMEOUT} must not be negative, got: {timeout}")
        updates["timeout_seconds"] = timeout

    if cli_redirect_uri is not None:
        updates["redirect_uri"] = cli_redirect_uri
    if cli_timeout is not None:
        updates["timeout_seconds"] = cli_timeout

    updates["browser"] = resolve_browser_options(config.browser)
    return config.model_copy(update=updates)
