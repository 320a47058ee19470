"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for crawlcache:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.crawlcache/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_cache_dir`, :func:`get_data_dir`.
* **Global config** -- A single :class:`~crawlcache.models.GlobalConfig`
  JSON file storing defaults (cache directory, retention, gate interval,
  transport settings).
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the global config into the effective
  configuration.

Config files and the cache control record are written with a
temp-file-then-rename strategy (:func:`atomic_write`).
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from crawlcache.exceptions import ConfigError
from crawlcache.models import GlobalConfig

_APP_NAME = "crawlcache"
_CONFIG_FILENAME = "config.json"

ENV_CACHE_DIR = "CRAWLCACHE_CACHE_DIR"
ENV_RETENTION = "CRAWLCACHE_RETENTION"
ENV_INTERVAL = "CRAWLCACHE_INTERVAL"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/crawlcache/`` (default ``~/.config/crawlcache/``).
    On macOS/Windows: ``~/.crawlcache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_cache_dir() -> Path:
    """Return the default cache root, creating it if necessary.

    Transactions and the control record live here unless a directory is
    configured explicitly.

    On Linux/BSD: ``$XDG_CACHE_HOME/crawlcache/`` (default ``~/.cache/crawlcache/``).
    On macOS/Windows: ``~/.crawlcache/cache/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CACHE_HOME", (".cache",)) / _APP_NAME
    else:
        path = _fallback_base_dir() / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/crawlcache/`` (default ``~/.local/share/crawlcache/``).
    On macOS/Windows: ``~/.crawlcache/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is removed and the original exception re-raised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~crawlcache.models.GlobalConfig`, or a
        default instance when the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_number(name: str, kind: type) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be a number, got {raw!r}") from None


def resolve_config(
    cli_cache_dir: Optional[str] = None,
    cli_retention: Optional[int] = None,
    cli_interval: Optional[float] = None,
) -> GlobalConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_cache_dir``, ``cli_retention``, ``cli_interval``)
        2. Environment variables (``CRAWLCACHE_CACHE_DIR``,
           ``CRAWLCACHE_RETENTION``, ``CRAWLCACHE_INTERVAL``)
        3. User config (``~/.config/crawlcache/config.json``)
        4. Defaults

    The returned config always has ``cache.directory`` set.

    Raises:
        ConfigError: If an environment variable or the merged result is
            invalid.
    """
    config = load_global_config()
    data = config.model_dump(mode="json")

    env_dir = os.environ.get(ENV_CACHE_DIR)
    env_retention = _env_number(ENV_RETENTION, int)
    env_interval = _env_number(ENV_INTERVAL, float)

    if cli_cache_dir is not None:
        data["cache"]["directory"] = cli_cache_dir
    elif env_dir:
        data["cache"]["directory"] = env_dir

    if cli_retention is not None:
        data["cache"]["retention"] = cli_retention
    elif env_retention is not None:
        data["cache"]["retention"] = env_retention

    if cli_interval is not None:
        data["gate"]["interval_seconds"] = cli_interval
    elif env_interval is not None:
        data["gate"]["interval_seconds"] = env_interval

    if not data["cache"]["directory"]:
        data["cache"]["directory"] = str(get_cache_dir())

    try:
        return GlobalConfig.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
