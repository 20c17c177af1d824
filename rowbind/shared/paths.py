"""Where rowbind looks for its config file and default database.

Both live under ``~/.rowbind`` unless ``ROWBIND_CONFIG_DIR``, ``ROWBIND_CONFIG_PATH``
or ``ROWBIND_DATABASE_PATH`` point elsewhere. ``$VARS`` and ``~`` are expanded in
every path.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

DEFAULT_CONFIG_DIR = "~/.rowbind"
DEFAULT_DATABASE_PATH = "~/.rowbind/data.db"
DEFAULT_CONFIG_FILE = "config.yaml"

CONFIG_DIR_ENV = "ROWBIND_CONFIG_DIR"
CONFIG_FILE_ENV = "ROWBIND_CONFIG_PATH"
DATABASE_PATH_ENV = "ROWBIND_DATABASE_PATH"


def _expand(path_str: str) -> Path:
    return Path(os.path.expandvars(path_str)).expanduser()


def _with_parent(path: Path, create: bool) -> Path:
    if create:
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir(create: bool = False, env: Mapping[str, str] | None = None) -> Path:
    """The directory holding ``config.yaml``; created on request."""
    env = env or os.environ
    path = _expand(env.get(CONFIG_DIR_ENV, DEFAULT_CONFIG_DIR))
    if create:
        path.mkdir(parents=True, exist_ok=True)
    return path


def default_config_path(create_parents: bool = False, env: Mapping[str, str] | None = None) -> Path:
    """``ROWBIND_CONFIG_PATH`` when set, else ``config.yaml`` inside the config dir."""
    env = env or os.environ
    override = env.get(CONFIG_FILE_ENV)
    if override:
        return _with_parent(_expand(override), create_parents)
    return get_config_dir(create=create_parents, env=env) / DEFAULT_CONFIG_FILE


def default_database_path(create_parents: bool = False, env: Mapping[str, str] | None = None) -> Path:
    """The SQLite file used when neither the config file nor ``--db`` names one."""
    env = env or os.environ
    return _with_parent(_expand(env.get(DATABASE_PATH_ENV) or DEFAULT_DATABASE_PATH), create_parents)


def resolve_path(path_str: str | Path) -> Path:
    return _expand(str(path_str))
