"""Environment loading helpers.

The credential is usually kept out of the persisted config and supplied
through the environment, optionally from ``.env`` files:

  os.environ (pre-existing) > project .env > user .env

A ``.env`` file never overrides a variable already present in the process
environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values = dotenv_values(path)
    out: dict[str, str] = {}
    for k, v in values.items():
        if k is None or v is None:
            continue
        out[str(k)] = str(v)
    return out


def get_user_env_path() -> Path:
    """Path of the user-level ``.env`` file (``$XDG_CONFIG_HOME/speakersync/.env``)."""
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home) / "speakersync" / ".env"
    return Path.home() / ".config" / "speakersync" / ".env"


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> None:
    """Load environment variables from user + project .env files.

    Args:
        project_dir: base directory for project env paths (defaults to cwd)
        user_env_paths: explicit user env file paths
        project_env_paths: explicit project env file paths
    """
    if project_dir is None:
        project_dir = Path.cwd()

    user_paths = list(user_env_paths) if user_env_paths is not None else [get_user_env_path()]
    project_paths = (
        list(project_env_paths) if project_env_paths is not None else [project_dir / ".env"]
    )

    preexisting = set(os.environ)

    for path in user_paths:
        for key, value in _read_env(path).items():
            if key not in preexisting:
                os.environ[key] = value

    # project values may replace user values but never the real environment
    for path in project_paths:
        for key, value in _read_env(path).items():
            if key not in preexisting:
                os.environ[key] = value
