"""Config path resolution for the layered settings."""

import os
from pathlib import Path
from typing import Optional

CONFIG_DIR = ".converge"
CONFIG_FILE = "config.yaml"


def get_user_config_path() -> Path:
    """Get user config path: $CONVERGE_HOME/config.yaml, else ~/.converge/config.yaml"""
    override = os.getenv("CONVERGE_HOME")
    if override:
        return Path(override) / CONFIG_FILE
    return Path.home() / CONFIG_DIR / CONFIG_FILE


def get_project_config_path(start: Optional[Path] = None) -> Optional[Path]:
    """
    Find .converge/config.yaml in the working directory or its parents.

    The search stops below the home directory so the user config is never
    picked up a second time as a project config.
    """
    home = Path.home().resolve()
    current = (start or Path.cwd()).resolve()
    for directory in [current, *current.parents]:
        if directory == home:
            return None
        candidate = directory / CONFIG_DIR / CONFIG_FILE
        if candidate.is_file():
            return candidate
    return None


def get_defaults_path() -> Path:
    """Path of the defaults shipped with the package."""
    return Path(__file__).parent / "defaults.yaml"
