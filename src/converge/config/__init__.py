"""Configuration module: layered engine settings."""

from .manager import load_settings
from .paths import get_user_config_path, get_project_config_path
from .settings import Settings, RetrySettings, StateSettings, ProviderSettings

__all__ = [
    "load_settings",
    "get_user_config_path",
    "get_project_config_path",
    "Settings",
    "RetrySettings",
    "StateSettings",
    "ProviderSettings",
]
