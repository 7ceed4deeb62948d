"""Layered configuration manager (defaults, user, project, environment)."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import ValidationError
from .paths import get_defaults_path, get_user_config_path, get_project_config_path
from .settings import Settings
from ..utils.errors import ConfigError
from ..utils.logging import get_logger

logger = get_logger("config.manager")

# Environment variable -> dotted settings key
ENV_OVERRIDES = {
    "CONVERGE_PARALLELISM": "parallelism",
    "CONVERGE_OPERATION_TIMEOUT": "operation_timeout",
    "CONVERGE_REFRESH": "refresh",
    "CONVERGE_STATE_PATH": "state.path",
    "CONVERGE_PROVIDER": "provider.type",
    "CONVERGE_PROVIDER_ENDPOINT": "provider.endpoint",
}


def load_settings(config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Load engine settings.
    
    Layers, later wins: packaged defaults, user config, project config
    (or ``config_path`` when given), CONVERGE_* environment variables,
    then ``overrides`` (dotted keys, typically CLI flags).
    
    Args:
        config_path: Explicit settings file replacing the project config
        overrides: Dotted-key overrides, ``None`` values are ignored
        
    Returns:
        Validated Settings
        
    Raises:
        ConfigError: If a file is unreadable or the merged settings are invalid
    """
    config = _read_yaml(get_defaults_path(), required=True)
    
    user_path = get_user_config_path()
    if user_path.exists():
        _deep_merge(config, _read_yaml(user_path))
    
    if config_path:
        _deep_merge(config, _read_yaml(Path(config_path), required=True))
    else:
        project_path = get_project_config_path()
        if project_path:
            _deep_merge(config, _read_yaml(project_path))
            logger.info(f"Loaded project config from {project_path}")
    
    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None and value != "":
            _set_dotted(config, key, value)
    
    for key, value in (overrides or {}).items():
        if value is not None:
            _set_dotted(config, key, value)
    
    try:
        return Settings(**config)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}")


def _read_yaml(path: Path, required: bool = False) -> Dict[str, Any]:
    """Read one YAML settings file into a dict."""
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        return {}
    
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Error reading config file {path}: {e}")
    
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a dictionary")
    return data


def _set_dotted(config: Dict[str, Any], key: str, value: Any) -> None:
    """Set ``a.b.c`` inside nested dicts, creating levels as needed."""
    parts = key.split(".")
    target = config
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
