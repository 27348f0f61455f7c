"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import (
    load_settings_conf,
    validate_settings,
    SettingsError,
    DEFAULTS
)

__all__ = ['load_config', 'load_settings_conf', 'validate_settings', 'SettingsError', 'DEFAULTS']

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from file.

    Args:
        config_path: Optional directory holding settings.conf. If not provided,
                    will look for settings.conf in current directory.

    Returns:
        Dictionary of validated settings
    """
    try:
        return load_settings_conf(config_path or '.')
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf is properly configured.\n"
            "Run `python -m config` to generate examples/settings.conf.example."
        ) from e
