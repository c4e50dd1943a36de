"""Configuration module for loading and managing engine settings"""
from datetime import datetime, tzinfo
from typing import Dict, Any, Optional
from zoneinfo import ZoneInfo
import logging

from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS

__all__ = ['settings_conf', 'load_config', 'get_timezone', 'configure_logging', 'SettingsError', 'DEFAULTS']


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a directory.

    Args:
        config_path: Optional directory holding settings.conf. If not provided,
                    will look for settings.conf in current directory.

    Returns:
        Dictionary with validated settings
    """
    return load_settings_conf(config_path or ".")


def get_timezone(settings: Optional[Dict[str, Any]] = None) -> tzinfo:
    """Timezone used for calendar-day bucketing on the dashboard."""
    settings = settings if settings is not None else settings_conf
    name = settings.get('timezone') or ''
    if name:
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo


def configure_logging(settings: Optional[Dict[str, Any]] = None) -> None:
    """Apply the configured log level with the standard format."""
    settings = settings if settings is not None else settings_conf
    logging.basicConfig(
        level=getattr(logging, settings.get('log_level', 'INFO')),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


try:
    settings_conf: Dict[str, Any] = load_settings_conf()
except SettingsError as e:
    # Re-raise the error but provide more context
    raise SettingsError(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "See settings.conf.example for the available settings."
    )
