"""Settings configuration loader module.

This module handles loading and parsing of the settings.conf file which contains
the engine settings: the document store URL, dashboard limits and the retry
budget for optimistic status writes.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.
When no settings.conf exists the defaults below are used as-is.

Example settings.conf:
    [DEFAULT]
    db_url = postgresql://postgres@localhost:5432/campus_market
    top_products_limit = 5
    transition_retries = 3
    timezone = Africa/Lusaka

Raises:
    SettingsError: If the settings file is unreadable or contains invalid values
"""
from configparser import ConfigParser, Error as ConfigParserError
from pathlib import Path
from typing import Dict, Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

logger = logging.getLogger(__name__)


class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.missing_sections: List[str] = []
        self.invalid: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing_sections or self.invalid)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing_sections:
            messages.append("Missing required sections:")
            messages.extend(f"  - {item}" for item in self.missing_sections)

        if self.invalid:
            if messages:
                messages.append("")
            messages.append("Invalid settings:")
            messages.extend(f"  - {item}" for item in self.invalid)

        return "\n".join(messages)


class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass


# Default settings
DEFAULTS = {
    'db_url': 'memory://',
    'top_products_limit': '5',  # 0 disables truncation
    'transition_retries': '3',  # Re-read/re-check attempts when a status write races
    'timezone': '',  # Empty means the host's local timezone
    'log_level': 'INFO',
    'jwt_secret': '',  # Signing secret of the external session service; empty rejects all tokens
    'jwt_algorithm': 'HS256',
}

INTEGER_SETTINGS = ('top_products_limit', 'transition_retries')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
JWT_ALGORITHMS = ('HS256', 'HS384', 'HS512')


def load_settings_conf(settings_path: str = ".") -> Dict[str, Any]:
    """Load and parse settings.conf with validation

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Dictionary containing parsed settings, integers already converted

    Raises:
        SettingsError: If parsing fails or a value is invalid
    """
    config_path = Path(settings_path) / 'settings.conf'
    settings: Dict[str, Any] = dict(DEFAULTS)

    if config_path.exists():
        parser = ConfigParser()
        try:
            parser.read(config_path)
        except ConfigParserError as e:
            raise SettingsError(f"Failed to parse {config_path}: {e}")

        if parser.sections() and not parser.defaults():
            errors = ConfigValidationError()
            errors.missing_sections.append('[DEFAULT]')
            raise SettingsError(
                "Settings Configuration Validation Failed\n\n" +
                errors.format_message()
            )
        settings.update(parser.defaults())
    else:
        logger.debug(f"No settings file at {config_path}, using defaults")

    return validate_settings(settings)


def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Convert and validate raw string settings.

    Raises:
        SettingsError: If any value is invalid
    """
    errors = ConfigValidationError()
    result = dict(settings)

    for key in INTEGER_SETTINGS:
        try:
            value = int(result[key])
            if value < 0:
                raise ValueError(value)
            result[key] = value
        except (TypeError, ValueError):
            errors.invalid.append(f"{key}: expected a non-negative integer, got {result[key]!r}")

    db_url = str(result.get('db_url', '')).strip()
    if not db_url.startswith(('memory://', 'postgresql://', 'postgres://')):
        errors.invalid.append(f"db_url: unsupported scheme in {db_url!r}")

    tz_name = str(result.get('timezone', '')).strip()
    if tz_name:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.invalid.append(f"timezone: unknown timezone {tz_name!r}")

    level = str(result.get('log_level', 'INFO')).upper()
    if level not in LOG_LEVELS:
        errors.invalid.append(f"log_level: expected one of {', '.join(LOG_LEVELS)}")
    result['log_level'] = level

    if result.get('jwt_algorithm') not in JWT_ALGORITHMS:
        errors.invalid.append(f"jwt_algorithm: expected one of {', '.join(JWT_ALGORITHMS)}")

    if errors.has_errors():
        raise SettingsError(
            "Settings Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    return result
